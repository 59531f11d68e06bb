"""Runs pandoc as a supervised child process.

The orchestrator owns the timeout timer, streams output for rough progress
reporting, classifies failures, and guarantees the job's cleanup handlers
run once on every exit path: success, failure, timeout, cancellation, or
an interrupt signal delivered to this process.
"""

from __future__ import annotations

import asyncio
import codecs
import atexit
import logging
import re
import signal
import threading
import time
from pathlib import Path
from typing import Callable

from vellum.models import ConversionJob, ConversionResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int], None]

# pandoc has no progress protocol; these stderr phrases are a rough guide only
STDERR_PROGRESS: tuple[tuple[tuple[str, ...], str, int], ...] = (
    (("parsing", "reading"), "Reading input...", 45),
    (("writing", "generating"), "Generating output...", 75),
    (("typst",), "Running Typst engine...", 85),
)
PROGRESS_START = 40
PROGRESS_STDOUT = 60
PROGRESS_DONE = 90

ERROR_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"error:", re.IGNORECASE),
    re.compile(r"Error:"),
    re.compile(r"failed", re.IGNORECASE),
    re.compile(r"fatal", re.IGNORECASE),
    re.compile(r"pandoc:", re.IGNORECASE),
)
UNKNOWN_ERROR = "Unknown error occurred during conversion"

KILL_GRACE = 5.0


def extract_error_message(stderr: str, stdout: str) -> str:
    """Pick the most useful diagnostic line from the tool's output."""
    for line in (stderr + "\n" + stdout).splitlines():
        if any(p.search(line) for p in ERROR_PATTERNS):
            return line.strip()
    for line in stderr.splitlines():
        if line.strip():
            return line.strip()
    return UNKNOWN_ERROR


def progress_for_stderr(chunk: str) -> tuple[str, int] | None:
    for keywords, message, percent in STDERR_PROGRESS:
        if any(k in chunk for k in keywords):
            return message, percent
    return None


class _SignalRegistry:
    """Process-wide SIGINT/SIGTERM hook shared by every active guard.

    Handlers are installed when the first guard registers and the previous
    ones restored when the last guard leaves, whatever order guards exit in.
    A signal fires the callback of every guard still registered.
    """

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self) -> None:
        self._guards: list[SignalGuard] = []
        self._previous: dict[int, object] = {}
        self._lock = threading.Lock()

    @property
    def installed_signals(self) -> list[int]:
        return list(self._previous)

    def add(self, guard: SignalGuard) -> None:
        with self._lock:
            if not self._guards:
                for sig in self.SIGNALS:
                    self._previous[sig] = signal.getsignal(sig)
                    signal.signal(sig, self._handle)
            self._guards.append(guard)

    def remove(self, guard: SignalGuard) -> None:
        with self._lock:
            if guard in self._guards:
                self._guards.remove(guard)
            if self._guards:
                return
            for sig, previous in self._previous.items():
                signal.signal(sig, previous)
            self._previous.clear()

    def _handle(self, signum, frame) -> None:
        previous = self._previous.get(signum)
        for guard in list(self._guards):
            guard.fire()
        if callable(previous):
            previous(signum, frame)
        elif previous == signal.SIG_IGN:
            return
        else:
            raise SystemExit(128 + signum)


_registry = _SignalRegistry()


class SignalGuard:
    """Scoped registration of process-termination cleanup.

    On enter: registers ``callback`` with ``atexit`` and, from the main
    thread, joins the shared SIGINT/SIGTERM hook (which chains to the
    handlers found before the first guard). On exit: leaves both.
    ``callback`` fires at most once.
    """

    SIGNALS = _SignalRegistry.SIGNALS

    def __init__(self, callback: Callable[[], None], install_signals: bool = True) -> None:
        self._callback = callback
        self._install_signals = install_signals
        self._registered = False
        self._fired = False

    def __enter__(self) -> SignalGuard:
        atexit.register(self.fire)
        if self._install_signals and threading.current_thread() is threading.main_thread():
            _registry.add(self)
            self._registered = True
        return self

    def __exit__(self, *exc) -> None:
        if self._registered:
            _registry.remove(self)
            self._registered = False
        atexit.unregister(self.fire)

    @property
    def installed_signals(self) -> list[int]:
        return _registry.installed_signals if self._registered else []

    def fire(self) -> None:
        if self._fired:
            return
        self._fired = True
        self._callback()


class ProcessOrchestrator:
    def __init__(
        self,
        progress_callback: ProgressCallback | None = None,
        kill_grace: float = KILL_GRACE,
        install_signal_handlers: bool = True,
    ) -> None:
        self.progress_callback = progress_callback
        self.kill_grace = kill_grace
        self.install_signal_handlers = install_signal_handlers
        self._cancel = asyncio.Event()
        self._process: asyncio.subprocess.Process | None = None
        self._progress = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Request cancellation; a running process is terminated."""
        self._cancel.set()
        if self._process is not None and self._process.returncode is None:
            _terminate(self._process)

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    async def run(self, job: ConversionJob) -> ConversionResult:
        start = time.monotonic()
        try:
            with SignalGuard(job.run_cleanup, install_signals=self.install_signal_handlers):
                return await self._run(job, start)
        finally:
            job.run_cleanup()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(self, job: ConversionJob, start: float) -> ConversionResult:
        if self._cancel.is_set():
            return ConversionResult(success=False, cancelled=True, exit_code=-1, error="Conversion cancelled")

        self._report("Starting Pandoc process...", PROGRESS_START)
        logger.debug("running %s (cwd=%s)", " ".join(job.argv), job.working_dir)
        try:
            proc = await asyncio.create_subprocess_exec(
                *job.argv,
                cwd=str(job.working_dir),
                env=job.env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error("Failed to start %s: %s", job.argv[0], e)
            return ConversionResult(
                success=False,
                exit_code=-1,
                error=f"Failed to start Pandoc process: {e}",
                duration=time.monotonic() - start,
            )

        self._process = proc
        loop = asyncio.get_running_loop()
        state = {"timed_out": False, "kill_handle": None}

        def _on_timeout() -> None:
            state["timed_out"] = True
            logger.warning("pandoc exceeded %.1fs, terminating pid %s", job.timeout, proc.pid)
            _terminate(proc)
            state["kill_handle"] = loop.call_later(self.kill_grace, _kill, proc)

        timer = loop.call_later(job.timeout, _on_timeout)
        stdout_chunks: list[str] = []
        stderr_chunks: list[str] = []
        readers = [
            asyncio.create_task(self._pump(proc.stdout, stdout_chunks, is_stderr=False)),
            asyncio.create_task(self._pump(proc.stderr, stderr_chunks, is_stderr=True)),
        ]
        waiter = asyncio.create_task(proc.wait())
        canceller = asyncio.create_task(self._cancel.wait())
        try:
            done, _ = await asyncio.wait({waiter, canceller}, return_when=asyncio.FIRST_COMPLETED)
            if waiter not in done:
                _terminate(proc)
                state["kill_handle"] = loop.call_later(self.kill_grace, _kill, proc)
                await waiter
            await asyncio.wait(readers, timeout=self.kill_grace)
        finally:
            timer.cancel()
            if state["kill_handle"] is not None:
                state["kill_handle"].cancel()
            canceller.cancel()
            if proc.returncode is None:
                _kill(proc)
            for task in readers:
                task.cancel()
            self._process = None

        stdout = "".join(stdout_chunks)
        stderr = "".join(stderr_chunks)
        duration = time.monotonic() - start
        common = dict(stdout=stdout, stderr=stderr, duration=duration)

        if state["timed_out"]:
            return ConversionResult(
                success=False,
                timed_out=True,
                exit_code=-1,
                error=f"Pandoc process timed out after {round(job.timeout * 1000)}ms",
                **common,
            )
        if self._cancel.is_set():
            return ConversionResult(success=False, cancelled=True, exit_code=-1, error="Conversion cancelled", **common)

        code = proc.returncode if proc.returncode is not None else -1
        if code != 0:
            message = extract_error_message(stderr, stdout)
            logger.error("pandoc exited with %d: %s", code, message)
            return ConversionResult(
                success=False, exit_code=code, error=f"Pandoc conversion failed: {message}", **common
            )
        if not Path(job.output_path).is_file():
            return ConversionResult(
                success=False,
                exit_code=code,
                error="Pandoc reported success but output file was not created",
                **common,
            )

        self._report("PDF generation complete!", PROGRESS_DONE)
        logger.info("wrote %s in %.1fs", job.output_path, duration)
        return ConversionResult(success=True, output_path=str(job.output_path), exit_code=0, **common)

    async def _pump(self, stream: asyncio.StreamReader | None, sink: list[str], *, is_stderr: bool) -> None:
        if stream is None:
            return
        # Multi-byte characters may straddle chunk boundaries
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(4096)
            chunk = decoder.decode(data, final=not data)
            if chunk:
                sink.append(chunk)
            if not data:
                return
            if not chunk:
                continue
            if is_stderr:
                hit = progress_for_stderr(chunk)
                if hit is not None:
                    self._report(*hit)
            else:
                self._report("Processing document...", PROGRESS_STDOUT)

    def _report(self, message: str, percent: int) -> None:
        # Never move the bar backwards
        if percent < self._progress:
            return
        self._progress = percent
        if self.progress_callback is not None:
            self.progress_callback(message, percent)


def _terminate(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.terminate()
    except ProcessLookupError:
        pass


def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        pass
