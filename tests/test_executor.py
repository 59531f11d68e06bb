"""Tests for the supervised pandoc process runner."""

import asyncio
import signal
import sys
from unittest.mock import MagicMock

import pytest

from vellum.models import ConversionJob
from vellum.render import executor
from vellum.render.executor import (
    UNKNOWN_ERROR,
    ProcessOrchestrator,
    SignalGuard,
    extract_error_message,
    progress_for_stderr,
)


def _job(tmp_path, script: str, timeout: float = 10.0, handlers=None) -> ConversionJob:
    out = tmp_path / "out.pdf"
    return ConversionJob(
        input_path=tmp_path / "in.md",
        output_path=out,
        argv=[sys.executable, "-c", script, str(out)],
        working_dir=tmp_path,
        timeout=timeout,
        cleanup_handlers=list(handlers or []),
    )


WRITE_OUTPUT = (
    "import sys\n"
    "sys.stderr.write('reading input\\n'); sys.stderr.flush()\n"
    "print('working')\n"
    "open(sys.argv[1], 'w').write('%PDF')\n"
)


class TestErrorExtraction:
    def test_first_matching_line(self):
        assert extract_error_message("info\nerror: font missing\nfatal: x", "") == "error: font missing"

    def test_stdout_searched_too(self):
        assert extract_error_message("", "pandoc: could not fetch resource") == "pandoc: could not fetch resource"

    def test_falls_back_to_first_stderr_line(self):
        assert extract_error_message("\n  something odd  \nmore", "") == "something odd"

    def test_unknown(self):
        assert extract_error_message("", "") == UNKNOWN_ERROR

    def test_progress_keywords(self):
        assert progress_for_stderr("[typst] compiling") == ("Running Typst engine...", 85)
        assert progress_for_stderr("nothing here") is None


class TestOrchestrator:
    @pytest.mark.asyncio
    async def test_success(self, tmp_path):
        updates = []
        cleanup = MagicMock()
        job = _job(tmp_path, WRITE_OUTPUT, handlers=[cleanup])
        result = await ProcessOrchestrator(progress_callback=lambda m, p: updates.append((m, p))).run(job)

        assert result.success
        assert result.exit_code == 0
        assert result.output_path == str(tmp_path / "out.pdf")
        assert "working" in result.stdout
        cleanup.assert_called_once()
        percents = [p for _, p in updates]
        assert percents == sorted(percents)
        assert updates[0] == ("Starting Pandoc process...", 40)
        assert updates[-1] == ("PDF generation complete!", 90)

    @pytest.mark.asyncio
    async def test_failure_extracts_error(self, tmp_path):
        script = "import sys\nsys.stderr.write('[INFO] loading\\nError: unknown font Foo\\n')\nsys.exit(43)\n"
        result = await ProcessOrchestrator().run(_job(tmp_path, script))
        assert not result.success
        assert result.exit_code == 43
        assert result.error == "Pandoc conversion failed: Error: unknown font Foo"

    @pytest.mark.asyncio
    async def test_success_without_output_file(self, tmp_path):
        result = await ProcessOrchestrator().run(_job(tmp_path, "pass"))
        assert not result.success
        assert result.error == "Pandoc reported success but output file was not created"

    @pytest.mark.asyncio
    async def test_timeout_terminates(self, tmp_path):
        cleanup = MagicMock()
        job = _job(tmp_path, "import time\ntime.sleep(30)\n", timeout=0.3, handlers=[cleanup])
        result = await ProcessOrchestrator(kill_grace=1.0).run(job)
        assert result.timed_out
        assert result.exit_code == -1
        assert result.error == "Pandoc process timed out after 300ms"
        assert result.duration < 5
        cleanup.assert_called_once()

    @pytest.mark.asyncio
    async def test_timer_never_fires_after_normal_exit(self, tmp_path, monkeypatch):
        terminate = MagicMock()
        monkeypatch.setattr(executor, "_terminate", terminate)
        script = "import sys, time\ntime.sleep(0.1)\nopen(sys.argv[1], 'w').write('%PDF')\n"
        result = await ProcessOrchestrator().run(_job(tmp_path, script, timeout=0.6))
        await asyncio.sleep(0.8)
        assert result.success
        assert not result.timed_out
        terminate.assert_not_called()

    @pytest.mark.asyncio
    async def test_spawn_failure(self, tmp_path):
        cleanup = MagicMock()
        job = _job(tmp_path, "", handlers=[cleanup])
        job.argv = [str(tmp_path / "no-such-pandoc")]
        result = await ProcessOrchestrator().run(job)
        assert not result.success
        assert result.exit_code == -1
        assert result.error.startswith("Failed to start Pandoc process:")
        cleanup.assert_called_once()

    @pytest.mark.asyncio
    async def test_cancel_running_process(self, tmp_path):
        orchestrator = ProcessOrchestrator(kill_grace=1.0)
        job = _job(tmp_path, "import time\ntime.sleep(30)\n")
        asyncio.get_running_loop().call_later(0.3, orchestrator.cancel)
        result = await orchestrator.run(job)
        assert result.cancelled
        assert not result.timed_out
        assert result.duration < 5

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, tmp_path):
        orchestrator = ProcessOrchestrator()
        orchestrator.cancel()
        cleanup = MagicMock()
        result = await orchestrator.run(_job(tmp_path, WRITE_OUTPUT, handlers=[cleanup]))
        assert result.cancelled
        assert not (tmp_path / "out.pdf").exists()
        cleanup.assert_called_once()

    @pytest.mark.asyncio
    async def test_failing_cleanup_does_not_block_others(self, tmp_path):
        second = MagicMock()
        job = _job(tmp_path, WRITE_OUTPUT, handlers=[MagicMock(side_effect=OSError("busy")), second])
        result = await ProcessOrchestrator().run(job)
        assert result.success
        second.assert_called_once()
        assert job.cleanup_handlers == []

    @pytest.mark.asyncio
    async def test_signal_handlers_restored(self, tmp_path):
        before = signal.getsignal(signal.SIGINT)
        await ProcessOrchestrator().run(_job(tmp_path, WRITE_OUTPUT))
        assert signal.getsignal(signal.SIGINT) is before

    @pytest.mark.asyncio
    async def test_overlapping_runs_restore_handlers(self, tmp_path):
        before = {sig: signal.getsignal(sig) for sig in SignalGuard.SIGNALS}
        (tmp_path / "a").mkdir()
        (tmp_path / "b").mkdir()
        sleep_then_write = "import sys, time\ntime.sleep({})\nopen(sys.argv[1], 'w').write('%PDF')\n"
        cleanup_b = MagicMock()
        job_a = _job(tmp_path / "a", sleep_then_write.format(0.3))
        job_b = _job(tmp_path / "b", sleep_then_write.format(0.8), handlers=[cleanup_b])

        async def _start_later():
            await asyncio.sleep(0.1)
            return await ProcessOrchestrator().run(job_b)

        async def _check_while_b_runs():
            await asyncio.sleep(0.55)
            # A has finished; B must still be covered
            handler = signal.getsignal(signal.SIGINT)
            cleanup_b.assert_not_called()
            return handler

        result_a, result_b, mid_handler = await asyncio.gather(
            ProcessOrchestrator().run(job_a), _start_later(), _check_while_b_runs()
        )

        assert result_a.success and result_b.success
        assert mid_handler != before[signal.SIGINT]
        assert {sig: signal.getsignal(sig) for sig in SignalGuard.SIGNALS} == before
        cleanup_b.assert_called_once()

    @pytest.mark.asyncio
    async def test_split_multibyte_output(self, tmp_path):
        # The two bytes of the e-acute straddle the first 4096-byte read
        script = (
            "import sys\n"
            "sys.stderr.buffer.write(b'x' * 4095 + '\\u00e9 error: missing\\n'.encode())\n"
            "sys.exit(1)\n"
        )
        result = await ProcessOrchestrator().run(_job(tmp_path, script))
        assert "\ufffd" not in result.stderr
        assert result.error == "Pandoc conversion failed: " + "x" * 4095 + "\u00e9 error: missing"


class TestSignalGuard:
    def test_installs_and_restores(self):
        before = {sig: signal.getsignal(sig) for sig in SignalGuard.SIGNALS}
        with SignalGuard(lambda: None) as guard:
            assert set(guard.installed_signals) == set(SignalGuard.SIGNALS)
            assert signal.getsignal(signal.SIGINT) != before[signal.SIGINT]
        assert {sig: signal.getsignal(sig) for sig in SignalGuard.SIGNALS} == before
        assert guard.installed_signals == []

    def test_can_skip_signal_installation(self):
        before = signal.getsignal(signal.SIGINT)
        with SignalGuard(lambda: None, install_signals=False) as guard:
            assert guard.installed_signals == []
            assert signal.getsignal(signal.SIGINT) == before

    def test_fires_once_and_chains(self):
        callback = MagicMock()
        previous = MagicMock()
        original = signal.signal(signal.SIGTERM, previous)
        try:
            with SignalGuard(callback) as guard:
                signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)
                guard.fire()
            callback.assert_called_once()
            previous.assert_called_once_with(signal.SIGTERM, None)
        finally:
            signal.signal(signal.SIGTERM, original)

    def test_default_handler_exits(self):
        original = signal.signal(signal.SIGTERM, signal.SIG_DFL)
        try:
            with SignalGuard(MagicMock()):
                with pytest.raises(SystemExit) as exc:
                    signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)
            assert exc.value.code == 128 + signal.SIGTERM
        finally:
            signal.signal(signal.SIGTERM, original)

    def test_signal_fires_every_active_guard(self):
        first, second = MagicMock(), MagicMock()
        previous = MagicMock()
        original = signal.signal(signal.SIGTERM, previous)
        try:
            with SignalGuard(first), SignalGuard(second):
                signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)
            first.assert_called_once()
            second.assert_called_once()
            previous.assert_called_once_with(signal.SIGTERM, None)
        finally:
            signal.signal(signal.SIGTERM, original)

    def test_out_of_order_exit(self):
        before = {sig: signal.getsignal(sig) for sig in SignalGuard.SIGNALS}
        early, late = MagicMock(), MagicMock()
        previous = MagicMock()
        original = signal.signal(signal.SIGTERM, previous)
        before[signal.SIGTERM] = previous
        try:
            first = SignalGuard(early).__enter__()
            second = SignalGuard(late).__enter__()
            first.__exit__(None, None, None)

            # The guard still running keeps the shared hook
            assert second.installed_signals
            handler = signal.getsignal(signal.SIGTERM)
            assert handler != previous
            handler(signal.SIGTERM, None)
            early.assert_not_called()
            late.assert_called_once()

            second.__exit__(None, None, None)
            assert {sig: signal.getsignal(sig) for sig in SignalGuard.SIGNALS} == before
        finally:
            signal.signal(signal.SIGTERM, original)
