"""Checks for the external tools the exporter shells out to."""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass

from vellum.config.models import VellumConfig
from vellum.paths import augmented_env, resolve_executable

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"(\d+\.\d+(?:\.\d+)*)")


@dataclass(frozen=True)
class ToolSpec:
    name: str
    version_flag: str
    required: bool
    purpose: str


TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec("pandoc", "--version", True, "markdown to PDF conversion"),
    ToolSpec("typst", "--version", True, "PDF engine"),
    ToolSpec("magick", "--version", False, "legacy image format conversion"),
    ToolSpec("pdftoppm", "-v", False, "PDF page previews"),
)


@dataclass(frozen=True)
class DependencyStatus:
    name: str
    executable: str
    found: bool
    required: bool
    purpose: str
    version: str | None = None
    error: str | None = None


class DependencyChecker:
    def __init__(self, config: VellumConfig, timeout: float = 10) -> None:
        self.config = config
        self.timeout = timeout

    def _explicit_path(self, name: str) -> str | None:
        return getattr(self.config, f"{name}_path", None)

    def check(self, spec: ToolSpec) -> DependencyStatus:
        executable = resolve_executable(spec.name, self._explicit_path(spec.name), self.config.additional_paths)
        common = dict(name=spec.name, executable=executable, required=spec.required, purpose=spec.purpose)
        try:
            proc = subprocess.run(
                [executable, spec.version_flag],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=augmented_env(self.config.additional_paths),
            )
        except FileNotFoundError:
            return DependencyStatus(found=False, error="not found", **common)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("%s version check failed: %s", spec.name, e)
            return DependencyStatus(found=False, error=str(e), **common)

        # pdftoppm prints its version on stderr
        output = proc.stdout or proc.stderr
        if proc.returncode != 0 and not output:
            return DependencyStatus(found=False, error=f"exited with {proc.returncode}", **common)
        match = _VERSION_RE.search(output)
        return DependencyStatus(found=True, version=match.group(1) if match else None, **common)

    def check_all(self) -> list[DependencyStatus]:
        return [self.check(spec) for spec in TOOLS]

    def missing_required(self) -> list[DependencyStatus]:
        return [s for s in self.check_all() if s.required and not s.found]
