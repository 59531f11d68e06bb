"""Job and result models shared by the renderer and the exporter."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Document:
    body: str
    source_path: Path
    root: Path

    @classmethod
    def from_file(cls, path: str | Path, root: str | Path) -> Document:
        root = Path(root).resolve()
        path = Path(path).resolve()
        return cls(body=path.read_text(encoding="utf-8"), source_path=path.relative_to(root), root=root)


@dataclass
class ConversionJob:
    """Everything one renderer invocation needs. Single use."""

    input_path: Path
    output_path: Path
    argv: list[str]
    working_dir: Path
    timeout: float = 60.0
    env: dict[str, str] | None = None
    cleanup_handlers: list[Callable[[], None]] = field(default_factory=list)

    def run_cleanup(self) -> None:
        """Run each cleanup handler exactly once, whatever happens to the others."""
        while self.cleanup_handlers:
            handler = self.cleanup_handlers.pop(0)
            try:
                handler()
            except Exception:
                logger.warning("cleanup handler %r failed", handler, exc_info=True)


class ConversionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    output_path: str | None = None
    stdout: str | None = None
    stderr: str | None = None
    exit_code: int | None = None
    error: str | None = None
    timed_out: bool = False
    cancelled: bool = False
    duration: float = 0.0


class ExportResult(BaseModel):
    source: str
    success: bool
    output_path: str | None = None
    error: str | None = None
    warnings: list[str] = []
    errors: list[str] = []
    duration: float = 0.0


class ExportError(BaseModel):
    file: str
    error: str


class BatchReport(BaseModel):
    successful: int = 0
    failed: int = 0
    errors: list[ExportError] = []
    results: list[ExportResult] = []
    duration: float = 0.0
