"""External helper tools: ImageMagick transcoding and PDF page rasterization.

Both are consumed through small protocols returning ``HelperResult`` so the
resolution engine never depends on a particular binary. Failures are values,
not exceptions.
"""

from __future__ import annotations

import asyncio
import logging
import struct
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from vellum.errors import HelperToolError
from vellum.paths import augmented_env, resolve_executable

logger = logging.getLogger(__name__)

# Raster formats Typst cannot place directly
TRANSCODE_EXTENSIONS: frozenset[str] = frozenset({".bmp", ".tiff", ".tif", ".heic", ".ico"})

_PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


@dataclass(frozen=True)
class HelperResult:
    success: bool
    output_path: Path | None = None
    dimensions: tuple[int, int] | None = None
    error: str | None = None


@dataclass(frozen=True)
class RasterOptions:
    scale: float = 1.5
    max_width: int = 800
    max_height: int = 600
    format: str = "png"


class ImageTranscoder(Protocol):
    async def convert(self, source: Path, output_dir: Path) -> HelperResult: ...


class PageRasterizer(Protocol):
    async def rasterize(self, pdf: Path, output_dir: Path, options: RasterOptions) -> HelperResult: ...


def is_valid_pdf(path: Path) -> bool:
    """True when the file starts with the ``%PDF`` signature."""
    try:
        with open(path, "rb") as f:
            return f.read(4) == b"%PDF"
    except OSError:
        return False


def png_dimensions(path: Path) -> tuple[int, int] | None:
    """Read width/height from a PNG IHDR chunk."""
    try:
        with open(path, "rb") as f:
            header = f.read(24)
    except OSError:
        return None
    if len(header) < 24 or not header.startswith(_PNG_SIGNATURE):
        return None
    width, height = struct.unpack(">II", header[16:24])
    return width, height


def _run_tool(tool: str, argv: list[str], operation: str, timeout: float, env: dict[str, str]) -> str:
    try:
        proc = subprocess.run(argv, capture_output=True, text=True, timeout=timeout, env=env)
    except FileNotFoundError as e:
        raise HelperToolError(tool, operation, e) from e
    except subprocess.TimeoutExpired as e:
        raise HelperToolError(tool, operation, f"timed out after {timeout}s") from e
    if proc.returncode != 0:
        detail = proc.stderr.strip().splitlines()[0] if proc.stderr.strip() else f"exit code {proc.returncode}"
        raise HelperToolError(tool, operation, detail)
    return proc.stdout


class MagickTranscoder:
    """Converts legacy raster formats to PNG with ``magick``."""

    def __init__(
        self,
        executable: str | None = None,
        additional_paths: list[str] | None = None,
        timeout: float = 60,
    ) -> None:
        self._additional_paths = additional_paths
        self.executable = resolve_executable("magick", executable, additional_paths)
        self.timeout = timeout

    async def convert(self, source: Path, output_dir: Path) -> HelperResult:
        output_dir.mkdir(parents=True, exist_ok=True)
        target = output_dir / f"{source.stem}.png"
        # [0] picks the first frame of multi-image containers (ico, tiff)
        argv = [self.executable, f"{source}[0]", str(target)]
        try:
            await asyncio.to_thread(
                _run_tool, "magick", argv, "transcode", self.timeout, augmented_env(self._additional_paths)
            )
        except HelperToolError as e:
            logger.warning("%s", e)
            return HelperResult(success=False, error=str(e))

        if not target.is_file():
            return HelperResult(success=False, error=f"magick produced no output for {source.name}")
        return HelperResult(success=True, output_path=target, dimensions=png_dimensions(target))


class PdftoppmRasterizer:
    """Renders the first page of a PDF to PNG with poppler's ``pdftoppm``."""

    def __init__(
        self,
        executable: str | None = None,
        additional_paths: list[str] | None = None,
        timeout: float = 60,
    ) -> None:
        self._additional_paths = additional_paths
        self.executable = resolve_executable("pdftoppm", executable, additional_paths)
        self.timeout = timeout

    async def rasterize(self, pdf: Path, output_dir: Path, options: RasterOptions) -> HelperResult:
        if not is_valid_pdf(pdf):
            return HelperResult(success=False, error=f"{pdf.name} is not a valid PDF")

        output_dir.mkdir(parents=True, exist_ok=True)
        prefix = output_dir / f"{pdf.stem}_page"
        argv = [
            self.executable,
            f"-{options.format}",
            "-f", "1",
            "-l", "1",
            "-r", str(round(72 * options.scale)),
            "-scale-to", str(max(options.max_width, options.max_height)),
            "-singlefile",
            str(pdf),
            str(prefix),
        ]
        try:
            await asyncio.to_thread(
                _run_tool, "pdftoppm", argv, "rasterize", self.timeout, augmented_env(self._additional_paths)
            )
        except HelperToolError as e:
            logger.warning("%s", e)
            return HelperResult(success=False, error=str(e))

        return find_generated_file(output_dir, prefix.name, options.format)


def find_generated_file(output_dir: Path, stem: str, extension: str) -> HelperResult:
    """Locate a helper's output file, failing when the match is ambiguous."""
    exact = output_dir / f"{stem}.{extension}"
    if exact.is_file():
        return HelperResult(success=True, output_path=exact, dimensions=png_dimensions(exact))

    candidates = sorted(output_dir.glob(f"{stem}*.{extension}"))
    if not candidates:
        return HelperResult(success=False, error=f"no output matching {stem}*.{extension}")
    if len(candidates) > 1:
        names = ", ".join(c.name for c in candidates)
        return HelperResult(success=False, error=f"ambiguous helper output: {names}")
    return HelperResult(success=True, output_path=candidates[0], dimensions=png_dimensions(candidates[0]))
