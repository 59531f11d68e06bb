"""Replaces ``![[...]]`` embed directives with marker tokens.

Resolution needs the filesystem (and sometimes the network), so this stage
only classifies each directive and queues an ``EmbedMarker``; the resolver
swaps the tokens for real markup later.
"""

from __future__ import annotations

import posixpath
import re

from .models import EmbedKind, EmbedMarker, PreprocessingResult
from .pipeline import TransformStage
from .wikilinks import sanitize_file_path

_EMBED_RE = re.compile(r"!\[\[([^|\]]+)(?:\|([^\]]+))?\]\]")

IMAGE_EXTENSIONS: frozenset[str] = frozenset(
    {".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".bmp", ".ico", ".tiff", ".tif", ".heic"}
)
PDF_EXTENSIONS: frozenset[str] = frozenset({".pdf"})


def file_extension(path: str) -> str:
    """Lower-cased extension including the dot, ignoring any URL query."""
    path = path.split("?", 1)[0].split("#", 1)[0]
    name = path.rsplit("/", 1)[-1]
    dot = name.rfind(".")
    return name[dot:].lower() if dot > 0 else ""


def classify(path: str) -> EmbedKind:
    ext = file_extension(path)
    if ext in IMAGE_EXTENSIONS:
        return EmbedKind.IMAGE
    if ext in PDF_EXTENSIONS:
        return EmbedKind.PDF
    return EmbedKind.FILE


def build_marker(path: str, options: str | None = None) -> EmbedMarker:
    kind = classify(path)
    remote = path.startswith(("http://", "https://"))
    file_name = posixpath.basename(path.split("?", 1)[0].replace("\\", "/")) or path
    ext = file_extension(path)
    base_name = file_name[: -len(ext)] if ext else file_name
    if remote and kind is not EmbedKind.IMAGE:
        # Only images can be fetched; anything else remote is linked as-is
        kind = EmbedKind.FILE
    return EmbedMarker(
        kind=kind,
        original_path=path,
        sanitized_path=path if remote else sanitize_file_path(path),
        file_name=file_name,
        base_name=base_name,
        extension=ext,
        options=options.strip() if options and options.strip() else None,
    )


class EmbedExtractionStage(TransformStage):
    def apply(self, content: str, result: PreprocessingResult) -> str:
        def _replace(m: re.Match) -> str:
            path = m.group(1).strip()
            if not path:
                result.warnings.append(f"Empty embed path found: {m.group(0)}")
                return m.group(0)

            marker = build_marker(path, m.group(2))
            result.enqueue(marker)
            result.warnings.append(
                f"Found {marker.kind.value} embed: {path} - will be processed separately"
            )
            return marker.marker

        return _EMBED_RE.sub(_replace, content)
