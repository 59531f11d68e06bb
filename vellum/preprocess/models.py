"""Working records threaded through the preprocessing stages."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

MARKER_PREFIX = "⟦vellum-embed:"
MARKER_SUFFIX = "⟧"

# Matches any marker token emitted by ``EmbedMarker.marker``
MARKER_RE = re.compile(re.escape(MARKER_PREFIX) + r"([0-9a-f]{32})" + re.escape(MARKER_SUFFIX))


class EmbedKind(str, Enum):
    IMAGE = "image"
    PDF = "pdf"
    FILE = "file"


@dataclass(frozen=True)
class EmbedMarker:
    """One deferred embed directive.

    ``marker`` is the token left in the document text at the position of the
    original ``![[...]]`` directive; it is replaced during resolution.
    """

    kind: EmbedKind
    original_path: str
    sanitized_path: str
    file_name: str
    base_name: str
    extension: str
    options: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def marker(self) -> str:
        return f"{MARKER_PREFIX}{self.id}{MARKER_SUFFIX}"

    @property
    def is_remote(self) -> bool:
        return self.original_path.startswith(("http://", "https://"))


@dataclass
class DocumentMetadata:
    tags: set[str] = field(default_factory=set)
    frontmatter: dict[str, Any] | None = None
    title: str | None = None
    pdf_embeds: list[EmbedMarker] = field(default_factory=list)
    image_embeds: list[EmbedMarker] = field(default_factory=list)
    file_embeds: list[EmbedMarker] = field(default_factory=list)
    word_count: int = 0

    def queue_for(self, kind: EmbedKind) -> list[EmbedMarker]:
        if kind is EmbedKind.IMAGE:
            return self.image_embeds
        if kind is EmbedKind.PDF:
            return self.pdf_embeds
        return self.file_embeds


@dataclass
class PreprocessingResult:
    content: str
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    pending: dict[str, EmbedMarker] = field(default_factory=dict)

    def enqueue(self, marker: EmbedMarker) -> None:
        """Register a pending embed in its kind queue and the id index."""
        self.metadata.queue_for(marker.kind).append(marker)
        self.pending[marker.id] = marker

    @property
    def embeds(self) -> list[EmbedMarker]:
        """All pending embeds in document order."""
        return list(self.pending.values())
