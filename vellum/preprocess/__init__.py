"""Synchronous preprocessing: note markdown in, Pandoc markdown plus pending embeds out."""

from .callouts import CalloutStage, EmailBlockStage
from .embeds import EmbedExtractionStage, classify
from .frontmatter import FrontmatterStage
from .links import LinkFilterStage
from .models import (
    DocumentMetadata,
    EmbedKind,
    EmbedMarker,
    MARKER_RE,
    PreprocessingResult,
)
from .pipeline import PreprocessingPipeline, PreprocessOptions, TransformStage
from .rules import HorizontalRuleStage
from .title import TitleBackfillStage
from .wikilinks import WikilinkStage, sanitize_file_path, slugify_heading

__all__ = [
    "CalloutStage",
    "DocumentMetadata",
    "EmailBlockStage",
    "EmbedExtractionStage",
    "EmbedKind",
    "EmbedMarker",
    "FrontmatterStage",
    "HorizontalRuleStage",
    "LinkFilterStage",
    "MARKER_RE",
    "PreprocessOptions",
    "PreprocessingPipeline",
    "PreprocessingResult",
    "TitleBackfillStage",
    "TransformStage",
    "WikilinkStage",
    "classify",
    "sanitize_file_path",
    "slugify_heading",
]
