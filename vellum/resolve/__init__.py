"""Deferred embed resolution: markers in, resolved markdown out."""

from .engine import EmbedOutcome, EmbedResolutionEngine, EmbedState, ResolutionReport
from .fetch import RemoteImageFetcher
from .helpers import (
    HelperResult,
    ImageTranscoder,
    MagickTranscoder,
    PageRasterizer,
    PdftoppmRasterizer,
    RasterOptions,
    is_valid_pdf,
)
from .host import LinkResolver, VaultLinkResolver

__all__ = [
    "EmbedOutcome",
    "EmbedResolutionEngine",
    "EmbedState",
    "HelperResult",
    "ImageTranscoder",
    "LinkResolver",
    "MagickTranscoder",
    "PageRasterizer",
    "PdftoppmRasterizer",
    "RasterOptions",
    "RemoteImageFetcher",
    "ResolutionReport",
    "VaultLinkResolver",
    "is_valid_pdf",
]
