"""Resolves pending embed markers against the filesystem and network.

Each marker queued by the preprocessing pipeline moves through
``QUEUED -> RESOLVING -> RESOLVED | RESOLVED_WITH_FALLBACK | FAILED``.
Markers resolve concurrently (bounded by a semaphore); the document text is
rewritten afterwards in a single token-matching pass so the output does not
depend on completion order.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
import re
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from urllib.parse import unquote

from vellum.errors import ConversionCancelled, FetchError, UnresolvedMarkerError, UnsafePathError
from vellum.paths import PathResolutionUtility
from vellum.preprocess.callouts import escape_typst_string
from vellum.preprocess.models import MARKER_RE, EmbedKind, EmbedMarker, PreprocessingResult
from vellum.tempdirs import TempWorkspace

from .fetch import RemoteImageFetcher
from .helpers import TRANSCODE_EXTENSIONS, ImageTranscoder, PageRasterizer, RasterOptions
from .host import LinkResolver
from .mime import icon_for, mime_type_for

logger = logging.getLogger(__name__)

ATTACHMENTS_DIR = "attachments"

_SIZE_RE = re.compile(r"^(\d+)(?:x(\d+))?$")
_PREVIEW_NAME_RE = re.compile(r"[^A-Za-z0-9_-]")

# Strategies whose hit counts as a clean resolution
_PRIMARY_STRATEGIES = {"host", "root", "remote"}


class EmbedState(str, Enum):
    QUEUED = "queued"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    RESOLVED_WITH_FALLBACK = "resolved_with_fallback"
    FAILED = "failed"


@dataclass
class EmbedOutcome:
    marker: EmbedMarker
    state: EmbedState = EmbedState.QUEUED
    replacement: str = ""
    resolved_path: Path | None = None
    strategy: str | None = None
    notes: list[str] = field(default_factory=list)

    @property
    def terminal(self) -> bool:
        return self.state in (EmbedState.RESOLVED, EmbedState.RESOLVED_WITH_FALLBACK, EmbedState.FAILED)


@dataclass
class ResolutionReport:
    outcomes: dict[str, EmbedOutcome] = field(default_factory=dict)

    def count(self, state: EmbedState) -> int:
        return sum(1 for o in self.outcomes.values() if o.state is state)

    @property
    def failed(self) -> list[EmbedOutcome]:
        return [o for o in self.outcomes.values() if o.state is EmbedState.FAILED]


# ---------------------------------------------------------------------------
# Markup
# ---------------------------------------------------------------------------


def link_destination(rel: str) -> str:
    """Pandoc link target; angle brackets keep spaces and parens intact."""
    if re.search(r"[\s()]", rel):
        return f"<{rel}>"
    return rel


def size_attributes(options: str | None) -> str:
    m = _SIZE_RE.match(options.strip()) if options else None
    if m is None:
        return ""
    width, height = m.groups()
    attrs = f"width={width}px"
    if height:
        attrs += f" height={height}px"
    return "{" + attrs + "}"


def image_markup(marker: EmbedMarker, rel: str) -> str:
    size = size_attributes(marker.options)
    # Non-size options are alt text, as in ![[img.png|A caption]]
    alt = marker.base_name if size or not marker.options else marker.options
    return f"![{alt}]({link_destination(rel)}){size}"


def pdf_markup(marker: EmbedMarker, rel_pdf: str, rel_preview: str | None, embed_original: bool) -> str:
    description = marker.base_name if rel_preview else f"{marker.base_name} (preview not available)"
    lines = []
    if rel_preview:
        lines += [f"![{marker.base_name} - Page 1]({link_destination(rel_preview)})", ""]
    if embed_original:
        lines += [
            "```{=typst}",
            f'#pdf.embed("{escape_typst_string(rel_pdf)}", description: "{escape_typst_string(description)}", '
            'mime-type: "application/pdf")',
            "```",
            "",
            f"*PDF attached: {description} - check your PDF reader's attachment panel*",
        ]
    elif not rel_preview:
        lines.append(f"[📄 {description}]({link_destination(rel_pdf)})")
    return "\n".join(lines).rstrip("\n")


def file_markup(marker: EmbedMarker, rel: str, embed: bool) -> str:
    icon = icon_for(marker.extension)
    if not embed:
        return f"[{icon} {marker.file_name}]({link_destination(rel)})"
    return "\n".join([
        "```{=typst}",
        f'#pdf.embed("{escape_typst_string(rel)}", description: "{escape_typst_string(marker.base_name)}", '
        f'mime-type: "{mime_type_for(marker.extension)}")',
        "```",
        "",
        f"*File attached: {icon} {marker.base_name} - check your PDF reader's attachment panel*",
    ])


def failure_markup(marker: EmbedMarker) -> str:
    if marker.kind is EmbedKind.IMAGE:
        return f"[⚠️ **Image not found:** {marker.original_path}]"
    if marker.kind is EmbedKind.PDF:
        return f"*⚠️ PDF not found: {marker.base_name}*"
    return f"*⚠️ File not found: {marker.base_name}*"


def preview_file_name(base_name: str) -> str:
    name = _PREVIEW_NAME_RE.sub("_", base_name)
    name = re.sub(r"_{2,}", "_", name).strip("_") or "document"
    return f"{name}_preview.png"


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class EmbedResolutionEngine:
    def __init__(
        self,
        paths: PathResolutionUtility,
        workspace: TempWorkspace,
        *,
        link_resolver: LinkResolver | None = None,
        transcoder: ImageTranscoder | None = None,
        rasterizer: PageRasterizer | None = None,
        fetcher: RemoteImageFetcher | None = None,
        embed_pdf_files: bool = True,
        embed_all_files: bool = True,
        max_concurrency: int = 4,
        raster_options: RasterOptions | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self.paths = paths
        self.workspace = workspace
        self.link_resolver = link_resolver
        self.transcoder = transcoder
        self.rasterizer = rasterizer
        self.fetcher = fetcher or RemoteImageFetcher()
        self.embed_pdf_files = embed_pdf_files
        self.embed_all_files = embed_all_files
        self.max_concurrency = max_concurrency
        self.raster_options = raster_options or RasterOptions()
        self.cancel_event = cancel_event or asyncio.Event()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve(self, result: PreprocessingResult, source_path: str | Path) -> ResolutionReport:
        """Resolve every pending marker and rewrite ``result.content``.

        Raises UnresolvedMarkerError if a marker token survives the rewrite
        and ConversionCancelled once replacement is done if cancellation was
        requested meanwhile.
        """
        report = ResolutionReport({mid: EmbedOutcome(m) for mid, m in result.pending.items()})
        source_rel = self.paths.relative(self.paths.join(source_path)) if source_path else ""

        sem = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(outcome: EmbedOutcome) -> None:
            async with sem:
                await self._resolve_one(outcome, source_rel)

        await asyncio.gather(*(_bounded(o) for o in report.outcomes.values()))

        for outcome in report.outcomes.values():
            for note in outcome.notes:
                result.warnings.append(note)

        result.content = self._replace_markers(result.content, report)
        if self.cancel_event.is_set():
            raise ConversionCancelled("Embed resolution cancelled")
        return report

    def locate(self, marker: EmbedMarker, source_rel: str) -> tuple[Path, str] | None:
        """First existing candidate for a local embed as ``(path, strategy)``.

        Touches the filesystem; the engine calls it from a worker thread.
        """
        decoded = unquote(marker.sanitized_path)
        source_dir = posixpath.dirname(source_rel)

        if self.link_resolver is not None:
            hit = self.link_resolver.resolve(marker.original_path, source_rel)
            if hit is not None and Path(hit).is_file():
                return Path(hit), "host"

        candidates: list[tuple[str, tuple[str, ...]]] = [("root", (decoded,))]
        if source_dir:
            candidates.append(("sibling", (source_dir, decoded)))
        if marker.kind is EmbedKind.IMAGE:
            candidates.append(("attachments", (ATTACHMENTS_DIR, posixpath.basename(decoded))))

        for strategy, parts in candidates:
            try:
                path = self.paths.join(*parts)
            except UnsafePathError:
                logger.warning("Skipping %s candidate for %s: escapes root", strategy, marker.original_path)
                continue
            if path.is_file():
                return path, strategy
        return None

    # ------------------------------------------------------------------
    # Per-kind resolution
    # ------------------------------------------------------------------

    async def _resolve_one(self, outcome: EmbedOutcome, source_rel: str) -> None:
        marker = outcome.marker
        if self.cancel_event.is_set():
            self._fail(outcome, f"Embed skipped (cancelled): {marker.original_path}")
            return

        outcome.state = EmbedState.RESOLVING
        try:
            if marker.kind is EmbedKind.IMAGE:
                await self._resolve_image(outcome, source_rel)
            elif marker.kind is EmbedKind.PDF:
                await self._resolve_pdf(outcome, source_rel)
            else:
                await self._resolve_file(outcome, source_rel)
        except Exception as e:
            logger.warning("Failed to resolve embed %s", marker.original_path, exc_info=True)
            self._fail(outcome, f"Failed to process {marker.kind.value} embed {marker.original_path}: {e}")

    async def _resolve_image(self, outcome: EmbedOutcome, source_rel: str) -> None:
        marker = outcome.marker
        if marker.is_remote:
            try:
                path = await self.fetcher.fetch(marker.original_path, self.workspace.images_dir)
            except FetchError as e:
                self._fail(outcome, str(e))
                return
            strategy = "remote"
        else:
            hit = await asyncio.to_thread(self.locate, marker, source_rel)
            if hit is None:
                self._fail(outcome, f"Image file not found: {marker.original_path}")
                return
            path, strategy = hit

        fallback = strategy not in _PRIMARY_STRATEGIES
        if marker.extension in TRANSCODE_EXTENSIONS and self.transcoder is not None:
            converted = await self.transcoder.convert(path, self._scratch(self.workspace.images_dir, marker))
            if converted.success and converted.output_path is not None:
                path = converted.output_path
            else:
                outcome.notes.append(f"Could not convert {marker.file_name}, using original: {converted.error}")
                fallback = True

        self._succeed(outcome, path, strategy, image_markup(marker, self.paths.relative(path)), fallback)

    async def _resolve_pdf(self, outcome: EmbedOutcome, source_rel: str) -> None:
        marker = outcome.marker
        hit = await asyncio.to_thread(self.locate, marker, source_rel)
        if hit is None:
            self._fail(outcome, f"PDF file not found: {unquote(marker.sanitized_path)}")
            return
        path, strategy = hit
        fallback = strategy not in _PRIMARY_STRATEGIES

        rel_preview = None
        if self.rasterizer is not None:
            preview = await self.rasterizer.rasterize(
                path, self._scratch(self.workspace.pandoc_dir, marker), self.raster_options
            )
            if preview.success and preview.output_path is not None:
                target_dir = self._scratch(self.workspace.images_dir, marker)
                target_dir.mkdir(parents=True, exist_ok=True)
                target = target_dir / preview_file_name(marker.base_name)
                shutil.copyfile(preview.output_path, target)
                rel_preview = self.paths.relative(target)
            else:
                outcome.notes.append(f"PDF preview failed for {marker.file_name}: {preview.error}")
                fallback = True
        else:
            fallback = True

        markup = pdf_markup(marker, self.paths.relative(path), rel_preview, self.embed_pdf_files)
        self._succeed(outcome, path, strategy, markup, fallback)

    async def _resolve_file(self, outcome: EmbedOutcome, source_rel: str) -> None:
        marker = outcome.marker
        if marker.is_remote:
            markup = f"[{icon_for(marker.extension)} {marker.file_name}]({marker.original_path})"
            self._succeed(outcome, None, "remote", markup, False)
            return

        hit = await asyncio.to_thread(self.locate, marker, source_rel)
        if hit is None:
            self._fail(outcome, f"File not found: {unquote(marker.sanitized_path)}")
            return
        path, strategy = hit
        markup = file_markup(marker, self.paths.relative(path), self.embed_all_files)
        self._succeed(outcome, path, strategy, markup, strategy not in _PRIMARY_STRATEGIES)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    @staticmethod
    def _scratch(base: Path, marker: EmbedMarker) -> Path:
        """Per-marker helper output directory; same-named embeds never share files."""
        return base / marker.id

    def _succeed(self, outcome: EmbedOutcome, path: Path | None, strategy: str, markup: str, fallback: bool) -> None:
        outcome.resolved_path = path
        outcome.strategy = strategy
        outcome.replacement = markup
        outcome.state = EmbedState.RESOLVED_WITH_FALLBACK if fallback else EmbedState.RESOLVED
        logger.debug("resolved %s via %s", outcome.marker.original_path, strategy)

    def _fail(self, outcome: EmbedOutcome, note: str) -> None:
        logger.warning(note)
        outcome.notes.append(note)
        outcome.replacement = failure_markup(outcome.marker)
        outcome.state = EmbedState.FAILED

    def _replace_markers(self, content: str, report: ResolutionReport) -> str:
        replaced: set[str] = set()
        unknown: list[str] = []

        def _swap(m: re.Match) -> str:
            mid = m.group(1)
            outcome = report.outcomes.get(mid)
            if outcome is None or mid in replaced or not outcome.terminal:
                unknown.append(mid)
                return m.group(0)
            replaced.add(mid)
            return outcome.replacement

        content = MARKER_RE.sub(_swap, content)
        if unknown:
            raise UnresolvedMarkerError(unknown)

        missing = set(report.outcomes) - replaced
        if missing:
            logger.warning("%d embed marker(s) vanished from the text before resolution", len(missing))
        return content
