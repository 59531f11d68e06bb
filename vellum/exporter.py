"""Note and batch export: preprocess, resolve embeds, render."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Callable

from vellum.config.models import VellumConfig
from vellum.errors import ConversionCancelled, VellumError
from vellum.models import BatchReport, ConversionJob, ConversionResult, Document, ExportError, ExportResult
from vellum.paths import PathResolutionUtility, augmented_env, validate_output_path
from vellum.preprocess import PreprocessingPipeline, PreprocessOptions
from vellum.render import PandocCommandBuilder, ProcessOrchestrator, RenderRequest, ResourcePathCache
from vellum.resolve import (
    EmbedResolutionEngine,
    ImageTranscoder,
    LinkResolver,
    MagickTranscoder,
    PageRasterizer,
    PdftoppmRasterizer,
    RemoteImageFetcher,
    VaultLinkResolver,
)
from vellum.tempdirs import TempWorkspace
from vellum.template_manager import ensure_templates

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int], None]

DEFAULT_TEMPLATES_DIR = ".vellum/templates"


class Exporter:
    """Exports notes under one document root to PDF.

    Owns the resource-path cache, the command builder and the helper tools.
    Each export gets its own temp workspace and its own orchestrator so
    concurrent exports never share mutable renderer state.
    """

    def __init__(
        self,
        config: VellumConfig,
        root: str | Path,
        *,
        cache: ResourcePathCache | None = None,
        link_resolver: LinkResolver | None = None,
        transcoder: ImageTranscoder | None = None,
        rasterizer: PageRasterizer | None = None,
        fetcher: RemoteImageFetcher | None = None,
        orchestrator_factory: Callable[..., ProcessOrchestrator] = ProcessOrchestrator,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        self.config = config
        self.paths = PathResolutionUtility(root)
        self.root = self.paths.root
        self.cache = cache or ResourcePathCache()
        self.builder = PandocCommandBuilder(config, self.cache, self.templates_dir)
        self.link_resolver = link_resolver or VaultLinkResolver(self.paths)
        self.transcoder = transcoder or MagickTranscoder(
            config.magick_path, config.additional_paths, timeout=config.timeout
        )
        self.rasterizer = rasterizer or PdftoppmRasterizer(
            config.pdftoppm_path, config.additional_paths, timeout=config.timeout
        )
        self.fetcher = fetcher or RemoteImageFetcher(
            timeout=config.resolution.fetch_timeout,
            max_redirects=config.resolution.max_redirects,
        )
        self.orchestrator_factory = orchestrator_factory
        self.progress_callback = progress_callback
        self._cancel = asyncio.Event()
        self._active: set[ProcessOrchestrator] = set()

    @property
    def templates_dir(self) -> Path:
        if self.config.templates_dir:
            path = Path(self.config.templates_dir).expanduser()
            return path if path.is_absolute() else self.root / path
        return self.root / DEFAULT_TEMPLATES_DIR

    def cancel(self) -> None:
        """Cancel every running and not-yet-started export."""
        self._cancel.set()
        for orchestrator in list(self._active):
            orchestrator.cancel()

    # ------------------------------------------------------------------
    # Single note
    # ------------------------------------------------------------------

    async def export_note(
        self,
        path: str | Path,
        *,
        template: str | None = None,
        variables: dict[str, Any] | None = None,
        output_folder: str | None = None,
    ) -> ExportResult:
        start = time.monotonic()
        source = str(path)
        try:
            return await self._export(path, template, variables, output_folder, start)
        except ConversionCancelled:
            return ExportResult(
                source=source, success=False, error="Conversion cancelled", duration=time.monotonic() - start
            )
        except (VellumError, OSError, ValueError) as e:
            logger.error("Export of %s failed: %s", source, e)
            return ExportResult(source=source, success=False, error=str(e), duration=time.monotonic() - start)

    async def _export(
        self,
        path: str | Path,
        template: str | None,
        variables: dict[str, Any] | None,
        output_folder: str | None,
        start: float,
    ) -> ExportResult:
        if self._cancel.is_set():
            raise ConversionCancelled("Export cancelled before start")

        doc = Document.from_file(self.paths.join(path), self.root)
        stem = doc.source_path.stem
        behavior = self.config.behavior

        self._report("Preprocessing markdown...", 10)
        options = PreprocessOptions(
            note_title=stem,
            include_metadata=behavior.include_metadata,
            preserve_frontmatter=behavior.preserve_frontmatter,
            print_frontmatter=behavior.print_frontmatter,
            convert_horizontal_rules=behavior.convert_horizontal_rules,
        )
        result = PreprocessingPipeline.default(options).run(doc.body)

        workspace = TempWorkspace(self.paths).create()
        handed_off = False
        try:
            self._report("Resolving embeds...", 20)
            engine = EmbedResolutionEngine(
                self.paths,
                workspace,
                link_resolver=self.link_resolver,
                transcoder=self.transcoder,
                rasterizer=self.rasterizer,
                fetcher=self.fetcher,
                embed_pdf_files=behavior.embed_pdf_files,
                embed_all_files=behavior.embed_all_files,
                max_concurrency=self.config.resolution.max_concurrency,
                cancel_event=self._cancel,
            )
            await engine.resolve(result, doc.source_path)

            markdown_path = workspace.pandoc_dir / f"{stem}.md"
            markdown_path.write_text(result.content, encoding="utf-8")

            output_path = self.output_path_for(doc, output_folder)
            request = RenderRequest(
                input_path=markdown_path,
                output_path=output_path,
                root=self.root,
                template=template or self.config.export_defaults.template,
                variables=dict(variables or {}),
            )
            self._report("Building Pandoc command...", 30)
            ensure_templates(self.templates_dir)
            argv = self.builder.build(request)

            if behavior.debug_mode:
                await self._write_intermediate(request, output_path.with_suffix(".typ"))

            job = ConversionJob(
                input_path=markdown_path,
                output_path=output_path,
                argv=argv,
                working_dir=self.root,
                timeout=self.config.timeout,
                env=augmented_env(self.config.additional_paths),
            )
            if not behavior.keep_temp_files:
                job.cleanup_handlers.append(workspace.cleanup)
            handed_off = True
            conversion = await self._run_job(job)
        finally:
            if not handed_off and not behavior.keep_temp_files:
                workspace.cleanup()

        if conversion.success:
            self._report("Export complete", 100)
        return ExportResult(
            source=self.paths.relative(self.paths.join(doc.source_path)),
            success=conversion.success,
            output_path=conversion.output_path,
            error=conversion.error,
            warnings=result.warnings,
            errors=result.errors,
            duration=time.monotonic() - start,
        )

    def output_path_for(self, doc: Document, output_folder: str | None = None) -> Path:
        folder = validate_output_path(output_folder or self.config.output_folder)
        parts: list[str | Path] = [folder]
        if self.config.preserve_folder_structure and doc.source_path.parent != Path("."):
            parts.append(doc.source_path.parent)
        directory = self.paths.ensure_dir(*parts)
        return directory / f"{doc.source_path.stem}.pdf"

    async def _run_job(self, job: ConversionJob) -> ConversionResult:
        orchestrator = self.orchestrator_factory(progress_callback=self.progress_callback)
        self._active.add(orchestrator)
        try:
            if self._cancel.is_set():
                orchestrator.cancel()
            return await orchestrator.run(job)
        finally:
            self._active.discard(orchestrator)

    async def _write_intermediate(self, request: RenderRequest, typst_path: Path) -> None:
        job = ConversionJob(
            input_path=request.input_path,
            output_path=typst_path,
            argv=self.builder.build_intermediate(request, typst_path),
            working_dir=self.root,
            timeout=self.config.timeout,
            env=augmented_env(self.config.additional_paths),
        )
        conversion = await self._run_job(job)
        if conversion.success:
            logger.info("Intermediate Typst written to %s", typst_path)
        else:
            logger.warning("Intermediate Typst generation failed: %s", conversion.error)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def export_batch(self, paths: list[str | Path], **kwargs: Any) -> BatchReport:
        """Export many notes, ``behavior.export_concurrency`` at a time."""
        start = time.monotonic()
        sem = asyncio.Semaphore(self.config.behavior.export_concurrency)

        async def _bounded(path: str | Path) -> ExportResult:
            async with sem:
                return await self.export_note(path, **kwargs)

        results = await asyncio.gather(*(_bounded(p) for p in paths))
        report = BatchReport(results=list(results), duration=time.monotonic() - start)
        for r in results:
            if r.success:
                report.successful += 1
            else:
                report.failed += 1
                report.errors.append(ExportError(file=r.source, error=r.error or "Unknown error"))
        logger.info("Batch export: %d succeeded, %d failed", report.successful, report.failed)
        return report

    def _report(self, message: str, percent: int) -> None:
        if self.progress_callback is not None:
            self.progress_callback(message, percent)
