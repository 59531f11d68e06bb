"""Ordered text-rewrite stages that turn note markdown into Pandoc markdown."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from .models import PreprocessingResult

logger = logging.getLogger(__name__)


@dataclass
class PreprocessOptions:
    note_title: str | None = None
    include_metadata: bool = True
    preserve_frontmatter: bool = True
    print_frontmatter: bool = False
    convert_horizontal_rules: bool = False
    link_extension: str = ".md"
    base_url: str | None = None


class TransformStage(ABC):
    """A text -> text rewrite over one shared PreprocessingResult.

    Stages record recoverable problems in ``result.warnings`` or
    ``result.errors`` and return the text unchanged for directives they
    cannot handle.
    """

    @abstractmethod
    def apply(self, content: str, result: PreprocessingResult) -> str: ...

    @property
    def name(self) -> str:
        return type(self).__name__


class PreprocessingPipeline:
    def __init__(self, stages: list[TransformStage]):
        self.stages = stages

    @classmethod
    def default(cls, options: PreprocessOptions | None = None) -> PreprocessingPipeline:
        """The standard stage order. Embed extraction must precede wikilinks."""
        from .callouts import CalloutStage, EmailBlockStage
        from .embeds import EmbedExtractionStage
        from .frontmatter import FrontmatterStage
        from .links import LinkFilterStage
        from .rules import HorizontalRuleStage
        from .title import TitleBackfillStage
        from .wikilinks import WikilinkStage

        options = options or PreprocessOptions()
        stages: list[TransformStage] = [
            FrontmatterStage(
                note_title=options.note_title,
                include_metadata=options.include_metadata,
                preserve_frontmatter=options.preserve_frontmatter,
                print_frontmatter=options.print_frontmatter,
            ),
            EmailBlockStage(),
            LinkFilterStage(),
            EmbedExtractionStage(),
            WikilinkStage(extension=options.link_extension, base_url=options.base_url),
            CalloutStage(),
        ]
        if options.convert_horizontal_rules:
            stages.append(HorizontalRuleStage())
        stages.append(TitleBackfillStage())
        return cls(stages)

    def run(self, content: str) -> PreprocessingResult:
        return self.apply(PreprocessingResult(content=content))

    def apply(self, result: PreprocessingResult) -> PreprocessingResult:
        for stage in self.stages:
            try:
                result.content = stage.apply(result.content, result)
            except Exception as exc:
                # A broken stage must not take the whole document down
                logger.warning("%s failed", stage.name, exc_info=True)
                result.errors.append(f"{stage.name} failed: {exc}")
        return result
