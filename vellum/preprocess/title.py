"""Final metadata pass: title fallback and word count."""

import re

from .models import MARKER_RE, PreprocessingResult
from .pipeline import TransformStage

_HEADING_RE = re.compile(r"^#+\s+(.+)$", re.MULTILINE)
_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\n.*?\n---[ \t]*(?:\n|\Z)", re.DOTALL)


def extract_title(content: str) -> str | None:
    m = _HEADING_RE.search(content)
    return m.group(1).strip() if m else None


def word_count(content: str) -> int:
    body = _FRONTMATTER_RE.sub("", content, count=1)
    body = MARKER_RE.sub(" ", body)
    return len(body.split())


class TitleBackfillStage(TransformStage):
    def apply(self, content: str, result: PreprocessingResult) -> str:
        result.metadata.word_count = word_count(content)
        if not result.metadata.title:
            result.metadata.title = extract_title(content)
        return content
