"""Strips host-only helper links that have no meaning outside the vault."""

import re

from .models import PreprocessingResult
from .pipeline import TransformStage

# [[file|Open: file]] links added by mail/import plugins
_OPEN_LINK_RE = re.compile(r"\[\[.*?\|Open:.*?\]\]")
_MAIL_APP_LINK_RE = re.compile(r"\[Open in Mail\.app\]\(message://[^)]+\)")
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")


class LinkFilterStage(TransformStage):
    def apply(self, content: str, result: PreprocessingResult) -> str:
        return filter_unnecessary_links(content)


def filter_unnecessary_links(text: str) -> str:
    text = _OPEN_LINK_RE.sub("", text)
    text = _MAIL_APP_LINK_RE.sub("", text)
    return _EXCESS_NEWLINES_RE.sub("\n\n", text)
