"""Converts ``[[Note#Heading|alias]]`` wikilinks to portable markdown links."""

from __future__ import annotations

import re

from .models import PreprocessingResult
from .pipeline import TransformStage

_WIKILINK_RE = re.compile(r"\[\[([^#|\]]+)(?:#([^|\]]+))?(?:\|([^\]]+))?\]\]")
# [[#Heading]] and [[#Heading|alias]] point into the current note
_SELF_LINK_RE = re.compile(r"\[\[#([^|\]]+)(?:\|([^\]]+))?\]\]")

_UNSAFE_CHARS_RE = re.compile(r'[<>:"|?*]')
_WHITESPACE_RE = re.compile(r"\s+")
_SEPARATOR_RE = re.compile(r"[\\/]")


def sanitize_file_path(path: str) -> str:
    """Replace filename-hostile characters, percent-encode spaces, use ``/``."""
    path = _UNSAFE_CHARS_RE.sub("_", path)
    path = _WHITESPACE_RE.sub("%20", path)
    return _SEPARATOR_RE.sub("/", path)


def slugify_heading(heading: str) -> str:
    """Anchor slug: lowercase, spaces to hyphens, drop non-word chars."""
    slug = _WHITESPACE_RE.sub("-", heading.strip().lower())
    slug = re.sub(r"[^\w\-]", "", slug)
    return re.sub(r"-{2,}", "-", slug)


class WikilinkStage(TransformStage):
    def __init__(self, extension: str = ".md", base_url: str | None = None):
        self.extension = extension
        self.base_url = base_url

    def apply(self, content: str, result: PreprocessingResult) -> str:
        content = _SELF_LINK_RE.sub(self._rewrite_self_link, content)
        return _WIKILINK_RE.sub(lambda m: self._rewrite(m, result), content)

    def _rewrite(self, m: re.Match, result: PreprocessingResult) -> str:
        note = m.group(1).strip()
        heading = (m.group(2) or "").strip()
        alias = (m.group(3) or "").strip()

        if not note:
            result.warnings.append(f"Empty wikilink path found: {m.group(0)}")
            return m.group(0)

        target = self.link_target(note, heading)
        if alias:
            display = alias
        elif heading:
            display = f"{note}#{heading}"
        else:
            display = note
        return f"[{display}]({target})"

    def _rewrite_self_link(self, m: re.Match) -> str:
        heading = m.group(1).strip()
        display = (m.group(2) or "").strip() or heading
        return f"[{display}](#{slugify_heading(heading)})"

    def link_target(self, note: str, heading: str = "") -> str:
        path = sanitize_file_path(note)
        # Don't double up when the author already wrote the extension
        if self.extension and not path.lower().endswith(self.extension.lower()):
            path += self.extension
        if heading:
            path += f"#{slugify_heading(heading)}"
        if self.base_url:
            path = f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        return path
