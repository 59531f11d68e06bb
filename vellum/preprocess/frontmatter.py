"""Parses the leading YAML block, collects tags and title, optionally prints it."""

from __future__ import annotations

import json
import logging
import re
import textwrap
from typing import Any

import yaml

from .models import PreprocessingResult
from .pipeline import TransformStage

logger = logging.getLogger(__name__)

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\n(.*?)\n---[ \t]*(?:\n|\Z)", re.DOTALL)
_TAG_SPLIT_RE = re.compile(r"[,\s]+")
# Inline #tags; a heading marker is always followed by a space so it never matches
_CONTENT_TAG_RE = re.compile(r"(?<![\w/&#(])#([^\s#\[\]()]+)")
_CODE_FENCE_RE = re.compile(r"^```.*?^```", re.DOTALL | re.MULTILINE)


class FrontmatterStage(TransformStage):
    def __init__(
        self,
        note_title: str | None = None,
        include_metadata: bool = True,
        preserve_frontmatter: bool = True,
        print_frontmatter: bool = False,
    ):
        self.note_title = note_title
        self.include_metadata = include_metadata
        self.preserve_frontmatter = preserve_frontmatter
        self.print_frontmatter = print_frontmatter

    def apply(self, content: str, result: PreprocessingResult) -> str:
        m = _FRONTMATTER_RE.match(content)
        if m is None:
            body = content
            fm: dict[str, Any] = {}
        else:
            body = content[m.end():]
            fm = self._parse(m.group(1), result)

        if fm:
            if self.note_title:
                fm["title"] = self.note_title
            result.metadata.frontmatter = fm
            _merge_tags(result, _frontmatter_tags(fm.get("tags")))
            title = fm.get("title")
            if isinstance(title, str) and title.strip():
                result.metadata.title = title.strip()
        elif self.note_title:
            result.metadata.title = self.note_title

        if self.include_metadata:
            _merge_tags(result, extract_content_tags(body))

        if fm and self.preserve_frontmatter:
            header = _dump_block(fm)
        elif self.note_title:
            header = _dump_block({"title": self.note_title})
        else:
            header = ""

        if fm and self.print_frontmatter:
            display = format_frontmatter_display(fm)
            if display:
                body = f"\n{display}\n\n{body.lstrip(chr(10))}"

        return header + body

    def _parse(self, raw: str, result: PreprocessingResult) -> dict[str, Any]:
        try:
            data = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            msg = f"Failed to parse frontmatter: {e}"
            logger.warning(msg)
            result.warnings.append(msg)
            return _scan_lines(raw)
        if data is None:
            return {}
        if not isinstance(data, dict):
            result.warnings.append("Frontmatter is not a mapping, falling back to line scan")
            return _scan_lines(raw)
        return data


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _scan_lines(raw: str) -> dict[str, Any]:
    """Permissive ``key: value`` scanner used when YAML parsing fails."""
    data: dict[str, Any] = {}
    for line in raw.splitlines():
        key, sep, value = line.partition(":")
        if not sep or not key.strip():
            continue
        data[key.strip()] = re.sub(r"^[\"']|[\"']$", "", value.strip())
    return data


def _dump_block(fm: dict[str, Any]) -> str:
    dumped = yaml.dump(fm, default_flow_style=False, sort_keys=False, allow_unicode=True)
    return f"---\n{dumped}---\n"


def _frontmatter_tags(raw: Any) -> list[str]:
    if isinstance(raw, list):
        return [str(t).strip() for t in raw if str(t).strip()]
    if isinstance(raw, str):
        return [t for t in _TAG_SPLIT_RE.split(raw) if t]
    return []


def _merge_tags(result: PreprocessingResult, tags: list[str]) -> None:
    for tag in tags:
        result.metadata.tags.add(tag.lstrip("#"))


def extract_content_tags(body: str) -> list[str]:
    """Inline ``#tag`` occurrences outside fenced code."""
    text = _CODE_FENCE_RE.sub("", body)
    return [m.group(1) for m in _CONTENT_TAG_RE.finditer(text)]


def format_frontmatter_display(fm: dict[str, Any]) -> str:
    """Render frontmatter as a bold-labelled "Document Information" block."""
    lines = ["**Document Information**"]
    for key, value in fm.items():
        if value is None or value == "":
            continue
        key = str(key)
        label = key[:1].upper() + key[1:].replace("_", " ")
        formatted = _format_value(value)
        if formatted.startswith("\n"):
            lines.append(f"**{label}:**{formatted}")
        else:
            lines.append(f"**{label}:**\n{formatted}")
    if len(lines) == 1:
        return ""
    return "\n\n".join(lines)


def _format_value(value: Any) -> str:
    if isinstance(value, list):
        if len(value) > 3:
            return "\n\n" + "\n".join(f"- {item}" for item in value) + "\n"
        return ", ".join(str(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, default=str, ensure_ascii=False)

    text = str(value)
    if len(text) > 80 and "," in text:
        items = [item.strip() for item in text.split(",")]
        return "\n\n" + "\n".join(f"- {item}" for item in items) + "\n"
    if len(text) > 100:
        wrapped = textwrap.wrap(text, width=80, break_long_words=False, break_on_hyphens=False)
        return "\n\n" + "  \n".join(wrapped) + "\n"
    return text
