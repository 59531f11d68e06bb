"""Callout blocks and fenced ``email`` blocks.

Callouts (``> [!type] Title``) become a plain blockquote with a bold icon
header and a ``<!-- callout-type -->`` marker comment. ``email`` blocks
become a raw Typst ``#email-block(...)`` call understood by the template.
"""

from __future__ import annotations

import re
from typing import NamedTuple

from .links import filter_unnecessary_links
from .models import PreprocessingResult
from .pipeline import TransformStage

_CALLOUT_RE = re.compile(r"^>\s*\[!([\w-]+)\]([+-]?)\s*(.*)$")
_EMAIL_BLOCK_RE = re.compile(r"^```email[ \t]*\n(.*?)^```[ \t]*$", re.MULTILINE | re.DOTALL)


class CalloutStyle(NamedTuple):
    display: str
    icon: str
    css_class: str


CALLOUT_STYLES: dict[str, CalloutStyle] = {
    "note": CalloutStyle("Note", "📝", "callout-note"),
    "abstract": CalloutStyle("Abstract", "📋", "callout-abstract"),
    "info": CalloutStyle("Info", "ℹ️", "callout-info"),
    "tip": CalloutStyle("Tip", "💡", "callout-tip"),
    "success": CalloutStyle("Success", "✅", "callout-success"),
    "question": CalloutStyle("Question", "❓", "callout-question"),
    "warning": CalloutStyle("Warning", "⚠️", "callout-warning"),
    "failure": CalloutStyle("Failure", "❌", "callout-failure"),
    "danger": CalloutStyle("Danger", "⚡", "callout-danger"),
    "bug": CalloutStyle("Bug", "🐛", "callout-bug"),
    "example": CalloutStyle("Example", "📋", "callout-example"),
    "quote": CalloutStyle("Quote", "💬", "callout-quote"),
    "cite": CalloutStyle("Citation", "📖", "callout-cite"),
}

_FOLD_ICONS = {"+": " 🔽", "-": " 🔼"}


def callout_style(callout_type: str) -> CalloutStyle:
    style = CALLOUT_STYLES.get(callout_type.lower())
    if style is None:
        style = CalloutStyle(callout_type[:1].upper() + callout_type[1:], "📌", "callout-default")
    return style


class CalloutStage(TransformStage):
    def apply(self, content: str, result: PreprocessingResult) -> str:
        lines = content.split("\n")
        out: list[str] = []
        i = 0
        while i < len(lines):
            m = _CALLOUT_RE.match(lines[i])
            if m is None:
                out.append(lines[i])
                i += 1
                continue
            callout_type, fold, title = m.groups()
            body, i = _collect_block(lines, i + 1)
            out.append(render_callout(callout_type, title, fold, body))
        return "\n".join(out)


def _collect_block(lines: list[str], start: int) -> tuple[list[str], int]:
    """Gather quoted lines after a callout header.

    A blank line continues the block only when the next line is quoted again.
    """
    body: list[str] = []
    i = start
    while i < len(lines):
        line = lines[i]
        if line.startswith(">"):
            body.append(line[1:].strip())
            i += 1
        elif not line.strip() and i + 1 < len(lines) and lines[i + 1].startswith(">"):
            body.append("")
            i += 1
        else:
            break
    return body, i


def render_callout(callout_type: str, title: str, fold: str, body: list[str]) -> str:
    style = callout_style(callout_type)
    header = title.strip() or style.display
    parts = [
        f"<!-- {style.css_class} -->",
        f"> **{style.icon} {header}**{_FOLD_ICONS.get(fold, '')}",
        ">",
    ]
    parts.extend(f"> {line}" if line.strip() else ">" for line in body)
    return "\n".join(parts).rstrip()


# ---------------------------------------------------------------------------
# Email blocks
# ---------------------------------------------------------------------------

_EMAIL_FIELDS = ("from", "to", "subject", "date")

_UNICODE_SPACES_RE = re.compile(r"[\u00a0\u1680\u2000-\u200b\u202f\u205f\u3000\ufeff]")
_LINE_SEPARATORS_RE = re.compile(r"[\u2028\u2029]")
_DASHES_RE = re.compile(r"[\u2010-\u2015\u2212]")
_DAGGERS_RE = re.compile(r"[\u2020\u2021]")
_BULLETS_RE = re.compile(r"[\u2022\u2023\u2043]")
_ZERO_WIDTH_RE = re.compile(r"[\u200b-\u200d\ufeff\u00ad\u061c\u180e\u2066-\u2069]")
_HSPACE_RE = re.compile(r"[ \t]+")
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")


class EmailBlockStage(TransformStage):
    def apply(self, content: str, result: PreprocessingResult) -> str:
        def _replace(m: re.Match) -> str:
            try:
                return render_email_block(m.group(1))
            except ValueError as e:
                result.warnings.append(f"Failed to process email block: {e}")
                return m.group(0)

        return _EMAIL_BLOCK_RE.sub(_replace, content)


def render_email_block(block: str) -> str:
    header, _, body = block.partition("---")
    body = filter_unnecessary_links(body.strip()).strip()
    params = parse_email_header(header.strip())

    args = [f'{name}: "{escape_typst_string(params[name])}"' for name in _EMAIL_FIELDS if params.get(name)]
    args.append(f'"{escape_typst_body(body)}"')
    return f"\n\n```{{=typst}}\n#email-block({', '.join(args)})\n```\n\n"


def parse_email_header(header: str) -> dict[str, str]:
    """Line-based ``key: value`` parse; arrays flatten to comma lists."""
    params: dict[str, str] = {}
    for line in header.splitlines():
        key, sep, value = line.partition(":")
        key = key.strip()
        if not sep or not key:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        if value.startswith("[") and value.endswith("]") and not value.startswith("[["):
            value = value[1:-1].replace('"', "").replace("'", "")
        params[key.lower()] = value
    return params


def escape_typst_string(text: str) -> str:
    """Escape for a single-line Typst string literal."""
    return (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("'", "\\'")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )


def normalize_unicode(text: str) -> str:
    text = _UNICODE_SPACES_RE.sub(" ", text)
    text = _LINE_SEPARATORS_RE.sub("\n", text)
    text = _DASHES_RE.sub("-", text)
    text = _DAGGERS_RE.sub("", text)
    text = _BULLETS_RE.sub("• ", text)
    text = _ZERO_WIDTH_RE.sub("", text)
    text = _HSPACE_RE.sub(" ", text)
    return _EXCESS_NEWLINES_RE.sub("\n\n", text)


def escape_typst_body(text: str) -> str:
    """Normalise problem Unicode, then escape for a multi-line Typst string.

    Newlines are kept so paragraphs survive in the rendered block.
    """
    return normalize_unicode(text).replace("\\", "\\\\").replace('"', '\\"').replace("'", "\\'")
