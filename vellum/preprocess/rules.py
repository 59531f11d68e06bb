"""Rewrites ``---`` rules as ``***`` so Pandoc never reads them as YAML fences."""

import re

from .models import PreprocessingResult
from .pipeline import TransformStage

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\n.*?\n---[ \t]*\n", re.DOTALL)
_DASH_RULE_RE = re.compile(r"^(\s*)(-{3,})(\s*)$")


class HorizontalRuleStage(TransformStage):
    def apply(self, content: str, result: PreprocessingResult) -> str:
        m = _FRONTMATTER_RE.match(content)
        head = m.group(0) if m else ""
        return head + _convert_rules(content[len(head):])


def _convert_rules(text: str) -> str:
    lines = text.split("\n")
    in_fence = False
    for i, line in enumerate(lines):
        if line.lstrip().startswith("```"):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        m = _DASH_RULE_RE.match(line)
        if m:
            lines[i] = f"{m.group(1)}{'*' * len(m.group(2))}{m.group(3)}"
    return "\n".join(lines)
