"""Bundled Typst templates: listing, installation and validation."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path

from vellum.render.command import WRAPPER_TEMPLATE

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIX = ".typ"

_VARIABLE_RE = re.compile(r"\$([^$\s]*)\$")
_VALID_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")
# Pandoc template control words that look like variables
_PANDOC_KEYWORDS = ("if(", "endif", "else", "for(", "endfor", "sep", "elseif(")
_BRACKETS = (("{", "}", "curly braces"), ("[", "]", "square brackets"), ("(", ")", "parentheses"))
_COMMON_SETUP = ("set page", "set text", "set par")


def _bundled_dir():
    return resources.files("vellum").joinpath("templates")


def bundled_template_names() -> list[str]:
    return sorted(
        entry.name for entry in _bundled_dir().iterdir() if entry.name.endswith(TEMPLATE_SUFFIX)
    )


def install_templates(dest: str | Path, force: bool = False) -> tuple[list[str], list[str]]:
    """Copy bundled templates into ``dest``.

    Existing files are left alone unless ``force`` is set. Returns
    ``(installed, skipped)`` template names.
    """
    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)
    installed: list[str] = []
    skipped: list[str] = []
    for name in bundled_template_names():
        target = dest / name
        if target.exists() and not force:
            skipped.append(name)
            continue
        target.write_text(_bundled_dir().joinpath(name).read_text(encoding="utf-8"), encoding="utf-8")
        installed.append(name)
    if installed:
        logger.info("Installed %d template(s) into %s", len(installed), dest)
    return installed, skipped


def ensure_templates(dest: str | Path) -> list[str]:
    """Install only the bundled templates missing from ``dest``."""
    installed, _ = install_templates(dest, force=False)
    return installed


def list_templates(directory: str | Path) -> list[str]:
    """Selectable document templates in ``directory`` (the wrapper excluded)."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(
        p.name for p in directory.iterdir()
        if p.is_file() and p.suffix == TEMPLATE_SUFFIX and p.name != WRAPPER_TEMPLATE
    )


@dataclass
class TemplateValidation:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    variables: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def validate_template(content: str, *, wrapper: bool = False) -> TemplateValidation:
    """Static checks on a Typst template.

    Document templates must define ``conf``; the pandoc wrapper must
    contain ``$body$``.
    """
    result = TemplateValidation()
    code = _strip_comments(content)
    _check_brackets(code, result)
    _check_strings(code, result)
    _check_variables(code, result)

    if wrapper:
        if "$body$" not in code:
            result.errors.append("Template must contain a '$body$' variable to include the main content")
    else:
        if not re.search(r"#let\s+conf\s*\(", code):
            result.errors.append("Template must define a 'conf' function (#let conf(...))")
        missing = [s for s in _COMMON_SETUP if s not in code]
        if missing:
            result.warnings.append(
                f"Template may be missing common setup: {', '.join(missing)}. Default formatting will apply."
            )
        if re.search(r"set\s+page\s*\([^)]*height:\s*auto", code):
            result.warnings.append("Templates with 'height: auto' may not work well with multi-page documents")
    return result


def _strip_comments(content: str) -> str:
    lines = []
    for line in content.splitlines():
        # Keep URLs like https://
        idx = re.search(r"(?<!:)//", line)
        lines.append(line[: idx.start()] if idx else line)
    return "\n".join(lines)


def _check_brackets(code: str, result: TemplateValidation) -> None:
    in_string = False
    escaped = False
    stacks: dict[str, list[int]] = {name: [] for _, _, name in _BRACKETS}
    for lineno, line in enumerate(code.splitlines(), start=1):
        for col, ch in enumerate(line, start=1):
            if escaped:
                escaped = False
                continue
            if ch == "\\":
                escaped = True
                continue
            if ch == '"':
                in_string = not in_string
                continue
            if in_string:
                continue
            for open_, close, name in _BRACKETS:
                if ch == open_:
                    stacks[name].append(lineno)
                elif ch == close:
                    if stacks[name]:
                        stacks[name].pop()
                    else:
                        result.errors.append(f"Unmatched closing {name} at line {lineno}, column {col}")
    for name, stack in stacks.items():
        for lineno in stack:
            result.errors.append(f"Unclosed {name} starting at line {lineno}")


def _check_strings(code: str, result: TemplateValidation) -> None:
    for lineno, line in enumerate(code.splitlines(), start=1):
        if len(re.findall(r'(?<!\\)"', line)) % 2:
            result.errors.append(f"Unclosed string literal at line {lineno}")


def _check_variables(code: str, result: TemplateValidation) -> None:
    for m in _VARIABLE_RE.finditer(code):
        name = m.group(1)
        if not name or name.startswith(_PANDOC_KEYWORDS):
            continue
        lineno = code.count("\n", 0, m.start()) + 1
        if not _VALID_NAME_RE.match(name):
            result.errors.append(f"Invalid variable name '{name}' at line {lineno}")
        elif name not in result.variables:
            result.variables.append(name)
