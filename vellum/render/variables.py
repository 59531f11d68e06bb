"""Maps semantic export options to the template's native ``-V`` variables."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable

from vellum.config.models import VellumConfig

logger = logging.getLogger(__name__)

DEFAULT_PAPER_SIZE = "a4"

PAPER_SIZES: dict[str, str] = {
    "a3": "a3",
    "a4": "a4",
    "a5": "a5",
    "a6": "a6",
    "eu-business-card": "eu-business-card",
    "us-letter": "us-letter",
    "us-legal": "us-legal",
    "us-business-card": "us-business-card",
    "letter": "us-letter",
    "legal": "us-legal",
}

_HAS_UNIT_RE = re.compile(r"[a-z%]+$", re.IGNORECASE)


def map_paper_size(size: str) -> str:
    key = str(size).strip().lower()
    if key in PAPER_SIZES:
        return PAPER_SIZES[key]
    logger.warning("Unknown paper size: %s. Using default: %s", size, DEFAULT_PAPER_SIZE)
    return DEFAULT_PAPER_SIZE


def _with_unit(unit: str) -> Callable[[Any], str]:
    def _apply(value: Any) -> str:
        text = _format_number(value)
        return text if _HAS_UNIT_RE.search(text) else f"{text}{unit}"

    return _apply


def _format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


@dataclass(frozen=True)
class VariableMapping:
    native: str
    transform: Callable[[Any], str] = _format_number


VARIABLE_MAP: dict[str, VariableMapping] = {
    "body_font": VariableMapping("font"),
    "heading_font": VariableMapping("heading_font"),
    "monospace_font": VariableMapping("monospace_font"),
    "body_font_size": VariableMapping("fontsize", _with_unit("pt")),
    "heading_font_size": VariableMapping("heading_fontsize", _with_unit("pt")),
    "small_font_size": VariableMapping("small_fontsize", _with_unit("pt")),
    "page_size": VariableMapping("paper", map_paper_size),
    "orientation": VariableMapping("orientation"),
    "margin_top": VariableMapping("margin_top", _with_unit("pt")),
    "margin_bottom": VariableMapping("margin_bottom", _with_unit("pt")),
    "margin_left": VariableMapping("margin_left", _with_unit("pt")),
    "margin_right": VariableMapping("margin_right", _with_unit("pt")),
    "export_format": VariableMapping("export_format"),
    "line_height": VariableMapping("line_height"),
}


def map_variable(name: str, value: Any) -> tuple[str, str]:
    """Translate one semantic variable; unknown names pass through untouched."""
    mapping = VARIABLE_MAP.get(name)
    if mapping is None:
        return name, _format_number(value)
    return mapping.native, mapping.transform(value)


def config_defaults(config: VellumConfig) -> dict[str, Any]:
    """Semantic variables derived from the config, used as fallbacks."""
    typo = config.typography
    page = config.page_setup
    defaults: dict[str, Any] = {
        "body_font": typo.body_font,
        "heading_font": typo.heading_font,
        "monospace_font": typo.monospace_font,
        "body_font_size": typo.body_size,
        "heading_font_size": typo.heading_size,
        "small_font_size": typo.small_size,
        "line_height": typo.line_height,
        "page_size": config.export_defaults.page_size,
        "orientation": config.export_defaults.orientation,
        "margin_top": page.margin_top,
        "margin_bottom": page.margin_bottom,
        "margin_left": page.margin_left,
        "margin_right": page.margin_right,
        "export_format": config.export_defaults.format,
    }
    return {k: v for k, v in defaults.items() if v is not None}


class TypstVariableMapper:
    def __init__(self, config: VellumConfig):
        self.config = config

    def map_all(self, variables: dict[str, Any] | None = None) -> list[tuple[str, str]]:
        """Explicit variables first, then config fallbacks not already covered.

        A fallback is skipped when the caller supplied either its semantic
        name or its native name.
        """
        mapped: list[tuple[str, str]] = []
        covered: set[str] = set()
        for name, value in (variables or {}).items():
            if value is None or str(value).strip() == "":
                continue
            native, text = map_variable(name, value)
            mapped.append((native, text))
            covered.update({name, native})

        for name, value in config_defaults(self.config).items():
            native = VARIABLE_MAP[name].native
            if name in covered or native in covered:
                continue
            mapped.append(map_variable(name, value))
            covered.update({name, native})
        return mapped
