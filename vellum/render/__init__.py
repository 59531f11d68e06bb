"""Command building and supervised execution of the pandoc/Typst renderer."""

from .command import WRAPPER_TEMPLATE, PandocCommandBuilder, RenderRequest
from .executor import ProcessOrchestrator, SignalGuard, extract_error_message
from .resources import ResourcePathCache, ResourcePathCacheEntry, scan_resource_paths
from .variables import TypstVariableMapper, map_paper_size, map_variable

__all__ = [
    "PandocCommandBuilder",
    "ProcessOrchestrator",
    "RenderRequest",
    "ResourcePathCache",
    "ResourcePathCacheEntry",
    "SignalGuard",
    "TypstVariableMapper",
    "WRAPPER_TEMPLATE",
    "extract_error_message",
    "map_paper_size",
    "map_variable",
    "scan_resource_paths",
]
