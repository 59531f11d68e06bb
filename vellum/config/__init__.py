from .loader import load_config
from .models import (
    BehaviorConfig,
    ExportDefaults,
    PageSetupConfig,
    ResolutionConfig,
    TypographyConfig,
    VellumConfig,
)

__all__ = [
    "BehaviorConfig",
    "ExportDefaults",
    "PageSetupConfig",
    "ResolutionConfig",
    "TypographyConfig",
    "VellumConfig",
    "load_config",
]
