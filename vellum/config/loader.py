"""YAML config loading with env var expansion."""

import os
import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from vellum.errors import ConfigError

from .models import VellumConfig


def load_config(cli_path: str | None = None) -> VellumConfig:
    """Load config with resolution order: CLI > project-local > user-global > defaults."""
    config_paths = [
        Path(cli_path) if cli_path else None,
        Path("./vellum.yaml"),
        Path.home() / ".vellum" / "config.yaml",
    ]

    if cli_path and not Path(cli_path).exists():
        raise ConfigError(f"Config file not found: {cli_path}")

    for path in config_paths:
        if path and path.exists():
            try:
                with open(path) as f:
                    raw = yaml.safe_load(f)
                if raw is None:
                    continue
                if not isinstance(raw, dict):
                    raise ConfigError(f"Invalid config in {path}: expected a mapping")
                raw = _expand_env_vars(raw)
                return VellumConfig(**raw)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e
            except ValidationError as e:
                raise ConfigError(f"Invalid config in {path}: {e}") from e

    return VellumConfig()


def _expand_env_vars(obj: object) -> object:
    """Recursively expand ${VAR} references in strings."""
    if isinstance(obj, str):
        return re.sub(r"\$\{(\w+)\}", lambda m: os.environ.get(m.group(1), ""), obj)
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


# Default YAML template for `vellum config init`
DEFAULT_CONFIG_TEMPLATE = """\
# vellum.yaml

# Executables (leave unset to search PATH plus additional_paths)
# pandoc_path: "/opt/homebrew/bin/pandoc"
# typst_path: "/opt/homebrew/bin/typst"
# magick_path: "magick"
# pdftoppm_path: "pdftoppm"
additional_paths:
  - "/opt/homebrew/bin"
  - "/usr/local/bin"
  - "/usr/bin"

# Output
output_folder: "exports"
preserve_folder_structure: false
# templates_dir: ".vellum/templates"   # default: <root>/.vellum/templates
timeout: 60                    # seconds per pandoc run

export_defaults:
  format: "standard"           # standard | single-page
  template: "default.typ"        # rendered through the universal wrapper
  page_size: "a4"              # a3 | a4 | a5 | a6 | us-letter | us-legal | ...
  orientation: "portrait"      # portrait | landscape

typography:
  # body_font: "Inter"
  # heading_font: "Inter"
  # monospace_font: "JetBrains Mono"
  body_size: 11
  heading_size: 16
  small_size: 9
  line_height: 1.4

page_setup:                    # margins in points
  margin_top: 72
  margin_bottom: 72
  margin_left: 72
  margin_right: 72

behavior:
  export_concurrency: 3
  embed_pdf_files: true
  embed_all_files: true
  print_frontmatter: false
  preserve_frontmatter: true
  include_metadata: true
  convert_horizontal_rules: false
  debug_mode: false
  keep_temp_files: false

resolution:
  max_concurrency: 4
  fetch_timeout: 30
  max_redirects: 5

# Logging
log_level: "info"              # debug | info | warn | error
log_format: "text"             # text | json
"""
