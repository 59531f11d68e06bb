from pydantic import BaseModel, Field
from typing import Literal


class ExportDefaults(BaseModel):
    format: Literal["standard", "single-page"] = "standard"
    template: str = "default.typ"
    page_size: str = "a4"
    orientation: Literal["portrait", "landscape"] = "portrait"


class TypographyConfig(BaseModel):
    body_font: str | None = None
    heading_font: str | None = None
    monospace_font: str | None = None
    body_size: float = Field(default=11, gt=0)
    heading_size: float = Field(default=16, gt=0)
    small_size: float = Field(default=9, gt=0)
    line_height: float = Field(default=1.4, gt=0)


class PageSetupConfig(BaseModel):
    """Margins are in points."""

    margin_top: float = Field(default=72, ge=0)
    margin_bottom: float = Field(default=72, ge=0)
    margin_left: float = Field(default=72, ge=0)
    margin_right: float = Field(default=72, ge=0)


class BehaviorConfig(BaseModel):
    export_concurrency: int = Field(default=3, gt=0)
    embed_pdf_files: bool = True
    embed_all_files: bool = True
    print_frontmatter: bool = False
    preserve_frontmatter: bool = True
    include_metadata: bool = True
    convert_horizontal_rules: bool = False
    debug_mode: bool = False
    keep_temp_files: bool = False


class ResolutionConfig(BaseModel):
    max_concurrency: int = Field(default=4, gt=0)
    fetch_timeout: float = Field(default=30, gt=0)
    max_redirects: int = Field(default=5, ge=0)


class VellumConfig(BaseModel):
    pandoc_path: str | None = None
    typst_path: str | None = None
    magick_path: str | None = None
    pdftoppm_path: str | None = None
    additional_paths: list[str] = ["/opt/homebrew/bin", "/usr/local/bin", "/usr/bin"]
    output_folder: str = "exports"
    preserve_folder_structure: bool = False
    templates_dir: str | None = None
    timeout: float = Field(default=60, gt=0)
    export_defaults: ExportDefaults = Field(default_factory=ExportDefaults)
    typography: TypographyConfig = Field(default_factory=TypographyConfig)
    page_setup: PageSetupConfig = Field(default_factory=PageSetupConfig)
    behavior: BehaviorConfig = Field(default_factory=BehaviorConfig)
    resolution: ResolutionConfig = Field(default_factory=ResolutionConfig)
    log_level: Literal["debug", "info", "warn", "error"] = "info"
    log_format: Literal["text", "json"] = "text"
