"""Builds the pandoc argument vector for one export."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from vellum.config.models import VellumConfig
from vellum.errors import TemplateNotFoundError
from vellum.paths import resolve_executable

from .resources import ResourcePathCache
from .variables import TypstVariableMapper

logger = logging.getLogger(__name__)

WRAPPER_TEMPLATE = "universal-wrapper.pandoc.typ"
INPUT_FORMAT = "markdown-smart"


@dataclass
class RenderRequest:
    input_path: Path
    output_path: Path
    root: Path
    template: str
    variables: dict[str, Any] = field(default_factory=dict)
    engine_options: list[str] = field(default_factory=list)


class PandocCommandBuilder:
    """Turns a render request into ``pandoc`` argv.

    Resource paths come from the shared ``ResourcePathCache``; variables go
    through ``TypstVariableMapper`` so semantic option names never leak into
    the argv.
    """

    def __init__(self, config: VellumConfig, cache: ResourcePathCache, templates_dir: Path) -> None:
        self.config = config
        self.cache = cache
        self.templates_dir = Path(templates_dir)
        self.mapper = TypstVariableMapper(config)

    @property
    def pandoc_executable(self) -> str:
        return resolve_executable("pandoc", self.config.pandoc_path, self.config.additional_paths)

    @property
    def typst_executable(self) -> str:
        return resolve_executable("typst", self.config.typst_path, self.config.additional_paths)

    def build(self, request: RenderRequest) -> list[str]:
        args = [
            self.pandoc_executable,
            str(request.input_path),
            "-o", str(request.output_path),
            "--from", INPUT_FORMAT,
            f"--pdf-engine={self.typst_executable}",
            "--standalone",
            "--embed-resources",
        ]
        args += self._resource_args(request.root)
        args += self._template_args(request)
        for name, value in self.mapper.map_all(request.variables):
            args += ["-V", f"{name}={value}"]
        for option in request.engine_options:
            args += ["--pdf-engine-opt", option]
        return args

    def build_intermediate(self, request: RenderRequest, typst_output: Path) -> list[str]:
        """Same conversion, stopping at Typst source for debugging."""
        args = self.build(request)
        out = args.index("-o")
        args[out + 1] = str(typst_output)
        args = [a for a in args if not a.startswith("--pdf-engine=")]
        opts = [i for i, a in enumerate(args) if a == "--pdf-engine-opt"]
        for i in reversed(opts):
            del args[i:i + 2]
        return args + ["--to", "typst"]

    def resolve_template(self, template: str) -> Path:
        path = Path(template)
        if not path.is_absolute():
            path = self.templates_dir / template
        if not path.is_file():
            raise TemplateNotFoundError(f"Template not found at: {path}")
        return path

    def _resource_args(self, root: Path) -> list[str]:
        directories = self.cache.get_resource_paths(root)
        if str(self.templates_dir) not in directories:
            directories.append(str(self.templates_dir))
        args: list[str] = []
        for directory in directories:
            args += ["--resource-path", directory]
        return args

    def _template_args(self, request: RenderRequest) -> list[str]:
        wrapper = self.resolve_template(WRAPPER_TEMPLATE)
        template = self.resolve_template(request.template)
        # Typst imports the real template relative to the document root
        template_rel = Path(os.path.relpath(template, request.root)).as_posix()
        return ["--template", str(wrapper), "-V", f"template_path={template_rel}"]
