"""CLI entry point for Vellum."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
import yaml
from rich import print as rprint
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn
from rich.syntax import Syntax
from rich.table import Table

from vellum import __version__
from vellum.config import VellumConfig, load_config
from vellum.config.loader import DEFAULT_CONFIG_TEMPLATE
from vellum.dependencies import DependencyChecker
from vellum.errors import ConfigError
from vellum.exporter import Exporter
from vellum.logging_setup import configure_logging
from vellum.paths import PathResolutionUtility
from vellum.preprocess import PreprocessingPipeline, PreprocessOptions
from vellum.tempdirs import purge_stale_workspaces
from vellum.template_manager import install_templates, list_templates, validate_template

app = typer.Typer(
    name="vellum",
    help="Export markdown notes to PDF through Pandoc and Typst.",
)

config_app = typer.Typer(help="Manage Vellum configuration.")
app.add_typer(config_app, name="config")

templates_app = typer.Typer(help="Manage Typst templates.")
app.add_typer(templates_app, name="templates")

# Global state
_config: VellumConfig | None = None


def _get_config() -> VellumConfig:
    if _config is None:
        return load_config()
    return _config


def _version_callback(value: bool) -> None:
    if value:
        rprint(f"vellum {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    config: Annotated[
        str | None, typer.Option("--config", "-c", help="Path to vellum.yaml")
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
    log_format: Annotated[
        str | None, typer.Option("--log-format", help="Log format: text or json")
    ] = None,
    version: Annotated[
        bool, typer.Option("--version", callback=_version_callback, is_eager=True, help="Show version")
    ] = False,
) -> None:
    """Global options."""
    global _config
    try:
        _config = load_config(config)
    except ConfigError as e:
        rprint(f"[red]Config error:[/red] {e}")
        raise typer.Exit(1)
    level = "debug" if verbose else _config.log_level
    configure_logging(level, log_format or _config.log_format)


def _variables(
    page_size: str | None, orientation: str | None, export_format: str | None
) -> dict[str, str]:
    variables = {"page_size": page_size, "orientation": orientation, "export_format": export_format}
    return {k: v for k, v in variables.items() if v}


def _progress() -> Progress:
    return Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        transient=True,
    )


def _print_messages(warnings: list[str], errors: list[str]) -> None:
    for w in warnings:
        rprint(f"[yellow]warning:[/yellow] {w}")
    for e in errors:
        rprint(f"[red]error:[/red] {e}")


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


@app.command()
def export(
    file: str = typer.Argument(..., help="Markdown note to export"),
    root: str = typer.Option(".", "--root", "-r", help="Document root (vault) directory"),
    template: str | None = typer.Option(None, "--template", "-t", help="Template file name"),
    output_folder: str | None = typer.Option(None, "--output", "-o", help="Output folder, root-relative"),
    page_size: str | None = typer.Option(None, "--page-size", help="Paper size, e.g. a4 or us-letter"),
    orientation: str | None = typer.Option(None, "--orientation", help="portrait or landscape"),
    export_format: str | None = typer.Option(None, "--format", help="standard or single-page"),
    debug: bool = typer.Option(False, "--debug", help="Also write the intermediate Typst source"),
    keep_temp: bool = typer.Option(False, "--keep-temp", help="Keep temporary files"),
) -> None:
    """Export one note to PDF."""
    cfg = _get_config()
    if debug or keep_temp:
        behavior = cfg.behavior.model_copy(
            update={"debug_mode": debug or cfg.behavior.debug_mode, "keep_temp_files": keep_temp or cfg.behavior.keep_temp_files}
        )
        cfg = cfg.model_copy(update={"behavior": behavior})

    path = Path(file).resolve()
    if not path.is_file():
        rprint(f"[red]Error:[/red] File not found: {file}")
        raise typer.Exit(1)

    with _progress() as progress:
        task = progress.add_task(path.name, total=100)

        def _on_progress(message: str, percent: int) -> None:
            progress.update(task, description=message, completed=percent)

        exporter = Exporter(cfg, root, progress_callback=_on_progress)
        purge_stale_workspaces(exporter.paths)
        result = asyncio.run(
            exporter.export_note(
                path,
                template=template,
                variables=_variables(page_size, orientation, export_format),
                output_folder=output_folder,
            )
        )

    _print_messages(result.warnings, result.errors)
    if not result.success:
        rprint(f"[red]Export failed:[/red] {result.error}")
        raise typer.Exit(1)
    rprint(f"[green]Exported[/green] {result.output_path} ({result.duration:.1f}s)")


@app.command()
def batch(
    sources: list[str] = typer.Argument(..., help="Notes or folders to export"),
    root: str = typer.Option(".", "--root", "-r", help="Document root (vault) directory"),
    template: str | None = typer.Option(None, "--template", "-t", help="Template file name"),
    output_folder: str | None = typer.Option(None, "--output", "-o", help="Output folder, root-relative"),
    recursive: bool = typer.Option(True, "--recursive/--no-recursive", help="Descend into subfolders"),
) -> None:
    """Export many notes concurrently."""
    cfg = _get_config()
    files: list[Path] = []
    for source in sources:
        p = Path(source).resolve()
        if p.is_dir():
            pattern = "**/*.md" if recursive else "*.md"
            files.extend(sorted(f for f in p.glob(pattern) if not _is_hidden(f, p)))
        elif p.is_file():
            files.append(p)
        else:
            rprint(f"[yellow]Skipping missing path:[/yellow] {source}")
    if not files:
        rprint("[yellow]No markdown files to export.[/yellow]")
        raise typer.Exit(0)

    exporter = Exporter(cfg, root)
    purge_stale_workspaces(exporter.paths)
    rprint(f"[bold]Exporting[/bold] {len(files)} note(s)...")
    report = asyncio.run(exporter.export_batch(files, template=template, output_folder=output_folder))

    table = Table(title=f"Batch export ({report.duration:.1f}s)")
    table.add_column("Note", style="cyan")
    table.add_column("Status")
    table.add_column("Output / Error")
    for r in report.results:
        status = "[green]ok[/green]" if r.success else "[red]failed[/red]"
        table.add_row(r.source, status, (r.output_path if r.success else r.error) or "")
    rprint(table)
    rprint(f"[green]{report.successful} succeeded[/green], [red]{report.failed} failed[/red]")
    if report.failed:
        raise typer.Exit(1)


def _is_hidden(path: Path, base: Path) -> bool:
    return any(part.startswith(".") for part in path.relative_to(base).parts)


@app.command()
def preprocess(
    file: str = typer.Argument(..., help="Markdown note"),
    output: str | None = typer.Option(None, "--output", "-o", help="Write the result here"),
) -> None:
    """Run the text pipeline only and show the result with pending embeds."""
    cfg = _get_config()
    path = Path(file)
    if not path.is_file():
        rprint(f"[red]Error:[/red] File not found: {file}")
        raise typer.Exit(1)

    behavior = cfg.behavior
    options = PreprocessOptions(
        note_title=path.stem,
        include_metadata=behavior.include_metadata,
        preserve_frontmatter=behavior.preserve_frontmatter,
        print_frontmatter=behavior.print_frontmatter,
        convert_horizontal_rules=behavior.convert_horizontal_rules,
    )
    result = PreprocessingPipeline.default(options).run(path.read_text(encoding="utf-8"))

    if output:
        Path(output).write_text(result.content, encoding="utf-8")
        rprint(f"[green]Written to[/green] {output}")
    else:
        rprint(Syntax(result.content, "markdown", theme="monokai"))

    if result.pending:
        table = Table(title=f"Pending embeds ({len(result.pending)})")
        table.add_column("Kind", style="magenta")
        table.add_column("Path", style="cyan")
        table.add_column("Options")
        for marker in result.embeds:
            table.add_row(marker.kind.value, marker.original_path, marker.options or "-")
        rprint(table)

    meta = result.metadata
    rprint(Panel(
        f"[dim]Title:[/dim] {meta.title or '-'}\n"
        f"[dim]Tags:[/dim]  {', '.join(sorted(meta.tags)) or '-'}\n"
        f"[dim]Words:[/dim] {meta.word_count}",
        title="Metadata",
        border_style="blue",
    ))
    _print_messages(result.warnings, result.errors)


@app.command()
def check() -> None:
    """Check for pandoc, typst and the optional helper tools."""
    statuses = DependencyChecker(_get_config()).check_all()
    table = Table(title="External tools")
    table.add_column("Tool", style="cyan")
    table.add_column("Status")
    table.add_column("Version")
    table.add_column("Used for")
    for s in statuses:
        if s.found:
            status = "[green]found[/green]"
        elif s.required:
            status = "[red]missing[/red]"
        else:
            status = "[yellow]missing (optional)[/yellow]"
        table.add_row(s.name, status, s.version or "-", s.purpose)
    rprint(table)
    if any(s.required and not s.found for s in statuses):
        raise typer.Exit(1)


@app.command()
def clean(
    root: str = typer.Option(".", "--root", "-r", help="Document root (vault) directory"),
    max_age: float = typer.Option(0, "--max-age", help="Only remove workspaces older than this many seconds"),
) -> None:
    """Remove temporary export workspaces left under the document root."""
    removed = purge_stale_workspaces(PathResolutionUtility(root), max_age=max_age)
    rprint(f"[green]Removed[/green] {removed} workspace(s)")


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show() -> None:
    """Show current resolved configuration."""
    cfg = _get_config()
    rprint(Syntax(yaml.dump(cfg.model_dump(), default_flow_style=False, sort_keys=False), "yaml"))


@config_app.command("init")
def config_init(
    force: bool = typer.Option(False, "--force", help="Overwrite existing config"),
) -> None:
    """Create default vellum.yaml in current directory."""
    target = Path("vellum.yaml")
    if target.exists() and not force:
        rprint("[yellow]vellum.yaml already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)
    target.write_text(DEFAULT_CONFIG_TEMPLATE)
    rprint(f"[green]Created[/green] {target}")


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def _templates_dir(root: str) -> Path:
    return Exporter(_get_config(), root).templates_dir


@templates_app.command("install")
def templates_install(
    root: str = typer.Option(".", "--root", "-r", help="Document root (vault) directory"),
    force: bool = typer.Option(False, "--force", help="Overwrite existing templates"),
) -> None:
    """Copy the bundled templates into the templates directory."""
    dest = _templates_dir(root)
    installed, skipped = install_templates(dest, force=force)
    for name in installed:
        rprint(f"[green]Installed[/green] {dest / name}")
    for name in skipped:
        rprint(f"[dim]Exists, skipped[/dim] {dest / name}")


@templates_app.command("list")
def templates_list(
    root: str = typer.Option(".", "--root", "-r", help="Document root (vault) directory"),
) -> None:
    """List selectable templates."""
    names = list_templates(_templates_dir(root))
    if not names:
        rprint("[yellow]No templates installed.[/yellow] Run `vellum templates install`.")
        return
    for name in names:
        rprint(f"  - {name}")


@templates_app.command("validate")
def templates_validate(
    file: str = typer.Argument(..., help="Template file"),
    wrapper: bool = typer.Option(False, "--wrapper", help="Validate as a pandoc wrapper template"),
) -> None:
    """Statically check a Typst template."""
    path = Path(file)
    if not path.is_file():
        rprint(f"[red]Error:[/red] File not found: {file}")
        raise typer.Exit(1)
    result = validate_template(path.read_text(encoding="utf-8"), wrapper=wrapper)
    _print_messages(result.warnings, result.errors)
    if result.variables:
        rprint(f"[dim]Variables:[/dim] {', '.join(result.variables)}")
    if not result.is_valid:
        rprint(f"[red]Invalid template:[/red] {path}")
        raise typer.Exit(1)
    rprint(f"[green]Valid template:[/green] {path}")
