"""Tests for the vellum CLI commands."""

import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from vellum import __version__
from vellum.cli import app
from vellum.dependencies import DependencyStatus
from vellum.models import BatchReport, ExportError, ExportResult

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path, monkeypatch):
    """Keep ./vellum.yaml lookups away from the developer's checkout."""
    cwd = tmp_path / "cwd"
    cwd.mkdir()
    monkeypatch.chdir(cwd)
    with patch("vellum.config.loader.Path.home", return_value=tmp_path / "home"):
        yield cwd


@pytest.fixture()
def mock_exporter():
    """Patch Exporter at the CLI import site and return the mock instance."""
    instance = MagicMock(name="Exporter_instance")
    with patch("vellum.cli.Exporter", return_value=instance), patch("vellum.cli.purge_stale_workspaces"):
        yield instance


# ---------------------------------------------------------------------------
# Global options and config
# ---------------------------------------------------------------------------


class TestGlobalOptions:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_missing_config_file(self):
        result = runner.invoke(app, ["-c", "nope.yaml", "config", "show"])
        assert result.exit_code == 1
        assert "Config error" in result.output


class TestConfigCommands:
    def test_init_then_refuse_overwrite(self, _isolated_cwd):
        first = runner.invoke(app, ["config", "init"])
        assert first.exit_code == 0
        assert (_isolated_cwd / "vellum.yaml").is_file()

        second = runner.invoke(app, ["config", "init"])
        assert second.exit_code == 1
        assert "already exists" in second.output

        forced = runner.invoke(app, ["config", "init", "--force"])
        assert forced.exit_code == 0

    def test_show_uses_project_file(self, _isolated_cwd):
        (_isolated_cwd / "vellum.yaml").write_text("output_folder: pdf-out\n")
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "pdf-out" in result.output


# ---------------------------------------------------------------------------
# export / batch
# ---------------------------------------------------------------------------


class TestExportCommand:
    def test_success(self, mock_exporter, vault):
        mock_exporter.export_note = AsyncMock(
            return_value=ExportResult(source="plan.md", success=True, output_path="exports/plan.pdf", duration=1.2)
        )
        result = runner.invoke(
            app,
            ["export", str(vault / "notes" / "project" / "plan.md"), "--root", str(vault), "--page-size", "letter"],
        )
        assert result.exit_code == 0, result.output
        assert "Exported" in result.output
        kwargs = mock_exporter.export_note.await_args.kwargs
        assert kwargs["variables"] == {"page_size": "letter"}

    def test_failure_exit_code(self, mock_exporter, vault):
        mock_exporter.export_note = AsyncMock(
            return_value=ExportResult(
                source="plan.md", success=False, error="Pandoc conversion failed: boom", warnings=["Image file not found: x.png"]
            )
        )
        result = runner.invoke(app, ["export", str(vault / "notes" / "project" / "plan.md"), "--root", str(vault)])
        assert result.exit_code == 1
        assert "boom" in result.output
        assert "x.png" in result.output

    def test_missing_file(self, mock_exporter):
        result = runner.invoke(app, ["export", "ghost.md"])
        assert result.exit_code == 1
        assert "File not found" in result.output


class TestBatchCommand:
    def test_collects_markdown_and_reports(self, mock_exporter, vault):
        mock_exporter.export_batch = AsyncMock(
            return_value=BatchReport(
                successful=1,
                failed=1,
                errors=[ExportError(file="b.md", error="bad")],
                results=[
                    ExportResult(source="a.md", success=True, output_path="exports/a.pdf"),
                    ExportResult(source="b.md", success=False, error="bad"),
                ],
            )
        )
        result = runner.invoke(app, ["batch", str(vault), "--root", str(vault)])
        assert result.exit_code == 1
        files = mock_exporter.export_batch.await_args.args[0]
        names = sorted(f.name for f in files)
        assert names == ["Other Note.md", "plan.md"]
        assert "1 succeeded" in result.output

    def test_nothing_to_export(self, mock_exporter, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()
        result = runner.invoke(app, ["batch", str(empty)])
        assert result.exit_code == 0
        assert "No markdown files" in result.output


# ---------------------------------------------------------------------------
# preprocess / check / clean / templates
# ---------------------------------------------------------------------------


class TestPreprocessCommand:
    def test_shows_pending_embeds(self, vault):
        result = runner.invoke(app, ["preprocess", str(vault / "notes" / "project" / "plan.md")])
        assert result.exit_code == 0, result.output
        assert "Pending embeds (1)" in result.output
        assert "local.png" in result.output
        assert "work" in result.output

    def test_writes_output(self, vault, tmp_path):
        out = tmp_path / "pre.md"
        result = runner.invoke(app, ["preprocess", str(vault / "Other Note.md"), "-o", str(out)])
        assert result.exit_code == 0
        assert out.read_text().startswith("---\ntitle: Other Note\n---\n")


class TestCheckCommand:
    def _status(self, name, found, required):
        return DependencyStatus(
            name=name, executable=name, found=found, required=required, purpose="x", version="1.0" if found else None
        )

    def test_all_found(self):
        checker = MagicMock()
        checker.check_all.return_value = [self._status("pandoc", True, True), self._status("magick", False, False)]
        with patch("vellum.cli.DependencyChecker", return_value=checker):
            result = runner.invoke(app, ["check"])
        assert result.exit_code == 0
        assert "optional" in result.output

    def test_missing_required(self):
        checker = MagicMock()
        checker.check_all.return_value = [self._status("typst", False, True)]
        with patch("vellum.cli.DependencyChecker", return_value=checker):
            result = runner.invoke(app, ["check"])
        assert result.exit_code == 1
        assert "missing" in result.output


class TestCleanCommand:
    def test_removes_workspaces(self, vault):
        (vault / ".vellum" / "tmp" / "job1" / "temp-images").mkdir(parents=True)
        os.utime(vault / ".vellum" / "tmp" / "job1", (0, 0))
        result = runner.invoke(app, ["clean", "--root", str(vault)])
        assert result.exit_code == 0
        assert "Removed 1" in result.output
        assert not (vault / ".vellum" / "tmp" / "job1").exists()


class TestTemplateCommands:
    def test_install_list_validate(self, vault):
        installed = runner.invoke(app, ["templates", "install", "--root", str(vault)])
        assert installed.exit_code == 0, installed.output
        assert (vault / ".vellum" / "templates" / "default.typ").is_file()

        again = runner.invoke(app, ["templates", "install", "--root", str(vault)])
        assert "skipped" in again.output

        listed = runner.invoke(app, ["templates", "list", "--root", str(vault)])
        assert "default.typ" in listed.output
        assert "universal-wrapper" not in listed.output

        valid = runner.invoke(app, ["templates", "validate", str(vault / ".vellum" / "templates" / "default.typ")])
        assert valid.exit_code == 0, valid.output
        assert "Valid template" in valid.output

    def test_validate_rejects_broken(self, tmp_path):
        bad = tmp_path / "bad.typ"
        bad.write_text("#set page(paper: \"a4\"\n")
        result = runner.invoke(app, ["templates", "validate", str(bad)])
        assert result.exit_code == 1
        assert "Unclosed parentheses" in result.output
