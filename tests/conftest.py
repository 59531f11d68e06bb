"""Shared test fixtures for Vellum."""

from pathlib import Path

import pytest

from vellum.config.models import VellumConfig
from vellum.paths import PathResolutionUtility
from vellum.tempdirs import TempWorkspace


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sample_config():
    return VellumConfig()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def vault(tmp_path) -> Path:
    """A small note vault with notes, images and attachments."""
    root = tmp_path / "vault"
    (root / "notes" / "project").mkdir(parents=True)
    (root / "attachments").mkdir()
    (root / "images").mkdir()

    (root / "diagram.png").write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 16)
    (root / "attachments" / "photo.jpg").write_bytes(b"\xff\xd8\xff")
    (root / "images" / "chart.svg").write_text("<svg/>")
    (root / "notes" / "project" / "local.png").write_bytes(b"\x89PNG\r\n\x1a\n")
    (root / "notes" / "project" / "data sheet.pdf").write_bytes(b"%PDF-1.4\n%EOF\n")
    (root / "notes" / "data.csv").write_text("a,b\n1,2\n")

    (root / "Other Note.md").write_text("# Other\n\n## Section\n\nText.\n")
    (root / "notes" / "project" / "plan.md").write_text(
        "---\ntitle: Plan\ntags: [work, q3]\n---\n# Plan\n\n![[local.png]]\n"
    )
    return root.resolve()


@pytest.fixture
def paths(vault) -> PathResolutionUtility:
    return PathResolutionUtility(vault)


@pytest.fixture
def workspace(paths):
    ws = TempWorkspace(paths, job_id="testjob").create()
    yield ws
    ws.cleanup()
