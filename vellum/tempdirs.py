"""Per-job scratch directories under the document root."""

from __future__ import annotations

import logging
import time
import uuid
from pathlib import Path

from vellum.paths import PathResolutionUtility

logger = logging.getLogger(__name__)

TEMP_ROOT = ".vellum/tmp"
IMAGES_SUBDIR = "temp-images"
PANDOC_SUBDIR = "temp-pandoc"


class TempWorkspace:
    """Scratch space for one export job.

    Lives at ``<root>/.vellum/tmp/<job id>/`` so the renderer, which runs
    with the root as its working directory, can read everything in it
    through root-relative paths.
    """

    def __init__(self, paths: PathResolutionUtility, job_id: str | None = None) -> None:
        self._paths = paths
        self.job_id = job_id or uuid.uuid4().hex[:12]
        self.dir = paths.join(TEMP_ROOT, self.job_id)

    @property
    def images_dir(self) -> Path:
        return self.dir / IMAGES_SUBDIR

    @property
    def pandoc_dir(self) -> Path:
        return self.dir / PANDOC_SUBDIR

    def create(self) -> TempWorkspace:
        self._paths.ensure_dir(TEMP_ROOT, self.job_id, IMAGES_SUBDIR)
        self._paths.ensure_dir(TEMP_ROOT, self.job_id, PANDOC_SUBDIR)
        return self

    def cleanup(self) -> None:
        self._paths.remove_tree(TEMP_ROOT, self.job_id)

    def __enter__(self) -> TempWorkspace:
        return self.create()

    def __exit__(self, *exc) -> None:
        self.cleanup()


def purge_stale_workspaces(paths: PathResolutionUtility, max_age: float = 24 * 3600) -> int:
    """Remove job directories left behind by crashed runs. Returns the count."""
    base = paths.join(TEMP_ROOT)
    if not base.is_dir():
        return 0
    cutoff = time.time() - max_age
    removed = 0
    for entry in base.iterdir():
        if entry.is_dir() and entry.stat().st_mtime < cutoff:
            paths.remove_tree(TEMP_ROOT, entry.name)
            removed += 1
    if removed:
        logger.info("purged %d stale workspace(s)", removed)
    return removed
