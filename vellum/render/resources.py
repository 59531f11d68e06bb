"""Directories the renderer searches for relative assets, cached per root."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_TTL = 5 * 60  # seconds

COMMON_ATTACHMENT_DIRS: tuple[str, ...] = ("attachments", "assets", "files", "images", ".attachments")

_IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".bmp", ".ico", ".tiff"}


@dataclass(frozen=True)
class ResourcePathCacheEntry:
    root_path: str
    discovered_paths: tuple[str, ...]
    timestamp: float
    ttl: float

    def is_valid_for(self, root_path: str, now: float) -> bool:
        return self.root_path == root_path and now - self.timestamp < self.ttl


class ResourcePathCache:
    """Caches the resource-path scan of each document root for ``ttl`` seconds.

    Entries are immutable; an expired or foreign entry is replaced wholesale.
    Safe to share between concurrent jobs: a lookup is one dict read.
    """

    def __init__(self, ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, ResourcePathCacheEntry] = {}
        self.scans = 0

    def get_resource_paths(self, root: str | Path) -> list[str]:
        root_path = str(Path(root).resolve())
        now = self._clock()
        entry = self._entries.get(root_path)
        if entry is not None and entry.is_valid_for(root_path, now):
            return list(entry.discovered_paths)

        discovered = tuple(scan_resource_paths(Path(root_path)))
        self.scans += 1
        self._entries[root_path] = ResourcePathCacheEntry(root_path, discovered, now, self.ttl)
        logger.debug("scanned %s: %d resource path(s)", root_path, len(discovered))
        return list(discovered)

    def invalidate(self, root: str | Path | None = None) -> None:
        if root is None:
            self._entries.clear()
        else:
            self._entries.pop(str(Path(root).resolve()), None)


def scan_resource_paths(root: Path) -> list[str]:
    """Root, existing conventional attachment dirs, then top-level dirs holding images."""
    paths = [str(root)]
    for name in COMMON_ATTACHMENT_DIRS:
        candidate = root / name
        if candidate.is_dir():
            paths.append(str(candidate))

    try:
        children = sorted(p for p in root.iterdir() if p.is_dir())
    except OSError as e:
        logger.warning("Could not scan %s for attachment directories: %s", root, e)
        return paths

    for child in children:
        if child.name.startswith((".", "_")) or str(child) in paths:
            continue
        try:
            if any(f.suffix.lower() in _IMAGE_SUFFIXES for f in child.iterdir() if f.is_file()):
                paths.append(str(child))
        except OSError:
            continue
    return paths
