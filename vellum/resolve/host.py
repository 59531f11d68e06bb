"""Host-side link lookup.

The embedding application may know better than us where ``![[name]]``
points (shortest-path links, custom attachment folders). It plugs in through
``LinkResolver``; ``VaultLinkResolver`` emulates the common behaviour for a
plain directory tree.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path
from typing import Callable, Protocol

from vellum.errors import UnsafePathError
from vellum.paths import PathResolutionUtility
from vellum.render.resources import DEFAULT_TTL

logger = logging.getLogger(__name__)


class LinkResolver(Protocol):
    def resolve(self, ref: str, from_path: str) -> Path | None: ...


class VaultLinkResolver:
    """Resolve a link reference the way a note vault does.

    An exact root-relative path wins; otherwise the reference is treated as a
    bare file name and must match exactly one file under the root. Several
    matches are ambiguous and resolve to nothing. The file-name index is
    rebuilt once it is older than ``ttl`` seconds.
    """

    def __init__(
        self,
        paths: PathResolutionUtility,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._paths = paths
        self._ttl = ttl
        self._clock = clock
        self._index: dict[str, list[Path]] | None = None
        self._built_at = 0.0
        self._lock = threading.Lock()
        self.scans = 0

    def resolve(self, ref: str, from_path: str) -> Path | None:
        try:
            exact = self._paths.join(ref)
        except UnsafePathError:
            return None
        if exact.is_file():
            return exact

        if "/" in ref.strip("/"):
            return None

        candidates = self._name_index().get(ref.lower(), [])
        if len(candidates) == 1:
            return candidates[0]
        if len(candidates) > 1:
            logger.debug("ambiguous link %r: %d candidates", ref, len(candidates))
        return None

    def invalidate(self) -> None:
        with self._lock:
            self._index = None

    def _name_index(self) -> dict[str, list[Path]]:
        with self._lock:
            now = self._clock()
            if self._index is None or now - self._built_at >= self._ttl:
                index: dict[str, list[Path]] = {}
                for dirpath, dirnames, filenames in os.walk(self._paths.root):
                    dirnames[:] = [d for d in dirnames if not d.startswith(".")]
                    for name in filenames:
                        index.setdefault(name.lower(), []).append(Path(dirpath) / name)
                self._index = index
                self._built_at = now
                self.scans += 1
            return self._index
