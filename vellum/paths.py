"""Sandboxed path helpers, path validation and executable discovery."""

from __future__ import annotations

import logging
import os
import re
import shutil
from pathlib import Path

from vellum.errors import UnsafePathError

logger = logging.getLogger(__name__)

# Always searched after the configured additional paths
COMMON_BIN_DIRS: tuple[str, ...] = ("/opt/homebrew/bin", "/usr/local/bin", "/usr/bin", "/bin")

_ILLEGAL_PATH_CHARS_RE = re.compile(r'[<>:"|?*]')
_SHELL_META_RE = re.compile(r"[;&|`$(){}\[\]<>'\"\n\r]")
_WINDOWS_RESERVED = {
    "CON", "PRN", "AUX", "NUL",
    *(f"COM{i}" for i in range(1, 10)),
    *(f"LPT{i}" for i in range(1, 10)),
}


class PathResolutionUtility:
    """Join/exists/mkdir/remove primitives confined to one root directory.

    Every joined path is resolved and checked to stay inside ``root``;
    escaping paths raise ``UnsafePathError``.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def join(self, *parts: str | Path) -> Path:
        candidate = self.root.joinpath(*parts).resolve()
        if not candidate.is_relative_to(self.root):
            raise UnsafePathError(str(Path(*parts)), "escapes the document root")
        return candidate

    def exists(self, *parts: str | Path) -> bool:
        try:
            return self.join(*parts).exists()
        except UnsafePathError:
            return False

    def is_file(self, *parts: str | Path) -> bool:
        try:
            return self.join(*parts).is_file()
        except UnsafePathError:
            return False

    def ensure_dir(self, *parts: str | Path) -> Path:
        path = self.join(*parts)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def remove_tree(self, *parts: str | Path) -> None:
        path = self.join(*parts)
        if path == self.root:
            raise UnsafePathError(str(path), "refusing to remove the document root")
        if path.exists():
            shutil.rmtree(path, ignore_errors=True)
            logger.debug("removed %s", path)

    def relative(self, path: str | Path) -> str:
        """Return ``path`` relative to the root in POSIX form."""
        resolved = Path(path).resolve()
        try:
            return resolved.relative_to(self.root).as_posix()
        except ValueError:
            return resolved.as_posix()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_output_path(folder: str) -> str:
    """Validate a user-supplied, root-relative output folder.

    Returns the folder normalised to forward slashes without trailing
    separators. Raises UnsafePathError when the folder could escape the root.
    """
    if not folder or not folder.strip():
        raise UnsafePathError(folder, "empty path")
    if "\x00" in folder:
        raise UnsafePathError(folder, "contains NUL byte")
    if folder.startswith(("/", "\\")) or re.match(r"^[A-Za-z]:", folder):
        raise UnsafePathError(folder, "absolute paths are not allowed")
    if "//" in folder or "\\\\" in folder:
        raise UnsafePathError(folder, "contains empty path segment")
    if _ILLEGAL_PATH_CHARS_RE.search(folder):
        raise UnsafePathError(folder, "contains illegal characters")

    segments = [s for s in re.split(r"[\\/]", folder) if s]
    for segment in segments:
        if segment == "..":
            raise UnsafePathError(folder, "parent directory traversal")
        if segment.split(".")[0].upper() in _WINDOWS_RESERVED:
            raise UnsafePathError(folder, f"reserved name {segment!r}")
    return "/".join(segments)


def validate_executable_path(path: str) -> str:
    """Reject executable paths that carry shell metacharacters."""
    if not path or not path.strip():
        raise UnsafePathError(path, "empty executable path")
    if "\x00" in path or _SHELL_META_RE.search(path):
        raise UnsafePathError(path, "contains shell metacharacters")
    return path.strip()


# ---------------------------------------------------------------------------
# Executable discovery
# ---------------------------------------------------------------------------


def augmented_path(additional_paths: list[str] | None = None) -> str:
    """PATH with configured and common install dirs prepended, deduplicated."""
    entries = list(additional_paths or []) + list(COMMON_BIN_DIRS)
    entries += os.environ.get("PATH", "").split(os.pathsep)
    seen: set[str] = set()
    ordered = []
    for entry in entries:
        if entry and entry not in seen:
            seen.add(entry)
            ordered.append(entry)
    return os.pathsep.join(ordered)


def augmented_env(additional_paths: list[str] | None = None) -> dict[str, str]:
    env = dict(os.environ)
    env["PATH"] = augmented_path(additional_paths)
    return env


def resolve_executable(
    name: str,
    explicit: str | None = None,
    additional_paths: list[str] | None = None,
) -> str:
    """Resolve an executable: explicit path, then PATH search, then the bare name."""
    if explicit:
        return validate_executable_path(explicit)

    found = shutil.which(name, path=augmented_path(additional_paths))
    if found:
        return found

    logger.debug("%s not found on augmented PATH, using bare name", name)
    return name
