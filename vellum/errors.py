"""Exception types for vellum.

Expected conversion failures are returned as values (see ``ConversionResult``).
These exceptions mark programming errors and unusable input.
"""


class VellumError(Exception):
    """Base class for all vellum errors."""


class ConfigError(VellumError, ValueError):
    """Config file could not be parsed or validated."""


class UnsafePathError(VellumError, ValueError):
    """A path failed security validation."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Unsafe path {path!r}: {reason}")


class TemplateNotFoundError(VellumError, FileNotFoundError):
    """The requested Typst template does not exist."""


class UnresolvedMarkerError(VellumError):
    """Embed markers survived the resolution pass."""

    def __init__(self, marker_ids: list[str]) -> None:
        self.marker_ids = marker_ids
        super().__init__(f"{len(marker_ids)} embed marker(s) left unresolved: {', '.join(marker_ids)}")


class ConversionCancelled(VellumError):
    """The conversion was cancelled by the caller."""


class FetchError(VellumError):
    """A remote resource could not be downloaded."""


class HelperToolError(VellumError):
    """Wraps a failure from an external helper (ImageMagick, pdftoppm)."""

    def __init__(self, tool: str, operation: str, cause: Exception | str) -> None:
        self.tool = tool
        self.operation = operation
        self.cause = cause
        super().__init__(f"{tool} {operation} failed: {cause}")
        if isinstance(cause, BaseException):
            self.__cause__ = cause
