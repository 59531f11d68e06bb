"""MIME types and icons for attached (non-image, non-PDF) files."""

DEFAULT_MIME_TYPE = "application/octet-stream"
DEFAULT_FILE_ICON = "📎"

MIME_TYPES: dict[str, str] = {
    # Office
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".xls": "application/vnd.ms-excel",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".ppt": "application/vnd.ms-powerpoint",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".doc": "application/msword",
    ".odt": "application/vnd.oasis.opendocument.text",
    ".ods": "application/vnd.oasis.opendocument.spreadsheet",
    ".odp": "application/vnd.oasis.opendocument.presentation",
    # Archives
    ".zip": "application/zip",
    ".rar": "application/vnd.rar",
    ".7z": "application/x-7z-compressed",
    ".tar": "application/x-tar",
    ".gz": "application/gzip",
    ".bz2": "application/x-bzip2",
    # Data and text
    ".json": "application/json",
    ".xml": "application/xml",
    ".csv": "text/csv",
    ".yaml": "text/yaml",
    ".yml": "text/yaml",
    ".toml": "text/plain",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".rtf": "application/rtf",
    ".log": "text/plain",
    # Code
    ".js": "text/javascript",
    ".ts": "text/typescript",
    ".py": "text/x-python",
    ".java": "text/x-java-source",
    ".cpp": "text/x-c++src",
    ".c": "text/x-csrc",
    ".h": "text/x-chdr",
    ".css": "text/css",
    ".html": "text/html",
    ".php": "text/x-php",
    # Databases
    ".db": "application/x-sqlite3",
    ".sqlite": "application/x-sqlite3",
    ".sql": "application/sql",
    # Ebooks, calendar, contacts
    ".epub": "application/epub+zip",
    ".mobi": "application/x-mobipocket-ebook",
    ".ics": "text/calendar",
    ".vcf": "text/vcard",
    # Media
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".m4a": "audio/mp4",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
}

_ICON_GROUPS: dict[str, tuple[str, ...]] = {
    "📊": (".xlsx", ".xls", ".ods", ".csv"),
    "📽️": (".pptx", ".ppt", ".odp"),
    "📄": (".docx", ".doc", ".odt", ".txt", ".rtf"),
    "📦": (".zip", ".rar", ".7z", ".tar", ".gz", ".bz2"),
    "🗃️": (".json", ".xml"),
    "⚙️": (".yaml", ".yml", ".toml"),
    "📝": (".md",),
    "💻": (".js", ".ts", ".cpp", ".c", ".h", ".php"),
    "🐍": (".py",),
    "☕": (".java",),
    "🎨": (".css",),
    "🌐": (".html",),
    "🗄️": (".db", ".sqlite", ".sql"),
    "📖": (".epub", ".mobi"),
    "📅": (".ics",),
    "👤": (".vcf",),
    "📋": (".log",),
    "🎵": (".mp3", ".wav", ".m4a"),
    "🎬": (".mp4", ".mov", ".webm"),
}

FILE_ICONS: dict[str, str] = {ext: icon for icon, exts in _ICON_GROUPS.items() for ext in exts}


def mime_type_for(extension: str) -> str:
    return MIME_TYPES.get(extension.lower(), DEFAULT_MIME_TYPE)


def icon_for(extension: str) -> str:
    return FILE_ICONS.get(extension.lower(), DEFAULT_FILE_ICON)
