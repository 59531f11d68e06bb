"""Downloads remote images into the job's scratch directory."""

from __future__ import annotations

import hashlib
import logging
import posixpath
import re
from pathlib import Path
from urllib.parse import unquote, urljoin, urlparse

import httpx

from vellum.errors import FetchError

logger = logging.getLogger(__name__)

_CONTENT_TYPE_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/svg+xml": ".svg",
    "image/webp": ".webp",
    "image/bmp": ".bmp",
    "image/tiff": ".tiff",
    "image/x-icon": ".ico",
    "image/vnd.microsoft.icon": ".ico",
}
_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


class RemoteImageFetcher:
    """Fetch ``http(s)`` images with manual, bounded redirect handling.

    Relative ``Location`` headers are resolved against the URL that was
    originally requested, not against the intermediate redirect target.
    """

    def __init__(
        self,
        timeout: float = 30,
        max_redirects: int = 5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.max_redirects = max_redirects
        self._transport = transport

    async def fetch(self, url: str, dest_dir: Path) -> Path:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=False, transport=self._transport
            ) as client:
                resp = await self._get(client, url)
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to download {url}: {e}") from e

        dest_dir.mkdir(parents=True, exist_ok=True)
        target = dest_dir / _local_name(url, resp.headers.get("content-type", ""))
        target.write_bytes(resp.content)
        logger.info("downloaded %s (%d bytes)", url, len(resp.content))
        return target

    async def _get(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        current = url
        for _ in range(self.max_redirects + 1):
            resp = await client.get(current)
            if not resp.is_redirect:
                resp.raise_for_status()
                return resp
            location = resp.headers.get("location")
            if not location:
                raise FetchError(f"Redirect from {current} without Location header")
            current = urljoin(url, location)
            logger.debug("redirect %s -> %s", url, current)
        raise FetchError(f"Too many redirects fetching {url}")


def _local_name(url: str, content_type: str) -> str:
    """Stable, filesystem-safe name for a downloaded URL."""
    digest = hashlib.sha256(url.encode()).hexdigest()[:8]
    name = posixpath.basename(unquote(urlparse(url).path)) or "image"
    stem, ext = posixpath.splitext(name)
    if ext.lower() not in _CONTENT_TYPE_EXTENSIONS.values() and ext.lower() not in {".jpeg", ".tif"}:
        ext = _CONTENT_TYPE_EXTENSIONS.get(content_type.split(";")[0].strip().lower(), ext or ".img")
    stem = _UNSAFE_NAME_RE.sub("_", stem).strip("_") or "image"
    return f"{digest}_{stem}{ext}"
