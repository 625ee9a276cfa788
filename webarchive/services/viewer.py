"""Read path used by the web layer: sub-path resolution and asset lookup."""
from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from urllib.parse import urlparse

from webarchive.models import Archive, SitemapEntry
from webarchive.storage.base import ArchiveStore

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
    ".css": "text/css",
    ".js": "application/javascript",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".eot": "application/vnd.ms-fontobject",
    ".ico": "image/x-icon",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"
ASSET_CACHE_CONTROL = "public, max-age=31536000"


def content_type_for(filename: str) -> str:
    return CONTENT_TYPES.get(posixpath.splitext(filename)[1].lower(), DEFAULT_CONTENT_TYPE)


def normalize_path(path: str) -> str:
    return "/" + path.strip("/")


@dataclass
class ViewResult:
    html: str | None
    archive: Archive | None = None
    entries: list[SitemapEntry] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.html is not None


async def page_entries(store: ArchiveStore, archive_id: str, archive: Archive | None) -> list[SitemapEntry]:
    """Pages of an archive; sitemap.json wins, the index's pages[] is the fallback."""
    sitemap = await store.get_sitemap(archive_id)
    if sitemap is not None:
        return sitemap
    if archive and archive.pages:
        return [SitemapEntry.for_index(i, page) for i, page in enumerate(archive.pages)]
    return []


async def resolve_page(store: ArchiveStore, archive_id: str, sub_path: str = "") -> ViewResult:
    archive = await store.get_archive_by_id(archive_id)
    entries = await page_entries(store, archive_id, archive)
    request_path = normalize_path(sub_path)

    if request_path == "/" or len(entries) <= 1:
        html = await store.get_archive_content(archive_id)
        return ViewResult(html=html, archive=archive, entries=entries)

    for entry in entries:
        if normalize_path(urlparse(entry.url).path) != request_path:
            continue
        html = await store.get_archive_content(archive_id, entry.file.removesuffix(".html"))
        if html is None:
            logger.warning("Sitemap of %s lists %s but the file is missing", archive_id, entry.file)
        return ViewResult(html=html, archive=archive, entries=entries)

    logger.info("No archived page for %s in %s", request_path, archive_id)
    return ViewResult(html=None, archive=archive, entries=entries)
