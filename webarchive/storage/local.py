"""
Filesystem archive store.

Layout under the base directory:

    metadata.json            index of every archive, most recent first
    {id}.html                single-page archive
    {id}/index.html          multi-page archive: seed page
    {id}/page-{n}.html       n-th page after the seed, in crawl order
    {id}/sitemap.json        [{url, title, file}, ...]
    {id}/assets/             downloaded assets
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import UTC, datetime
from pathlib import Path

from bs4 import BeautifulSoup

from webarchive.models import COMPLETED, Archive, Page, SitemapEntry
from webarchive.storage.base import ArchiveStore

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
SITEMAP_FILE = "sitemap.json"
SAFE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def _is_safe(name: str) -> bool:
    return bool(SAFE_NAME_RE.match(name)) and ".." not in name


def _write_text(path: Path, content: str) -> None:
    with path.open("w", encoding="utf-8", newline="") as f:
        f.write(content)


def _read_text(path: Path) -> str:
    with path.open("r", encoding="utf-8", newline="") as f:
        return f.read()


def _title_from_html(html: str, fallback: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    if soup.title and soup.title.string and soup.title.string.strip():
        return soup.title.string.strip()
    return fallback


class LocalArchiveStore(ArchiveStore):
    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)
        self._index_lock = asyncio.Lock()

    @property
    def metadata_path(self) -> Path:
        return self.base_dir / METADATA_FILE

    def archive_dir(self, archive_id: str) -> Path:
        if not _is_safe(archive_id):
            raise ValueError(f"Invalid archive id: {archive_id!r}")
        return self.base_dir / archive_id

    def assets_dir(self, archive_id: str) -> Path:
        return self.archive_dir(archive_id) / "assets"

    # ── index ────────────────────────────────────────────────────────────

    def _load_index(self) -> list[dict]:
        if not self.metadata_path.exists():
            return []
        try:
            data = json.loads(self.metadata_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Could not read archive index %s: %s", self.metadata_path, exc)
            return []
        return data if isinstance(data, list) else []

    def _write_index(self, records: list[dict]) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        tmp = self.metadata_path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(records, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(self.metadata_path)

    async def _upsert(self, archive: Archive) -> None:
        async with self._index_lock:
            records = self._load_index()
            record = archive.to_dict()
            for i, existing in enumerate(records):
                if existing.get("id") == archive.id:
                    records[i] = record
                    break
            else:
                records.insert(0, record)
            self._write_index(records)

    # ── writes ───────────────────────────────────────────────────────────

    async def save(self, archive_id: str, archive: Archive, html: str | None) -> None:
        await self._upsert(archive)
        if html is not None:
            self.archive_dir(archive_id)  # validates the id
            _write_text(self.base_dir / f"{archive_id}.html", html)
            logger.info("Saved single-page archive %s", archive_id)

    async def save_multi_page(self, archive_id: str, archive: Archive, pages: list[Page]) -> None:
        folder = self.archive_dir(archive_id)
        folder.mkdir(parents=True, exist_ok=True)
        await self._upsert(archive)

        sitemap = [SitemapEntry.for_index(i, page) for i, page in enumerate(pages)]
        for entry, page in zip(sitemap, pages):
            _write_text(folder / entry.file, page.html)

        (folder / SITEMAP_FILE).write_text(
            json.dumps([entry.to_dict() for entry in sitemap], indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        logger.info("Saved multi-page archive %s (%d pages)", archive_id, len(pages))

    # ── reads ────────────────────────────────────────────────────────────

    async def get_archives(self) -> list[Archive]:
        async with self._index_lock:
            records = self._load_index()
            known = {r.get("id") for r in records}
            found: list[dict] = []

            if self.base_dir.exists():
                for path in sorted(self.base_dir.glob("*.html")):
                    archive_id = path.stem
                    if archive_id in known or not _is_safe(archive_id):
                        continue
                    try:
                        html = _read_text(path)
                    except (OSError, UnicodeDecodeError) as exc:
                        logger.warning("Skipping unreadable archive file %s: %s", path, exc)
                        continue
                    stamp = datetime.fromtimestamp(path.stat().st_mtime, UTC).isoformat()
                    found.append(
                        Archive(
                            id=archive_id,
                            url="",
                            title=_title_from_html(html, f"Archive {archive_id}"),
                            timestamp=stamp,
                            status=COMPLETED,
                            page_count=1,
                            size=len(html.encode("utf-8")),
                        ).to_dict()
                    )
                    logger.info("Recovered archive %s missing from the index", archive_id)

            if found:
                records = found + records
                self._write_index(records)

        return [Archive.from_dict(r) for r in records if r.get("id")]

    async def get_archive_by_id(self, archive_id: str) -> Archive | None:
        for record in self._load_index():
            if record.get("id") == archive_id:
                return Archive.from_dict(record)
        return None

    async def get_archive_content(self, archive_id: str, page: str = "index") -> str | None:
        if not _is_safe(archive_id) or not _is_safe(page or "index"):
            return None
        single = self.base_dir / f"{archive_id}.html"
        if single.is_file():
            return _read_text(single)

        filename = "index.html" if page in ("", "index") else f"{page}.html"
        multi = self.base_dir / archive_id / filename
        if multi.is_file():
            return _read_text(multi)
        return None

    async def get_sitemap(self, archive_id: str) -> list[SitemapEntry] | None:
        if not _is_safe(archive_id):
            return None
        path = self.base_dir / archive_id / SITEMAP_FILE
        if not path.is_file():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Could not read sitemap for %s: %s", archive_id, exc)
            return None
        return [SitemapEntry(url=e.get("url", ""), title=e.get("title", ""), file=e["file"]) for e in data if "file" in e]

    async def get_asset(self, archive_id: str, filename: str) -> bytes | None:
        if not _is_safe(archive_id) or not _is_safe(filename):
            return None
        path = self.base_dir / archive_id / "assets" / filename
        if not path.is_file():
            return None
        return path.read_bytes()
