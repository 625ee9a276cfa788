from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from webarchive.models import Archive, Page, SitemapEntry


class ArchiveStore(ABC):
    @abstractmethod
    async def save(self, archive_id: str, archive: Archive, html: str | None) -> None:
        raise NotImplementedError

    @abstractmethod
    async def save_multi_page(self, archive_id: str, archive: Archive, pages: list[Page]) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_archives(self) -> list[Archive]:
        raise NotImplementedError

    @abstractmethod
    async def get_archive_by_id(self, archive_id: str) -> Archive | None:
        raise NotImplementedError

    @abstractmethod
    async def get_archive_content(self, archive_id: str, page: str = "index") -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def get_sitemap(self, archive_id: str) -> list[SitemapEntry] | None:
        raise NotImplementedError

    @abstractmethod
    async def get_asset(self, archive_id: str, filename: str) -> bytes | None:
        raise NotImplementedError

    @abstractmethod
    def assets_dir(self, archive_id: str) -> Path:
        raise NotImplementedError
