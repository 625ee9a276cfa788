"""
Archiver — turns an archive request into a stored snapshot:

  1. multi-page crawl from the seed (or a single page when maxPages <= 1)
  2. optional asset download, HTML-driven or browser-driven
  3. per-page markup processing (scripts out, links into the archive, banner)
  4. persistence through the archive store
"""
from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from functools import partial
from typing import Any

import httpx

from webarchive.config import Settings, settings as default_settings
from webarchive.models import Archive, ArchiveOptions, CrawlResult, Page
from webarchive.services.assets import AssetDownloader, AssetPipeline, StaticAssetStrategy
from webarchive.services.crawler import CrawlError, CrawlScheduler
from webarchive.services.fetcher import FetchError, PageFetcher
from webarchive.services.processor import process_html
from webarchive.storage.base import ArchiveStore
from webarchive.utils import generate_id, get_origin, hostname_of, normalize_url

logger = logging.getLogger(__name__)


class ArchiveFailed(RuntimeError):
    def __init__(self, archive: Archive):
        self.archive = archive
        super().__init__(archive.error or "Archive failed")


class Archiver:
    def __init__(
        self,
        store: ArchiveStore,
        settings: Settings = default_settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.store = store
        self.settings = settings
        self.transport = transport

    async def archive(self, url: str, options: dict[str, Any] | ArchiveOptions | None = None) -> Archive:
        if not isinstance(options, ArchiveOptions):
            options = ArchiveOptions.from_request(options, self.settings)

        archive_id = generate_id()
        archived_at = datetime.now(UTC)
        archive = Archive(
            id=archive_id,
            url=url,
            title=hostname_of(normalize_url(url)),
            timestamp=archived_at.isoformat(),
        )
        logger.info("Archiving %s as %s (%s)", url, archive_id, options)

        try:
            await asyncio.wait_for(
                self._run(archive, options, archived_at),
                timeout=self.settings.session_timeout,
            )
        except Exception as exc:
            if isinstance(exc, asyncio.TimeoutError):
                reason = f"Archive timed out after {self.settings.session_timeout}s"
            else:
                reason = str(exc) or type(exc).__name__
            logger.exception("Archive failed for %s", url)
            # a storage error can land after the record was marked completed
            failed = Archive(id=archive_id, url=url, title=archive.title, timestamp=archive.timestamp)
            failed.fail(reason)
            try:
                await self.store.save(archive_id, failed, None)
            except OSError as store_exc:
                logger.error("Could not record failed archive %s: %s", archive_id, store_exc)
            raise ArchiveFailed(failed) from exc

        return archive

    async def _run(self, archive: Archive, options: ArchiveOptions, archived_at: datetime) -> None:
        async with httpx.AsyncClient(transport=self.transport, follow_redirects=True) as client:
            fetcher = PageFetcher(client, self.settings)

            if options.multi_page:
                try:
                    await self._archive_multi_page(archive, options, archived_at, client, fetcher)
                    return
                except CrawlError as exc:
                    logger.warning("Multi-page crawl failed for %s, falling back to single page: %s", archive.url, exc)

            await self._archive_single_page(archive, options, archived_at, client, fetcher)

    def _pipeline(self, archive_id: str, options: ArchiveOptions, client: httpx.AsyncClient) -> AssetPipeline | None:
        if not options.include_assets:
            return None
        downloader = AssetDownloader(client, archive_id, self.store.assets_dir(archive_id), self.settings)
        if options.render_js:
            from webarchive.services.browser import BrowserAssetStrategy

            return AssetPipeline(downloader, strategy=partial(BrowserAssetStrategy, settings=self.settings))
        return AssetPipeline(downloader, strategy=StaticAssetStrategy)

    def _finish_page(self, page: Page, archive_id: str, options: ArchiveOptions, archived_at: datetime, origin: str) -> Page:
        html = process_html(
            page.html,
            page.url,
            archive_id,
            assets_inlined=options.include_assets,
            archived_at=archived_at,
            site_origin=origin,
            viewer_prefix=self.settings.viewer_prefix,
        )
        return Page(url=page.url, title=page.title, html=html, size=page.size)

    async def _archive_multi_page(
        self,
        archive: Archive,
        options: ArchiveOptions,
        archived_at: datetime,
        client: httpx.AsyncClient,
        fetcher: PageFetcher,
    ) -> None:
        try:
            seed = await fetcher.fetch(archive.url)
        except FetchError as exc:
            raise CrawlError(f"Seed page unavailable: {exc}") from exc

        pipeline = self._pipeline(archive.id, options, client)
        scheduler = CrawlScheduler(fetcher, options, pipeline)
        result: CrawlResult = await scheduler.crawl(seed, requested_url=normalize_url(archive.url))
        if pipeline is not None:
            await pipeline.finalize()

        origin = get_origin(seed.url)
        processed = [self._finish_page(p, archive.id, options, archived_at, origin) for p in result.pages]
        archive.complete(result.pages, result.errors)
        await self.store.save_multi_page(archive.id, archive, processed)
        logger.info("Archived %s: %d pages, %d errors", archive.url, archive.page_count, len(archive.errors))

    async def _archive_single_page(
        self,
        archive: Archive,
        options: ArchiveOptions,
        archived_at: datetime,
        client: httpx.AsyncClient,
        fetcher: PageFetcher,
    ) -> None:
        page = await fetcher.fetch(archive.url)

        pipeline = self._pipeline(archive.id, options, client)
        if pipeline is not None:
            await pipeline.process_page(page)
            await pipeline.finalize()

        processed = self._finish_page(page, archive.id, options, archived_at, get_origin(page.url))
        archive.complete([page])
        await self.store.save(archive.id, archive, processed.html)
        logger.info("Archived single page %s", page.url)
