"""Breadth-first crawl scheduler: frontier queue, visited set, batch dispatch."""
from __future__ import annotations

import asyncio
import logging
from collections import deque

from webarchive.models import ArchiveOptions, CrawlResult, FrontierEntry, Page
from webarchive.services.assets import AssetPipeline
from webarchive.services.fetcher import FetchError, PageFetcher
from webarchive.services.links import extract_links
from webarchive.utils import get_origin

logger = logging.getLogger(__name__)


class CrawlError(RuntimeError):
    pass


class CrawlScheduler:
    """Crawls outward from a seed page within page, depth and concurrency budgets.

    All tasks of a run share one event loop, and the visited set and queue
    are only touched between awaits, so check-then-mark is never interleaved.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        options: ArchiveOptions,
        assets: AssetPipeline | None = None,
    ):
        self.fetcher = fetcher
        self.options = options
        self.assets = assets
        self.queue: deque[FrontierEntry] = deque()
        self.visited: set[str] = set()
        self.queued: set[str] = set()
        self.pages: list[Page] = []
        self.errors: list[dict[str, str]] = []
        self.origin = ""

    async def crawl(self, seed: Page, requested_url: str | None = None) -> CrawlResult:
        self.origin = get_origin(seed.url)
        self.visited.add(seed.url)
        if requested_url:
            self.visited.add(requested_url)

        seed_links: list[str] = []
        if self.options.max_depth > 0:
            seed_links = self._links(seed)
        if self.assets is not None:
            await self.assets.process_page(seed)
        self.pages.append(seed)
        self._enqueue(seed_links, depth=1)

        while self.queue and len(self.pages) < self.options.max_pages:
            # never more than the remaining page budget, so every fetched page is kept
            size = min(self.options.concurrency, len(self.queue), self.options.max_pages - len(self.pages))
            batch = [self.queue.popleft() for _ in range(size)]
            logger.info(
                "Crawling batch of %d (pages=%d, queued=%d)", len(batch), len(self.pages), len(self.queue)
            )

            results = await asyncio.gather(*(self._visit(entry) for entry in batch))

            for result in results:
                if result is None:
                    continue
                page, entry, links = result
                self.pages.append(page)
                self._enqueue(links, depth=entry.depth + 1)

            if self.queue and self.options.request_delay > 0:
                await asyncio.sleep(self.options.request_delay / 1000)

        if not self.pages:
            raise CrawlError("No pages were archived")

        logger.info("Crawl finished: %d pages, %d errors", len(self.pages), len(self.errors))
        return CrawlResult(pages=list(self.pages), errors=list(self.errors))

    async def _visit(self, entry: FrontierEntry) -> tuple[Page, FrontierEntry, list[str]] | None:
        if entry.url in self.visited or entry.depth > self.options.max_depth:
            return None
        self.visited.add(entry.url)

        try:
            page = await self.fetcher.fetch(entry.url)
        except FetchError as exc:
            logger.warning("Skipping %s: %s", entry.url, exc)
            self.errors.append({"url": entry.url, "error": str(exc)})
            return None

        if page.url != entry.url:
            if page.url in self.visited:
                logger.info("Skipping %s: redirects to already archived %s", entry.url, page.url)
                return None
            if self.options.same_origin_only and get_origin(page.url) != self.origin:
                self.errors.append({"url": entry.url, "error": f"Redirected off-site to {page.url}"})
                return None
            self.visited.add(page.url)

        links: list[str] = []
        if entry.depth < self.options.max_depth:
            links = self._links(page)
        if self.assets is not None:
            await self.assets.process_page(page)
        return page, entry, links

    def _links(self, page: Page) -> list[str]:
        return extract_links(page.html, page.url, self.origin, self.options.same_origin_only)

    def _enqueue(self, links: list[str], depth: int) -> None:
        for link in links:
            if link in self.visited or link in self.queued:
                continue
            if len(self.pages) + len(self.queue) >= self.options.max_pages:
                break
            self.queue.append(FrontierEntry(link, depth))
            self.queued.add(link)
