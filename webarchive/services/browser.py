"""
Rendered-browser asset discovery.

The page is loaded in headless Chromium and every stylesheet, image, font and
script request it makes is recorded. Those assets go through the shared
AssetMap first, then the rendered DOM is rewritten the same way the static
strategy rewrites fetched HTML. This sees assets injected by scripts, at the
cost of a full browser per page.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Request
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from webarchive.config import Settings, settings as default_settings
from webarchive.models import Page
from webarchive.services.assets import AssetPipeline, AssetStrategy, is_fetchable
from webarchive.services.fetcher import DESKTOP_USER_AGENT

logger = logging.getLogger(__name__)

INTERCEPTED_TYPES = frozenset({"stylesheet", "image", "font", "script"})

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-extensions",
    "--disable-blink-features=AutomationControlled",
]


@dataclass
class RenderedPage:
    html: str
    url: str
    requests: list[tuple[str, str]] = field(default_factory=list)   # (url, resource type)


class BrowserAssetStrategy(AssetStrategy):
    def __init__(self, pipeline: AssetPipeline, settings: Settings = default_settings):
        super().__init__(pipeline)
        self.settings = settings

    async def discover_and_download(self, page: Page) -> str:
        try:
            rendered = await self.render(page.url)
        except (PlaywrightError, PlaywrightTimeoutError) as exc:
            logger.warning("Render failed for %s, using fetched HTML: %s", page.url, exc)
            return await self.pipeline.rewrite_html(page.html, page.url)

        seen: dict[str, str] = {}
        for url, resource_type in rendered.requests:
            if resource_type in INTERCEPTED_TYPES and is_fetchable(url):
                seen.setdefault(url, resource_type)
        logger.info("Intercepted %d asset requests on %s", len(seen), rendered.url)
        await asyncio.gather(*(self.pipeline.fetch_asset(url, kind) for url, kind in seen.items()))

        return await self.pipeline.rewrite_html(rendered.html, rendered.url)

    async def render(self, url: str) -> RenderedPage:
        timeout = self.settings.playwright_timeout_ms
        requests: list[tuple[str, str]] = []

        def record(request: Request) -> None:
            requests.append((request.url, request.resource_type))

        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=True, args=BROWSER_ARGS)
            try:
                context = await browser.new_context(
                    user_agent=DESKTOP_USER_AGENT,
                    viewport={"width": 1920, "height": 1080},
                    locale="en-US",
                )
                page = await context.new_page()
                page.set_default_timeout(timeout)
                page.on("request", record)

                try:
                    await page.goto(url, wait_until="networkidle", timeout=timeout)
                except PlaywrightTimeoutError:
                    # networkidle never settles on some SPAs
                    await page.goto(url, wait_until="domcontentloaded", timeout=timeout)

                await page.wait_for_timeout(self.settings.render_wait_ms)
                html = await page.content()
                final_url = page.url
            finally:
                await browser.close()

        return RenderedPage(html=html, url=final_url, requests=requests)
