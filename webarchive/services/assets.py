"""
Asset pipeline — downloads images, stylesheets, scripts and fonts a page
references and points the page at the local copies.

One AssetMap is shared by every page of an archive run so a given asset URL
is downloaded at most once. Discovery is pluggable: StaticAssetStrategy
reads the fetched HTML, BrowserAssetStrategy (services/browser.py) also
captures requests made while the page renders.
"""
from __future__ import annotations

import asyncio
import logging
import posixpath
import re
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any
from urllib.parse import unquote, urldefrag, urljoin, urlparse

import httpx
from bs4 import BeautifulSoup, Tag

from webarchive.config import Settings, settings as default_settings
from webarchive.models import Page
from webarchive.services.fetcher import DESKTOP_USER_AGENT

logger = logging.getLogger(__name__)

CSS_URL_RE = re.compile(r"""url\(\s*(['"]?)([^'")]+?)\1\s*\)""", re.IGNORECASE)
CSS_IMPORT_RE = re.compile(r"""@import\s+(['"])([^'"]+)\1""", re.IGNORECASE)
BACKGROUND_RE = re.compile(r"background", re.IGNORECASE)
EXTENSION_RE = re.compile(r"^\.[a-z0-9]{1,5}$", re.IGNORECASE)

RESOURCE_EXTENSIONS = {
    "stylesheet": ".css",
    "script": ".js",
    "font": ".woff2",
    "image": ".jpg",
}

ASSET_HEADERS = {
    "User-Agent": DESKTOP_USER_AGENT,
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
}


class AssetDownloadError(Exception):
    pass


def guess_extension(url: str) -> str:
    lowered = url.lower()
    if "css" in lowered or "style" in lowered:
        return ".css"
    if "js" in lowered or "script" in lowered:
        return ".js"
    if "font" in lowered or "woff" in lowered or "ttf" in lowered:
        return ".woff2"
    return ".jpg"


def asset_filename(url: str, resource_type: str | None = None) -> str:
    """Collision-resistant local filename for an asset URL."""
    token = uuid.uuid4().hex[:12]
    basename = posixpath.basename(unquote(urlparse(url).path))
    _, ext = posixpath.splitext(basename)
    if basename and EXTENSION_RE.match(ext):
        safe = re.sub(r"[^A-Za-z0-9._-]", "_", basename)[-80:]
        return f"{token}_{safe}"
    ext = RESOURCE_EXTENSIONS.get(resource_type or "") or guess_extension(url)
    return f"{token}{ext}"


def is_fetchable(url: str) -> bool:
    return urlparse(url).scheme in ("http", "https")


def resolve_asset_url(base_url: str, raw: str) -> str | None:
    """Absolute, fragment-free URL for an asset reference, or None if it is not downloadable."""
    raw = raw.strip()
    if not raw or raw.startswith(("data:", "#")):
        return None
    try:
        absolute = urldefrag(urljoin(base_url, raw)).url
    except ValueError:
        return None
    return absolute if is_fetchable(absolute) else None


@contextmanager
def partial_file(path: Path) -> Iterator[IO[bytes]]:
    """Open path for writing; remove it again unless the block completes."""
    handle = path.open("wb")
    try:
        yield handle
    except BaseException:
        handle.close()
        path.unlink(missing_ok=True)
        raise
    else:
        handle.close()


class AssetMap:
    """Absolute asset URL -> local reference, shared across one archive run.

    resolve() is single-flight: concurrent callers for the same URL wait on
    the first caller's download instead of starting their own.
    """

    def __init__(self):
        self._entries: dict[str, str] = {}
        self._failed: set[str] = set()
        self._pending: dict[str, asyncio.Future] = {}

    def __contains__(self, url: str) -> bool:
        return url in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, url: str) -> str | None:
        return self._entries.get(url)

    def items(self) -> list[tuple[str, str]]:
        return list(self._entries.items())

    async def resolve(self, url: str, download: Callable[[], Awaitable[str]]) -> str | None:
        if url in self._entries:
            return self._entries[url]
        if url in self._failed:
            return None
        pending = self._pending.get(url)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._pending[url] = future
        reference: str | None = None
        try:
            reference = await download()
        except (httpx.HTTPError, httpx.InvalidURL, OSError, AssetDownloadError) as exc:
            logger.warning("Asset download failed for %s: %s", url, exc)
            self._failed.add(url)
        except BaseException:
            future.cancel()
            self._pending.pop(url, None)
            raise

        if reference is not None:
            self._entries[url] = reference
        self._pending.pop(url, None)
        future.set_result(reference)
        return reference


class AssetDownloader:
    def __init__(
        self,
        client: httpx.AsyncClient,
        archive_id: str,
        assets_dir: Path,
        settings: Settings = default_settings,
    ):
        self.client = client
        self.archive_id = archive_id
        self.assets_dir = Path(assets_dir)
        self.settings = settings
        self._semaphore = asyncio.Semaphore(max(1, settings.asset_concurrency))

    def reference_for(self, filename: str) -> str:
        return f"{self.settings.viewer_prefix.rstrip('/')}/{self.archive_id}/assets/{filename}"

    def path_for(self, reference: str) -> Path:
        return self.assets_dir / reference.rsplit("/", 1)[-1]

    async def download(self, url: str, resource_type: str | None = None) -> str:
        """Stream url into the assets directory and return its local reference."""
        filename = asset_filename(url, resource_type)
        destination = self.assets_dir / filename
        limit = self.settings.max_asset_bytes

        async with self._semaphore:
            self.assets_dir.mkdir(parents=True, exist_ok=True)
            async with self.client.stream(
                "GET",
                url,
                headers=ASSET_HEADERS,
                timeout=self.settings.asset_timeout,
                follow_redirects=True,
            ) as response:
                if not 200 <= response.status_code < 300:
                    raise AssetDownloadError(f"HTTP {response.status_code}")
                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > limit:
                    raise AssetDownloadError(f"content-length {declared} exceeds {limit}")

                received = 0
                with partial_file(destination) as handle:
                    async for chunk in response.aiter_bytes():
                        received += len(chunk)
                        if received > limit:
                            raise AssetDownloadError(f"body exceeds {limit} bytes")
                        handle.write(chunk)

        logger.info("Downloaded asset %s -> %s (%d bytes)", url, filename, received)
        return self.reference_for(filename)


@dataclass
class AssetRef:
    element: Tag
    attr: str
    url: str
    resource_type: str


def _rel(element: Tag) -> list[str]:
    rel = element.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return [r.lower() for r in rel]


def _iter_asset_refs(soup: BeautifulSoup, base_url: str) -> Iterator[AssetRef]:
    candidates: list[tuple[Tag, str, str]] = []
    for img in soup.find_all("img", src=True):
        candidates.append((img, "src", "image"))
    for link in soup.find_all("link", href=True):
        rel = _rel(link)
        if "stylesheet" in rel:
            candidates.append((link, "href", "stylesheet"))
        elif "preload" in rel and str(link.get("as", "")).lower() in ("font", "style"):
            kind = "font" if str(link.get("as")).lower() == "font" else "stylesheet"
            candidates.append((link, "href", kind))
    for script in soup.find_all("script", src=True):
        candidates.append((script, "src", "script"))

    for element, attr, kind in candidates:
        absolute = resolve_asset_url(base_url, str(element.get(attr, "")))
        if absolute:
            yield AssetRef(element, attr, absolute, kind)


def _style_urls(style: str, base_url: str) -> list[str]:
    urls = []
    for match in CSS_URL_RE.finditer(style):
        absolute = resolve_asset_url(base_url, match.group(2))
        if absolute:
            urls.append(absolute)
    return urls


def _replace_css_urls(text: str, base_url: str, mapping: dict[str, str | None]) -> str:
    """Point url() and @import references at local copies.

    References whose download failed are made absolute so they still reach the
    live site once the markup is served from the archive.
    """

    def target(raw: str) -> str | None:
        absolute = resolve_asset_url(base_url, raw)
        if absolute is None or absolute not in mapping:
            return None
        fragment = urldefrag(raw.strip()).fragment
        replacement = mapping[absolute] or absolute
        return f"{replacement}#{fragment}" if fragment else replacement

    def swap_url(match: re.Match) -> str:
        replacement = target(match.group(2))
        return f'url("{replacement}")' if replacement else match.group(0)

    def swap_import(match: re.Match) -> str:
        replacement = target(match.group(2))
        return f'@import "{replacement}"' if replacement else match.group(0)

    return CSS_IMPORT_RE.sub(swap_import, CSS_URL_RE.sub(swap_url, text))


class AssetStrategy(ABC):
    """How one page's assets are discovered before they are rewritten."""

    def __init__(self, pipeline: AssetPipeline):
        self.pipeline = pipeline

    @abstractmethod
    async def discover_and_download(self, page: Page) -> str:
        raise NotImplementedError


class StaticAssetStrategy(AssetStrategy):
    async def discover_and_download(self, page: Page) -> str:
        return await self.pipeline.rewrite_html(page.html, page.url)


class AssetPipeline:
    def __init__(
        self,
        downloader: AssetDownloader,
        asset_map: AssetMap | None = None,
        strategy: Callable[[AssetPipeline], AssetStrategy] = StaticAssetStrategy,
    ):
        self.downloader = downloader
        self.asset_map = asset_map if asset_map is not None else AssetMap()
        self.strategy = strategy(self)

    async def fetch_asset(self, url: str, resource_type: str | None = None) -> str | None:
        return await self.asset_map.resolve(url, lambda: self.downloader.download(url, resource_type))

    async def process_page(self, page: Page) -> str:
        """Download the page's assets and replace page.html with the rewritten markup."""
        page.html = await self.strategy.discover_and_download(page)
        return page.html

    async def rewrite_html(self, html: str, base_url: str) -> str:
        soup = BeautifulSoup(html, "html.parser")
        refs = list(_iter_asset_refs(soup, base_url))
        styled = [
            (element, _style_urls(str(element["style"]), base_url))
            for element in soup.find_all(style=BACKGROUND_RE)
        ]

        wanted: dict[str, str | None] = {}
        for ref in refs:
            wanted.setdefault(ref.url, ref.resource_type)
        for _, urls in styled:
            for url in urls:
                wanted.setdefault(url, "image")
        if not wanted:
            return html

        mapping = await self._fetch_all(wanted)

        for ref in refs:
            ref.element[ref.attr] = mapping.get(ref.url) or ref.url
        for element, urls in styled:
            if urls:
                element["style"] = _replace_css_urls(str(element["style"]), base_url, mapping)
        return str(soup)

    async def finalize(self) -> None:
        """Rewrite url(...) and @import references inside downloaded stylesheets.

        Stylesheets pulled in by this pass are rewritten as well.
        """
        done: set[str] = set()
        while True:
            pending = [
                (url, reference)
                for url, reference in self.asset_map.items()
                if url not in done and reference.lower().endswith(".css")
            ]
            if not pending:
                break
            for url, reference in pending:
                done.add(url)
                await self._rewrite_stylesheet(url, self.downloader.path_for(reference))

    async def _rewrite_stylesheet(self, css_url: str, path: Path) -> None:
        if not path.exists():
            return
        try:
            with path.open("r", encoding="utf-8", errors="replace", newline="") as f:
                css = f.read()
        except OSError as exc:
            logger.warning("Could not reopen stylesheet %s: %s", path, exc)
            return

        wanted: dict[str, str | None] = {}
        for match in CSS_IMPORT_RE.finditer(css):
            _add_css_ref(wanted, css_url, match.group(2), "stylesheet")
        for match in CSS_URL_RE.finditer(css):
            raw = match.group(2).strip()
            kind = "stylesheet" if raw.lower().split("?")[0].endswith(".css") else None
            _add_css_ref(wanted, css_url, raw, kind)
        if not wanted:
            return

        mapping = await self._fetch_all(wanted)
        rewritten = _replace_css_urls(css, css_url, mapping)
        if rewritten != css:
            with path.open("w", encoding="utf-8", newline="") as f:
                f.write(rewritten)
            logger.info("Rewrote references in stylesheet %s", path.name)

    async def _fetch_all(self, wanted: dict[str, Any]) -> dict[str, str | None]:
        urls = list(wanted)
        results = await asyncio.gather(*(self.fetch_asset(url, wanted[url]) for url in urls))
        return dict(zip(urls, results))


def _add_css_ref(wanted: dict[str, str | None], css_url: str, raw: str, kind: str | None) -> None:
    absolute = resolve_asset_url(css_url, raw)
    if absolute:
        wanted.setdefault(absolute, kind)
