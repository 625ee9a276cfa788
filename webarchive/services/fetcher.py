"""
Page fetcher — retrieves one URL through an ordered list of request profiles.

Each profile is a full header/timeout/redirect setup. Profiles are tried in
order with a short pause in between until one returns a 2xx/3xx response
that fits under the content size cap.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

import httpx
from bs4 import BeautifulSoup

from webarchive.config import Settings, settings as default_settings
from webarchive.models import Page
from webarchive.utils import fetch_candidates, hostname_of

logger = logging.getLogger(__name__)

DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)
MOBILE_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_2 like Mac OS X) "
    "AppleWebKit/605.1.15 (KHTML, like Gecko) "
    "Version/17.2 Mobile/15E148 Safari/604.1"
)

DESKTOP_HEADERS = {
    "User-Agent": DESKTOP_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Ch-Ua": '"Chromium";v="122", "Not(A:Brand";v="24", "Google Chrome";v="122"',
    "Sec-Ch-Ua-Mobile": "?0",
    "Sec-Ch-Ua-Platform": '"Windows"',
}


@dataclass(frozen=True)
class RequestProfile:
    name: str
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = 30.0
    follow_redirects: bool = True
    max_redirects: int = 10


def default_profiles(timeout: float) -> list[RequestProfile]:
    return [
        RequestProfile("desktop", dict(DESKTOP_HEADERS), timeout=timeout),
        RequestProfile(
            "desktop-referrer",
            {**DESKTOP_HEADERS, "Referer": "https://www.google.com/", "Sec-Fetch-Site": "cross-site"},
            timeout=timeout,
        ),
        RequestProfile(
            "mobile",
            {
                "User-Agent": MOBILE_USER_AGENT,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.9",
            },
            timeout=timeout,
        ),
    ]


class FetchError(RuntimeError):
    def __init__(self, url: str, attempts: list[tuple[str, str]]):
        self.url = url
        self.attempts = attempts
        detail = "; ".join(f"{name}: {reason}" for name, reason in attempts) or "no attempts"
        super().__init__(f"Failed to fetch {url} ({detail})")


class ContentTooLarge(Exception):
    pass


def extract_title(html: str, url: str) -> str:
    try:
        soup = BeautifulSoup(html, "html.parser")
    except Exception as exc:
        logger.warning("Title parse failed for %s: %s", url, exc)
        return hostname_of(url)
    if soup.title and soup.title.string and soup.title.string.strip():
        return soup.title.string.strip()
    return hostname_of(url)


class PageFetcher:
    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Settings = default_settings,
        profiles: list[RequestProfile] | None = None,
    ):
        self.client = client
        self.settings = settings
        self.profiles = profiles or default_profiles(float(settings.request_timeout))

    async def fetch(self, url: str) -> Page:
        attempts: list[tuple[str, str]] = []
        first = True
        for candidate in fetch_candidates(url):
            for profile in self.profiles:
                if not first and self.settings.strategy_delay > 0:
                    await asyncio.sleep(self.settings.strategy_delay)
                first = False
                try:
                    return await self._attempt(candidate, profile)
                except ContentTooLarge as exc:
                    attempts.append((profile.name, str(exc)))
                except (httpx.HTTPError, httpx.InvalidURL) as exc:
                    attempts.append((profile.name, f"{type(exc).__name__}: {exc}"))
                logger.info("Strategy %s failed for %s: %s", profile.name, candidate, attempts[-1][1])
        raise FetchError(url, attempts)

    async def _attempt(self, url: str, profile: RequestProfile) -> Page:
        limit = self.settings.max_content_bytes
        target = url
        for _ in range(profile.max_redirects + 1):
            async with self.client.stream(
                "GET",
                target,
                headers=profile.headers,
                timeout=profile.timeout,
                follow_redirects=False,
            ) as response:
                if profile.follow_redirects and response.next_request is not None:
                    target = str(response.next_request.url)
                    continue
                if not 200 <= response.status_code < 400:
                    raise httpx.HTTPStatusError(
                        f"HTTP {response.status_code}", request=response.request, response=response
                    )
                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > limit:
                    raise ContentTooLarge(f"content-length {declared} exceeds {limit}")

                chunks: list[bytes] = []
                received = 0
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > limit:
                        raise ContentTooLarge(f"body exceeds {limit} bytes")
                    chunks.append(chunk)

                body = b"".join(chunks)
                try:
                    html = body.decode(response.encoding or "utf-8", errors="replace")
                except LookupError:
                    html = body.decode("utf-8", errors="replace")
                final_url = str(response.url)

            logger.info("Fetched %s via %s (%d bytes)", final_url, profile.name, len(body))
            return Page(url=final_url, title=extract_title(html, final_url), html=html, size=len(body))

        raise httpx.TooManyRedirects(
            f"Exceeded {profile.max_redirects} redirects", request=httpx.Request("GET", target)
        )
