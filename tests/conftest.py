from __future__ import annotations

import asyncio

import httpx
import pytest

from webarchive.config import Settings
from webarchive.storage.local import LocalArchiveStore


class FakeSite:
    """In-memory web server for httpx.MockTransport."""

    def __init__(self):
        self.routes: dict[str, httpx.Response] = {}
        self.requests: list[httpx.Request] = []

    def page(self, url: str, html: str, status: int = 200, headers: dict | None = None) -> None:
        self.routes[url] = httpx.Response(
            status, headers={"content-type": "text/html; charset=utf-8", **(headers or {})}, text=html
        )

    def redirect(self, url: str, location: str, status: int = 301) -> None:
        self.routes[url] = httpx.Response(status, headers={"location": location})

    def asset(self, url: str, body: bytes, content_type: str = "application/octet-stream") -> None:
        self.routes[url] = httpx.Response(200, headers={"content-type": content_type}, content=body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get(str(request.url))
        if response is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    def hits(self, url: str) -> int:
        return sum(1 for r in self.requests if str(r.url) == url)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def site() -> FakeSite:
    return FakeSite()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        base_storage_dir=str(tmp_path / "archives"),
        strategy_delay=0,
        default_request_delay_ms=0,
        session_timeout=30,
    )


@pytest.fixture
def store(test_settings) -> LocalArchiveStore:
    return LocalArchiveStore(test_settings.base_storage_dir)
