from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from webarchive.config import Settings

PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"


@dataclass
class Page:
    url: str                    # final URL after redirects
    title: str
    html: str
    size: int = 0

    def summary(self) -> dict[str, Any]:
        return {"url": self.url, "title": self.title, "size": self.size}


@dataclass(frozen=True)
class FrontierEntry:
    url: str
    depth: int


@dataclass(frozen=True)
class SitemapEntry:
    url: str
    title: str
    file: str

    @staticmethod
    def filename_for(index: int) -> str:
        return "index.html" if index == 0 else f"page-{index}.html"

    @classmethod
    def for_index(cls, index: int, page: Page | dict) -> SitemapEntry:
        if isinstance(page, dict):
            return cls(url=page.get("url", ""), title=page.get("title", ""), file=cls.filename_for(index))
        return cls(url=page.url, title=page.title, file=cls.filename_for(index))

    def to_dict(self) -> dict[str, str]:
        return {"url": self.url, "title": self.title, "file": self.file}


@dataclass
class Archive:
    id: str
    url: str
    title: str
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    status: str = PENDING
    page_count: int = 0
    size: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)
    pages: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    def complete(self, pages: list[Page], errors: list[dict[str, str]] | None = None) -> Archive:
        self._leave_pending(COMPLETED)
        self.page_count = len(pages)
        self.size = sum(p.size for p in pages)
        self.pages = [p.summary() for p in pages]
        self.errors = list(errors or [])
        if pages and pages[0].title:
            self.title = pages[0].title
        return self

    def fail(self, reason: str) -> Archive:
        self._leave_pending(FAILED)
        self.page_count = 0
        self.error = reason
        return self

    def _leave_pending(self, status: str) -> None:
        if self.status != PENDING:
            raise ValueError(f"archive {self.id} is already {self.status}")
        self.status = status

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "timestamp": self.timestamp,
            "status": self.status,
            "pageCount": self.page_count,
            "size": self.size,
            "errors": self.errors,
            "pages": self.pages,
        }
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Archive:
        return cls(
            id=data["id"],
            url=data.get("url", ""),
            title=data.get("title", ""),
            timestamp=str(data.get("timestamp", "")),
            status=data.get("status", COMPLETED),
            page_count=data.get("pageCount", data.get("page_count", 0)) or 0,
            size=data.get("size", 0) or 0,
            errors=list(data.get("errors") or []),
            pages=list(data.get("pages") or []),
            error=data.get("error"),
        )


@dataclass
class CrawlResult:
    pages: list[Page]
    errors: list[dict[str, str]] = field(default_factory=list)


def _pick(options: dict[str, Any], camel: str, snake: str, default: Any) -> Any:
    if camel in options and options[camel] is not None:
        return options[camel]
    if snake in options and options[snake] is not None:
        return options[snake]
    return default


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass(frozen=True)
class ArchiveOptions:
    """Resolved crawl options; every default is applied here and nowhere else."""

    max_pages: int
    max_depth: int
    same_origin_only: bool
    include_assets: bool
    concurrency: int
    request_delay: int          # milliseconds
    render_js: bool = False

    @property
    def multi_page(self) -> bool:
        return self.max_pages > 1

    @classmethod
    def from_request(cls, options: dict[str, Any] | None, settings: Settings) -> ArchiveOptions:
        options = options or {}
        return cls(
            max_pages=int(_pick(options, "maxPages", "max_pages", settings.default_max_pages)),
            max_depth=max(0, int(_pick(options, "maxDepth", "max_depth", settings.default_max_depth))),
            same_origin_only=_flag(
                _pick(options, "sameOriginOnly", "same_origin_only", settings.default_same_origin_only)
            ),
            include_assets=_flag(
                _pick(options, "includeAssets", "include_assets", settings.include_assets_default)
            ),
            concurrency=max(1, int(_pick(options, "concurrency", "concurrency", settings.default_concurrency))),
            request_delay=max(
                0, int(_pick(options, "requestDelay", "request_delay", settings.default_request_delay_ms))
            ),
            render_js=_flag(_pick(options, "renderJs", "render_js", settings.render_js_default)),
        )
