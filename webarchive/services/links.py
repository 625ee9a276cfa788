"""Anchor extraction and crawl-worthiness filtering."""
from __future__ import annotations

import logging
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from webarchive.utils import get_origin, strip_fragment

logger = logging.getLogger(__name__)

MAX_LINKS_PER_PAGE = 100

NON_HTML_EXTENSIONS = frozenset({
    # images
    ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".bmp", ".ico", ".tif", ".tiff", ".avif",
    # archives
    ".zip", ".rar", ".7z", ".tar", ".gz", ".tgz", ".bz2", ".xz",
    # documents
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".odt", ".ods", ".rtf",
    # media
    ".mp3", ".mp4", ".wav", ".ogg", ".webm", ".avi", ".mov", ".mkv", ".flac", ".m4a",
    # styles, scripts, fonts
    ".css", ".js", ".mjs", ".map", ".woff", ".woff2", ".ttf", ".eot", ".otf",
    # data files and binaries
    ".json", ".xml", ".csv", ".txt", ".rss", ".atom", ".exe", ".dmg", ".apk", ".iso", ".bin",
})

EXCLUDED_PATH_PREFIXES = (
    "/admin", "/wp-admin", "/wp-login", "/login", "/logout", "/signin", "/signup", "/register",
    "/account", "/cart", "/checkout", "/search", "/privacy", "/terms", "/legal",
    "/robots", "/favicon", "/feed", "/api",
)

SKIPPED_SCHEMES = ("javascript:", "mailto:", "tel:", "data:")


def _has_non_html_extension(path: str) -> bool:
    last = path.rsplit("/", 1)[-1].lower()
    if "." not in last:
        return False
    return "." + last.rsplit(".", 1)[-1] in NON_HTML_EXTENSIONS


def _is_excluded_path(path: str) -> bool:
    lowered = path.lower()
    return any(
        lowered == prefix or lowered.startswith((prefix + "/", prefix + "."))
        for prefix in EXCLUDED_PATH_PREFIXES
    )


def extract_links(
    html: str,
    page_url: str,
    base_origin: str,
    same_origin_only: bool = True,
) -> list[str]:
    """Return crawlable absolute URLs linked from a page.

    Relative hrefs resolve against page_url. Results keep document order,
    are deduplicated and capped at MAX_LINKS_PER_PAGE. A page that cannot
    be parsed yields no links.
    """
    try:
        soup = BeautifulSoup(html, "html.parser")
        anchors = soup.find_all("a", href=True)
    except Exception as exc:
        logger.warning("Link extraction failed for %s: %s", page_url, exc)
        return []

    base_origin = base_origin.rstrip("/").lower()
    page_key = strip_fragment(page_url)
    site_roots = {base_origin, base_origin + "/"}

    links: list[str] = []
    seen: set[str] = set()
    for anchor in anchors:
        href = str(anchor["href"]).strip()
        if not href or href.startswith("#") or href.lower().startswith(SKIPPED_SCHEMES):
            continue
        try:
            resolved = strip_fragment(urljoin(page_url, href))
            parsed = urlparse(resolved)
        except ValueError:
            continue
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            continue
        if same_origin_only and get_origin(resolved) != base_origin:
            continue
        if resolved == page_key or resolved in site_roots:
            continue
        if _has_non_html_extension(parsed.path) or _is_excluded_path(parsed.path):
            continue
        if resolved in seen:
            continue
        seen.add(resolved)
        links.append(resolved)
        if len(links) >= MAX_LINKS_PER_PAGE:
            break

    return links
