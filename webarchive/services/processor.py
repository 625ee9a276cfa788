"""Final markup pass applied to every archived page before it is stored."""
from __future__ import annotations

import html as html_lib
import logging
from datetime import UTC, datetime
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from webarchive.config import settings
from webarchive.utils import get_origin

logger = logging.getLogger(__name__)

UNTOUCHED_HREFS = ("#", "javascript:", "mailto:", "tel:", "data:")


def render_banner(source_url: str, archived_at: datetime) -> str:
    escaped = html_lib.escape(source_url, quote=True)
    stamp = archived_at.astimezone(UTC).strftime("%Y-%m-%d %H:%M UTC")
    return (
        '<div data-archive-banner="" style="background:#f0f9ff;border-bottom:2px solid #3b82f6;'
        "padding:10px;text-align:center;font-family:system-ui,sans-serif;font-size:13px;"
        'position:sticky;top:0;z-index:2147483647;">'
        "<strong>📁 Archived Page</strong> - "
        f'Original: <a href="{escaped}" target="_blank" rel="noopener noreferrer" '
        f'style="color:#3b82f6;">{escaped}</a> - '
        f"Archived: {stamp}"
        "</div>"
    )


def viewer_link(archive_id: str, path: str, viewer_prefix: str) -> str:
    if path in ("", "/"):
        path = ""
    return f"{viewer_prefix.rstrip('/')}/{archive_id}{path}"


def _absolutize(soup: BeautifulSoup, base_url: str) -> None:
    targets = [(img, "src") for img in soup.find_all("img", src=True)]
    targets += [
        (link, "href")
        for link in soup.find_all("link", href=True)
        if "stylesheet" in [r.lower() for r in (link.get("rel") or [])]
    ]
    for element, attr in targets:
        value = str(element[attr]).strip()
        if not value or value.startswith(("data:", "http://", "https://")):
            continue
        try:
            element[attr] = urljoin(base_url, value)
        except ValueError:
            continue


def _rewrite_anchors(soup: BeautifulSoup, source_url: str, site_origin: str, archive_id: str, viewer_prefix: str) -> None:
    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        if not href or href.lower().startswith(UNTOUCHED_HREFS):
            continue
        try:
            absolute = urljoin(source_url, href)
        except ValueError:
            continue
        parsed = urlparse(absolute)
        if parsed.scheme not in ("http", "https"):
            continue
        if get_origin(absolute) == site_origin:
            anchor["href"] = viewer_link(archive_id, parsed.path, viewer_prefix)
        else:
            anchor["href"] = absolute
            anchor["target"] = "_blank"
            anchor["rel"] = "noopener noreferrer"


def process_html(
    html: str,
    source_url: str,
    archive_id: str,
    *,
    assets_inlined: bool,
    archived_at: datetime | None = None,
    site_origin: str | None = None,
    viewer_prefix: str | None = None,
) -> str:
    """Make one page safe and navigable for offline replay.

    Scripts are dropped, relative image and stylesheet references become
    absolute unless the assets were downloaded, same-origin anchors point into
    the archive and cross-origin anchors open the live site in a new tab.
    A provenance banner is added last.
    """
    archived_at = archived_at or datetime.now(UTC)
    site_origin = (site_origin or get_origin(source_url)).rstrip("/").lower()
    viewer_prefix = viewer_prefix if viewer_prefix is not None else settings.viewer_prefix

    soup = BeautifulSoup(html, "html.parser")
    for script in soup.find_all("script"):
        script.decompose()

    if not assets_inlined:
        _absolutize(soup, source_url)

    _rewrite_anchors(soup, source_url, site_origin, archive_id, viewer_prefix)

    banner_html = render_banner(source_url, archived_at)
    container = soup.body or soup.find("html")
    if container is None:
        return banner_html + str(soup)
    banner = BeautifulSoup(banner_html, "html.parser").div
    container.insert(0, banner)
    return str(soup)
