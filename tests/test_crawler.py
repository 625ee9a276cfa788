import httpx
import pytest

from conftest import run
from webarchive.models import ArchiveOptions
from webarchive.services.crawler import CrawlScheduler
from webarchive.services.fetcher import PageFetcher
from webarchive.utils import get_origin


def options(test_settings, **overrides):
    return ArchiveOptions.from_request({"requestDelay": 0, **overrides}, test_settings)


def crawl(site, test_settings, opts, seed_url="https://example.com/"):
    async def go():
        async with httpx.AsyncClient(transport=site.transport) as client:
            fetcher = PageFetcher(client, test_settings)
            seed = await fetcher.fetch(seed_url)
            return await CrawlScheduler(fetcher, opts).crawl(seed)

    return run(go())


def anchors(*hrefs):
    return "".join(f'<a href="{h}">{h}</a>' for h in hrefs)


@pytest.fixture
def mixed_site(site):
    same = [f"/p{i}" for i in range(1, 6)]
    cross = ["https://other.org/a", "https://third.net/b", "https://cdn.example.org/c"]
    site.page("https://example.com/", "<title>Home</title>" + anchors(*same, *cross))
    for path in same:
        site.page(f"https://example.com{path}", f"<title>{path}</title>" + anchors("/deeper" + path))
    for url in cross:
        site.page(url, "<title>elsewhere</title>")
    return site


def test_depth_one_archives_seed_and_same_origin_children(mixed_site, test_settings):
    result = crawl(mixed_site, test_settings, options(test_settings, maxDepth=1, maxPages=10))

    assert len(result.pages) == 6
    assert {get_origin(p.url) for p in result.pages} == {"https://example.com"}
    assert mixed_site.hits("https://other.org/a") == 0
    assert not any("deeper" in p.url for p in result.pages)


def test_depth_zero_archives_only_the_seed(mixed_site, test_settings):
    result = crawl(mixed_site, test_settings, options(test_settings, maxDepth=0, maxPages=50))

    assert [p.url for p in result.pages] == ["https://example.com/"]


def test_page_budget_is_never_exceeded(site, test_settings):
    site.page("https://example.com/", anchors(*[f"/p{i}" for i in range(20)]))
    for i in range(20):
        site.page(f"https://example.com/p{i}", anchors(*[f"/p{i}/c{j}" for j in range(5)]))

    result = crawl(site, test_settings, options(test_settings, maxDepth=3, maxPages=5, concurrency=3))

    assert len(result.pages) == 5
    assert len(site.requests) == 5


def test_failed_child_is_recorded_and_others_survive(site, test_settings):
    site.page("https://example.com/", anchors("/ok", "/broken"))
    site.page("https://example.com/ok", "<title>ok</title>")

    result = crawl(site, test_settings, options(test_settings, maxDepth=1))

    assert [p.url for p in result.pages] == ["https://example.com/", "https://example.com/ok"]
    assert result.errors[0]["url"] == "https://example.com/broken"
    assert "404" in result.errors[0]["error"]


def test_breadth_first_order_across_batches(site, test_settings):
    site.page("https://example.com/", anchors("/a", "/b"))
    site.page("https://example.com/a", anchors("/a/1"))
    site.page("https://example.com/b", anchors("/b/1"))
    site.page("https://example.com/a/1", "a1")
    site.page("https://example.com/b/1", "b1")

    result = crawl(site, test_settings, options(test_settings, maxDepth=2, concurrency=2))

    urls = [p.url for p in result.pages]
    assert urls[0] == "https://example.com/"
    assert set(urls[1:3]) == {"https://example.com/a", "https://example.com/b"}
    assert set(urls[3:]) == {"https://example.com/a/1", "https://example.com/b/1"}


def test_redirect_to_visited_page_is_not_archived_twice(site, test_settings):
    site.page("https://example.com/", anchors("/old", "/new"))
    site.redirect("https://example.com/old", "https://example.com/new")
    site.page("https://example.com/new", "<title>new</title>")

    result = crawl(site, test_settings, options(test_settings, maxDepth=1, concurrency=1))

    assert [p.url for p in result.pages] == ["https://example.com/", "https://example.com/new"]


def test_off_site_redirect_is_rejected_when_same_origin_only(site, test_settings):
    site.page("https://example.com/", anchors("/out"))
    site.redirect("https://example.com/out", "https://other.org/landing")
    site.page("https://other.org/landing", "elsewhere")

    result = crawl(site, test_settings, options(test_settings, maxDepth=1))

    assert [p.url for p in result.pages] == ["https://example.com/"]
    assert "other.org" in result.errors[0]["error"]


def test_shared_link_is_fetched_once(site, test_settings):
    site.page("https://example.com/", anchors("/a", "/b"))
    site.page("https://example.com/a", anchors("/shared"))
    site.page("https://example.com/b", anchors("/shared"))
    site.page("https://example.com/shared", "shared")

    result = crawl(site, test_settings, options(test_settings, maxDepth=2))

    assert len(result.pages) == 4
    assert site.hits("https://example.com/shared") == 1
