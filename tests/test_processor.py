from datetime import UTC, datetime

from bs4 import BeautifulSoup

from webarchive.services.processor import process_html

ARCHIVED_AT = datetime(2024, 5, 1, 12, 30, tzinfo=UTC)


def process(html, assets_inlined=False, source_url="https://example.com/docs/page"):
    return process_html(
        html,
        source_url,
        "abc123",
        assets_inlined=assets_inlined,
        archived_at=ARCHIVED_AT,
        viewer_prefix="/api/view",
    )


def test_strips_every_script():
    out = process('<html><body><script>alert(1)</script><script src="/a.js"></script><p>ok</p></body></html>')
    soup = BeautifulSoup(out, "html.parser")
    assert soup.find("script") is None
    assert soup.find("p").text == "ok"


def test_banner_is_first_child_of_body():
    out = process("<html><body><p>content</p></body></html>")
    body = BeautifulSoup(out, "html.parser").body
    banner = body.find(True)
    assert banner.has_attr("data-archive-banner")
    assert "https://example.com/docs/page" in banner.text
    assert "2024-05-01 12:30 UTC" in banner.text
    assert banner.find("a")["href"] == "https://example.com/docs/page"


def test_banner_goes_into_html_without_body_or_is_prepended():
    in_html = BeautifulSoup(process("<html><p>x</p></html>"), "html.parser")
    assert in_html.find("html").find(True).has_attr("data-archive-banner")

    bare = process("<p>fragment</p>")
    assert bare.startswith("<div data-archive-banner")


def test_same_origin_links_point_into_the_archive():
    out = process(
        '<body><a href="/">home</a><a href="../about/">about</a>'
        '<a href="https://example.com/blog?x=1">blog</a><a href="#frag">frag</a></body>'
    )
    hrefs = [a["href"] for a in BeautifulSoup(out, "html.parser").find_all("a")[1:]]
    assert hrefs == ["/api/view/abc123", "/api/view/abc123/about/", "/api/view/abc123/blog", "#frag"]


def test_cross_origin_links_open_in_new_context():
    out = process('<body><a href="https://other.org/x">x</a></body>')
    link = BeautifulSoup(out, "html.parser").find_all("a")[-1]
    assert link["href"] == "https://other.org/x"
    assert link["target"] == "_blank"


def test_relative_assets_become_absolute_without_downloads():
    html = '<head><link rel="stylesheet" href="/s.css"></head><body><img src="img/a.png"><img src="data:x"></body>'
    soup = BeautifulSoup(process(html), "html.parser")
    assert soup.find("link")["href"] == "https://example.com/s.css"
    assert [i["src"] for i in soup.find_all("img")] == ["https://example.com/docs/img/a.png", "data:x"]


def test_downloaded_asset_paths_are_kept():
    html = '<body><img src="/api/view/abc123/assets/x_a.png"></body>'
    soup = BeautifulSoup(process(html, assets_inlined=True), "html.parser")
    assert soup.find("img")["src"] == "/api/view/abc123/assets/x_a.png"
