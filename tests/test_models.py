import dataclasses

import pytest

from webarchive.models import Archive, ArchiveOptions, Page, SitemapEntry


def test_options_defaults_come_from_settings(test_settings):
    opts = ArchiveOptions.from_request(None, test_settings)
    assert opts.max_pages == 50
    assert opts.max_depth == 3
    assert opts.same_origin_only is True
    assert opts.include_assets is False
    assert opts.concurrency == 5
    assert opts.request_delay == 0
    assert opts.render_js is False


def test_options_accept_camel_and_snake_case(test_settings):
    opts = ArchiveOptions.from_request(
        {"maxPages": 7, "max_depth": 1, "sameOriginOnly": False, "includeAssets": True, "concurrency": 0},
        test_settings,
    )
    assert (opts.max_pages, opts.max_depth, opts.same_origin_only, opts.include_assets) == (7, 1, False, True)
    assert opts.concurrency == 1


def test_options_are_immutable(test_settings):
    opts = ArchiveOptions.from_request({}, test_settings)
    with pytest.raises(dataclasses.FrozenInstanceError):
        opts.max_pages = 2


def test_single_page_when_budget_is_one(test_settings):
    assert not ArchiveOptions.from_request({"maxPages": 1}, test_settings).multi_page
    assert ArchiveOptions.from_request({"maxPages": 2}, test_settings).multi_page


def test_archive_completes_once():
    record = Archive(id="a", url="https://e/", title="e")
    record.complete([Page("https://e/", "Home", "<p/>", 4), Page("https://e/x", "X", "<p/>", 6)])

    assert record.status == "completed"
    assert (record.page_count, record.size, record.title) == (2, 10, "Home")
    with pytest.raises(ValueError):
        record.fail("late")


def test_failed_archive_serialises_error():
    data = Archive(id="a", url="https://e/", title="e").fail("unreachable").to_dict()
    assert data["status"] == "failed"
    assert data["pageCount"] == 0
    assert data["error"] == "unreachable"
    assert Archive.from_dict(data).error == "unreachable"


def test_sitemap_numbering():
    page = Page("https://e/", "t", "")
    assert [SitemapEntry.for_index(i, page).file for i in range(3)] == ["index.html", "page-1.html", "page-2.html"]


def test_string_flags_are_parsed(test_settings):
    opts = ArchiveOptions.from_request({"sameOriginOnly": "false", "includeAssets": "true"}, test_settings)
    assert opts.same_origin_only is False
    assert opts.include_assets is True
