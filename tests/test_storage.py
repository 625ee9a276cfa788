import json

import pytest

from conftest import run
from webarchive.models import COMPLETED, Archive, Page
from webarchive.storage.local import LocalArchiveStore


def archive(archive_id, **extra):
    record = Archive(id=archive_id, url=f"https://{archive_id}.example/", title=archive_id)
    record.complete([Page(url=record.url, title=archive_id, html="<p>x</p>", size=8)])
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_save_indexes_most_recent_first_and_writes_single_file(store):
    run(store.save("first", archive("first"), "<p>one</p>"))
    run(store.save("second", archive("second"), "<p>two</p>"))

    ids = [a.id for a in run(store.get_archives())]
    assert ids == ["second", "first"]
    assert run(store.get_archive_content("first")) == "<p>one</p>"


def test_save_upserts_in_place(store):
    run(store.save("a", archive("a"), None))
    run(store.save("b", archive("b"), None))
    run(store.save("a", archive("a", title="renamed"), None))

    records = json.loads(store.metadata_path.read_text())
    assert [r["id"] for r in records] == ["b", "a"]
    assert records[1]["title"] == "renamed"
    assert records[1]["pageCount"] == 1


def test_save_without_html_writes_no_content(store):
    failed = Archive(id="f1", url="https://x/", title="x").fail("boom")
    run(store.save("f1", failed, None))

    assert run(store.get_archive_content("f1")) is None
    record = run(store.get_archive_by_id("f1"))
    assert record.status == "failed" and record.error == "boom"


def test_multi_page_layout_and_round_trip(store):
    pages = [
        Page(url="https://example.com/", title="Home", html="<html>\r\n<body>home é</body></html>"),
        Page(url="https://example.com/a", title="A", html="<p>a</p>"),
        Page(url="https://example.com/b", title="B", html="<p>b</p>"),
    ]
    run(store.save_multi_page("multi", archive("multi"), pages))

    folder = store.base_dir / "multi"
    assert sorted(p.name for p in folder.iterdir()) == ["index.html", "page-1.html", "page-2.html", "sitemap.json"]
    assert run(store.get_archive_content("multi", "index")) == pages[0].html
    assert run(store.get_archive_content("multi", "page-2")) == "<p>b</p>"

    sitemap = json.loads((folder / "sitemap.json").read_text())
    assert sitemap == [
        {"url": "https://example.com/", "title": "Home", "file": "index.html"},
        {"url": "https://example.com/a", "title": "A", "file": "page-1.html"},
        {"url": "https://example.com/b", "title": "B", "file": "page-2.html"},
    ]
    assert [e.file for e in run(store.get_sitemap("multi"))] == ["index.html", "page-1.html", "page-2.html"]


def test_single_file_wins_over_directory(store):
    run(store.save_multi_page("dup", archive("dup"), [Page(url="https://e/", title="d", html="<p>dir</p>")]))
    (store.base_dir / "dup.html").write_text("<p>file</p>")

    assert run(store.get_archive_content("dup")) == "<p>file</p>"


def test_missing_content_is_none(store):
    assert run(store.get_archive_content("nope")) is None
    assert run(store.get_archive_content("../etc", "passwd")) is None
    assert run(store.get_archive_by_id("nope")) is None


def test_orphan_single_file_is_reconciled_into_index(store):
    run(store.save("known", archive("known"), "<p>k</p>"))
    (store.base_dir / "orphan.html").write_text("<html><head><title>Lost Page</title></head></html>")
    (store.base_dir / "untitled.html").write_text("<p>no title</p>")

    archives = {a.id: a for a in run(store.get_archives())}

    assert archives["orphan"].title == "Lost Page"
    assert archives["orphan"].status == COMPLETED
    assert archives["orphan"].page_count == 1
    assert archives["untitled"].title == "Archive untitled"
    persisted = {r["id"] for r in json.loads(store.metadata_path.read_text())}
    assert persisted == {"known", "orphan", "untitled"}


def test_corrupt_index_reads_as_empty(store):
    store.base_dir.mkdir(parents=True)
    store.metadata_path.write_text("{not json")
    assert run(store.get_archives()) == []


def test_assets_are_read_back_and_traversal_is_rejected(store):
    folder = store.assets_dir("withassets")
    folder.mkdir(parents=True)
    (folder / "abc_logo.png").write_bytes(b"png")

    assert run(store.get_asset("withassets", "abc_logo.png")) == b"png"
    assert run(store.get_asset("withassets", "missing.png")) is None
    assert run(store.get_asset("withassets", "..")) is None
    assert run(store.get_asset("..", "metadata.json")) is None


def test_invalid_archive_id_is_refused_for_writes(store):
    with pytest.raises(ValueError):
        run(store.save_multi_page("../escape", archive("x"), []))


def test_base_dir_comes_from_constructor(tmp_path):
    store = LocalArchiveStore(tmp_path / "elsewhere")
    run(store.save("z", archive("z"), "<p>z</p>"))
    assert (tmp_path / "elsewhere" / "z.html").exists()
