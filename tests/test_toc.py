"""Tests for the table-of-contents tree."""

from bookweave.toc import build_toc

from conftest import make_book


def flatten(entries):
    for entry in entries:
        yield entry
        yield from flatten(entry.children)


def titles(entries):
    return [(e.title, e.number) for e in flatten(entries)]


def test_nested_entries(tmp_path):
    book = make_book(tmp_path, ["# A\n\n## A1\n\n### deep\n\n## A2\n", "# B\n"], numbering_depth=2)
    entries = build_toc(book, depth=2)
    assert [e.title for e in entries] == ["A", "B"]
    assert [c.title for c in entries[0].children] == ["A1", "A2"]
    assert titles(entries) == [("A", "1"), ("A1", "1.1"), ("A2", "1.2"), ("B", "2")]


def test_depth_limits_entries(tmp_path):
    book = make_book(tmp_path, ["# A\n\n## A1\n"])
    assert titles(build_toc(book, depth=1)) == [("A", "1")]


def test_unlisted_subtree_left_out(tmp_path):
    book = make_book(tmp_path, ["# A\n\n## Secret {.unlisted}\n\n### Inside\n\n## Open\n"])
    assert [t for t, _ in titles(build_toc(book, depth=3))] == ["A", "Open"]


def test_hidden_chapter_title_left_out(tmp_path):
    book = make_book(tmp_path, [{"text": "# Dedication\n\nFor M.", "hidden": True}, "# A\n"])
    assert titles(build_toc(book)) == [("A", "1")]


def test_title_override(tmp_path):
    book = make_book(tmp_path, [{"text": "# A\n", "title": "Alpha"}])
    assert titles(build_toc(book)) == [("Alpha", "1")]
