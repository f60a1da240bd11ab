"""Tests for book metadata validation and reference resolution."""

import pytest

from bookweave.document import DocumentModelBuilder, valid_language_tag
from bookweave.errors import InvalidBookMetadata, SkippedImage, UnresolvedReference
from bookweave.indexer import CrossReferenceIndexer
from bookweave.model import Paragraph, XRef
from bookweave.resolve import ChapterResolver

from conftest import make_book, make_config


@pytest.mark.parametrize("tag", ["en", "en-GB", "zh-Hant-TW", "sr-Latn", "de-CH-1996", "x-klingon"])
def test_valid_language_tags(tag):
    assert valid_language_tag(tag)


@pytest.mark.parametrize("tag", ["", "english", "en_GB", "e", None, "en-"])
def test_invalid_language_tags(tag):
    assert not valid_language_tag(tag)


class TestValidation:
    def test_empty_title(self, tmp_path, fake_parser):
        with pytest.raises(InvalidBookMetadata, match="title"):
            make_book(tmp_path, ["# A"], fake_parser, title="  ")

    def test_bad_language(self, tmp_path, fake_parser):
        with pytest.raises(InvalidBookMetadata, match="language tag"):
            make_book(tmp_path, ["# A"], fake_parser, lang="English")

    def test_no_chapters(self, tmp_path, fake_parser):
        with pytest.raises(InvalidBookMetadata, match="no chapters"):
            make_book(tmp_path, [], fake_parser)

    def test_every_chapter_broken(self, tmp_path, fake_parser):
        with pytest.raises(InvalidBookMetadata, match="no chapter could be parsed"):
            make_book(tmp_path, ["BROKEN"], fake_parser)

    def test_metadata_checked_before_parsing(self, tmp_path, fake_parser):
        with pytest.raises(InvalidBookMetadata):
            make_book(tmp_path, ["# A"], fake_parser, title="")
        assert fake_parser.calls == []


class TestResolution:
    def test_scenario_reference_to_earlier_chapter(self, tmp_path):
        book = make_book(tmp_path, ["# A\n\ntext", "# B\n\nref to [A]"])
        first = book.chapters[0].heading()
        assert first.number == "1"
        (xref,) = [s for b in book.chapters[1].blocks if isinstance(b, Paragraph)
                   for s in b.content if isinstance(s, XRef)]
        assert xref.target.anchor == first.anchor
        assert book.warnings == ()

    def test_unresolved_warned_once_per_chapter(self, tmp_path):
        book = make_book(tmp_path, ["# A\n\n[nope] and [nope] again", "# B\n\n[nope]"])
        assert book.warnings == (
            UnresolvedReference("nope", "chapter 1"),
            UnresolvedReference("nope", "chapter 2"),
        )

    def test_footnotes_collected(self, tmp_path):
        book = make_book(tmp_path, ["# A\n\nWet.[^r]\n\n[^r]: Rain.\n"])
        assert list(book.footnotes) == ["fn-2"]
        assert book.footnotes["fn-2"].number == 1

    def test_parse_warnings_carried(self, tmp_path, fake_parser):
        book = make_book(tmp_path, ["# A", "BROKEN"], fake_parser)
        assert len(book.chapters) == 1
        assert [type(w).__name__ for w in book.warnings] == ["ParseError"]

    def test_missing_cover(self, tmp_path, fake_parser):
        book = make_book(tmp_path, ["# A"], fake_parser, cover="cover.jpg")
        assert book.cover is None
        assert book.warnings == (SkippedImage("cover.jpg", "book.yaml", "cover image not found"),)

    def test_build_from_indexed_chapters(self, tmp_path, fake_parser):
        config = make_config(tmp_path, ["# A"])
        chapters, _ = ChapterResolver(config, fake_parser).resolve()
        chapters, anchors, _ = CrossReferenceIndexer().index(chapters)
        book = DocumentModelBuilder(config).build(chapters, anchors)
        assert book.title == "T"
        assert book.anchors is anchors
