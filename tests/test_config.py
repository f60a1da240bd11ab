"""Tests for book.yaml loading and chapter entry markers."""

import pytest

from bookweave.config import BookConfig, ChapterEntry
from bookweave.errors import ConfigError
from bookweave.model import Numbering


class TestBookConfig:
    def test_defaults_applied(self, tmp_path):
        config = BookConfig.from_mapping({"title": "The Trench Mage"}, str(tmp_path))
        assert config.lang == "en"
        assert config.numbering_depth == 1
        assert config.html["layout"] == "single"
        assert config.epub["toc_depth"] == 2
        assert config.tex["engine"] == "xelatex"

    def test_prefix_from_title(self, tmp_path):
        config = BookConfig.from_mapping({"title": "The Trench Mage!"}, str(tmp_path))
        assert config.prefix == "the_trench_mage"

    def test_input_not_mutated(self, tmp_path):
        data = {"title": "T", "html": {"layout": "pages"}}
        BookConfig.from_mapping(data, str(tmp_path))
        assert data == {"title": "T", "html": {"layout": "pages"}}

    def test_load_from_disk(self, book_dir):
        config = BookConfig.load(str(book_dir))
        assert config.title == "The Trench Mage"
        assert [entry.file for entry in config.chapters] == ["chapters/1.md", "chapters/2.md"]

    def test_missing_yaml(self, tmp_path):
        with pytest.raises(ConfigError, match="No book.yaml"):
            BookConfig.load(str(tmp_path))

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "book.yaml").write_text("title: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="not valid YAML"):
            BookConfig.load(str(tmp_path))

    def test_not_a_mapping(self, tmp_path):
        with pytest.raises(ConfigError):
            BookConfig.from_mapping(["title"], str(tmp_path))

    def test_bad_footnote_scope(self, tmp_path):
        with pytest.raises(ConfigError, match="footnotes"):
            BookConfig.from_mapping({"title": "T", "footnotes": "book"}, str(tmp_path))

    def test_bad_layout(self, tmp_path):
        with pytest.raises(ConfigError, match="layout"):
            BookConfig.from_mapping({"title": "T", "html": {"layout": "spread"}}, str(tmp_path))

    def test_unknown_field(self, tmp_path):
        config = BookConfig.from_mapping({"title": "T"}, str(tmp_path))
        assert config.get("series") is None
        with pytest.raises(AttributeError):
            config.series

    def test_set_top_level_and_dotted(self, tmp_path):
        config = BookConfig.from_mapping({"title": "T"}, str(tmp_path))
        config.set("strict", True)
        config.set("tex.class", "memoir")
        assert config.strict is True
        assert config.tex["class"] == "memoir"
        assert config.tex["engine"] == "xelatex"

    def test_set_into_missing_section(self, tmp_path):
        config = BookConfig.from_mapping({"title": "T"}, str(tmp_path))
        with pytest.raises(ConfigError, match="not a section"):
            config.set("pdf.paper", "a5")

    def test_set_normalizes_clean(self, tmp_path):
        config = BookConfig.from_mapping({"title": "T"}, str(tmp_path))
        config.set("clean", True)
        assert config.clean["smart_quotes"] is True


class TestSingleFile:
    def test_header_becomes_config(self, tmp_path):
        path = tmp_path / "notes.md"
        path.write_text("---\ntitle: Field Notes\nlang: fr\n---\n\nText.\n", encoding="utf-8")
        config = BookConfig.load(str(path))
        assert config.title == "Field Notes"
        assert config.lang == "fr"
        assert config.prefix == "notes"
        assert config.book_dir == str(tmp_path)
        assert config.source_file == "notes.md"
        assert config.tex["class"] == "article"
        (entry,) = config.chapters
        assert entry.file == "notes.md"
        assert entry.numbering is Numbering.HIDDEN

    def test_class_can_be_overridden(self, tmp_path):
        path = tmp_path / "notes.md"
        path.write_text("---\ntitle: N\ntex:\n  class: report\n---\nText.\n", encoding="utf-8")
        assert BookConfig.load(str(path)).tex["class"] == "report"

    def test_no_header(self, tmp_path):
        path = tmp_path / "plain.markdown"
        path.write_text("# Only text\n", encoding="utf-8")
        config = BookConfig.load(str(path))
        assert config.title == ""
        assert config.prefix == "plain"

    def test_chapters_not_allowed(self, tmp_path):
        path = tmp_path / "notes.md"
        path.write_text("---\ntitle: N\nchapters: [a.md]\n---\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="cannot list chapters"):
            BookConfig.load(str(path))

    def test_invalid_header(self, tmp_path):
        path = tmp_path / "notes.md"
        path.write_text("---\ntitle: [unclosed\n---\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="header is not valid YAML"):
            BookConfig.load(str(path))


class TestChapterEntry:
    @pytest.mark.parametrize(
        "line, numbering, number",
        [
            ("1.md", Numbering.DEFAULT, None),
            ("+ 1.md", Numbering.DEFAULT, None),
            ("- preface.md", Numbering.UNNUMBERED, None),
            ("! dedication.md", Numbering.HIDDEN, None),
            ("7. seven.md", Numbering.SPECIFIED, 7),
        ],
    )
    def test_markers(self, line, numbering, number):
        entry = ChapterEntry.parse(line)
        assert entry.numbering is numbering
        assert entry.number == number
        assert entry.file == line.split()[-1]

    def test_mapping_entry(self):
        entry = ChapterEntry.parse({"file": "intro.md", "numbered": False, "title": "Before"})
        assert entry.numbering is Numbering.UNNUMBERED
        assert entry.title == "Before"

    def test_mapping_with_text(self):
        entry = ChapterEntry.parse({"text": "# A\n"})
        assert entry.file is None
        assert entry.text == "# A\n"

    def test_unknown_keys(self):
        with pytest.raises(ConfigError, match="unknown chapter keys"):
            ChapterEntry.parse({"file": "a.md", "colour": "red"})

    def test_needs_file_or_text(self):
        with pytest.raises(ConfigError):
            ChapterEntry.parse({"numbered": True})

    def test_whitespace_in_filename(self):
        with pytest.raises(ConfigError):
            ChapterEntry.parse("+ my chapter.md")

    def test_number_must_be_integer(self):
        with pytest.raises(ConfigError):
            ChapterEntry.parse({"file": "a.md", "number": "three"})
