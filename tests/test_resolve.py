"""Tests for chapter resolution: reading, front matter, numbering."""

import threading
import time

import pytest

from bookweave.config import BookConfig
from bookweave.errors import BuildCancelled, ChapterNotFound, IOTimeout, ParseError
from bookweave.model import Heading, Image, Numbering, Paragraph, Text
from bookweave.resolve import (
    ChapterResolver, assemble_inputs, find_book_dir, natural_sort_key,
    resolve_artifact, split_front_matter,
)

from conftest import FakeParser, make_config


def resolve(tmp_path, chapters, parser=None, **fields):
    return ChapterResolver(make_config(tmp_path, chapters, **fields), parser).resolve()


class SlowParser(FakeParser):
    def parse(self, text):
        time.sleep(1)
        return super().parse(text)


class TestNumbering:
    def test_sequential(self, tmp_path, fake_parser):
        chapters, warnings = resolve(tmp_path, ["# A", "# B", "# C"], fake_parser)
        assert [c.number for c in chapters] == [1, 2, 3]
        assert warnings == []

    def test_unnumbered_keeps_position(self, tmp_path, fake_parser):
        entries = [{"text": "# Preface", "numbered": False}, "# A", "# B"]
        chapters, _ = resolve(tmp_path, entries, fake_parser)
        assert [c.number for c in chapters] == [None, 1, 2]
        assert chapters[0].index == 0
        assert chapters[0].numbering is Numbering.UNNUMBERED

    def test_hidden_has_no_number(self, tmp_path, fake_parser):
        entries = ["# A", {"text": "# Interlude", "hidden": True}, "# B"]
        chapters, _ = resolve(tmp_path, entries, fake_parser)
        assert [c.number for c in chapters] == [1, None, 2]

    def test_explicit_number_resets(self, tmp_path, fake_parser):
        entries = ["# A", {"text": "# Ten", "number": 10}, "# Eleven"]
        chapters, _ = resolve(tmp_path, entries, fake_parser)
        assert [c.number for c in chapters] == [1, 10, 11]

    def test_front_matter_overrides_entry(self, tmp_path, fake_parser):
        text = "---\nnumbered: false\ntitle: Before It All\n---\n# Prologue\n"
        chapters, _ = resolve(tmp_path, [text, "# A"], fake_parser)
        assert chapters[0].number is None
        assert chapters[0].title == "Before It All"
        assert chapters[1].number == 1

    def test_unnumbered_heading_class(self, tmp_path):
        chapters, _ = resolve(tmp_path, ["# Prologue {.unnumbered}\n", "# A\n"])
        assert [c.number for c in chapters] == [None, 1]


class TestFailures:
    def test_parse_error_becomes_warning(self, tmp_path, fake_parser):
        chapters, warnings = resolve(tmp_path, ["# A", "# B\nBROKEN", "# C"], fake_parser)
        assert [c.display_title() for c in chapters] == ["A", "C"]
        assert warnings == [ParseError("chapter 2", 2, "broken on purpose")]

    def test_dropped_chapter_keeps_later_numbers(self, tmp_path, fake_parser):
        chapters, _ = resolve(tmp_path, ["# A", "BROKEN", "# C"], fake_parser)
        assert [c.number for c in chapters] == [1, 3]

    def test_strict_raises(self, tmp_path, fake_parser):
        with pytest.raises(ParseError):
            resolve(tmp_path, ["# A", "BROKEN"], fake_parser, strict=True)

    def test_parse_error_names_file(self, tmp_path):
        (tmp_path / "bad.md").write_text("# Bad\n\n```\nopen fence\n", encoding="utf-8")
        _, warnings = resolve(tmp_path, [{"file": "bad.md"}])
        (error,) = warnings
        assert error.file == "bad.md"
        assert error.line == 3
        assert "bad.md:3" in str(error)

    def test_front_matter_line_offset(self, tmp_path, fake_parser):
        _, warnings = resolve(tmp_path, ["---\ntitle: X\n---\n# A\nBROKEN"], fake_parser)
        assert warnings[0].line == 5

    def test_missing_file(self, tmp_path):
        with pytest.raises(ChapterNotFound):
            resolve(tmp_path, [{"file": "nowhere.md"}])

    def test_cancelled(self, tmp_path, fake_parser):
        cancel = threading.Event()
        cancel.set()
        resolver = ChapterResolver(make_config(tmp_path, ["# A"]), fake_parser, cancel=cancel)
        with pytest.raises(BuildCancelled):
            resolver.resolve()

    def test_slow_chapter_times_out(self, tmp_path):
        resolver = ChapterResolver(make_config(tmp_path, ["# A"]), SlowParser(), timeout=0.2)
        with pytest.raises(IOTimeout) as info:
            resolver.resolve()
        assert info.value.what == "reading chapter <text>"
        assert info.value.seconds == 0.2

    def test_title_override_becomes_heading(self, tmp_path, fake_parser):
        chapters, _ = resolve(tmp_path, [{"text": "Just text.", "title": "Prologue"}], fake_parser)
        assert chapters[0].blocks[0] == Heading(level=1, content=(Text("Prologue"),))
        assert chapters[0].number == 1

    def test_title_override_keeps_existing_heading(self, tmp_path, fake_parser):
        chapters, _ = resolve(tmp_path, [{"text": "# The Mud\ntext", "title": "Mud"}], fake_parser)
        assert [b for b in chapters[0].blocks if isinstance(b, Heading)] == [
            Heading(level=1, content=(Text("The Mud"),)),
        ]

    def test_single_file_header_is_not_chapter_metadata(self, tmp_path, fake_parser):
        path = tmp_path / "notes.md"
        path.write_text("---\ntitle: Field Notes\nnumber: 7\n---\nLine one.\n", encoding="utf-8")
        chapters, _ = ChapterResolver(BookConfig.load(str(path)), fake_parser).resolve()
        (chapter,) = chapters
        assert chapter.numbering is Numbering.HIDDEN
        assert chapter.title is None
        assert chapter.blocks == (Paragraph((Text("Line one."),)),)

class TestImages:
    def test_rebased_to_book_root(self, book_dir):
        chapters, _ = ChapterResolver(BookConfig.load(str(book_dir))).resolve()
        images = [b for b in chapters[0].blocks if isinstance(b, Image)]
        assert images[0].source == "images/map.png"
        assert images[0].found


class TestFrontMatter:
    def test_no_front_matter(self):
        assert split_front_matter("# A\n", "a.md") == ({}, "# A\n", 0)

    def test_unknown_keys_ignored(self):
        fields, body, offset = split_front_matter("---\nmood: grim\nhidden: true\n---\nBody\n", "a.md")
        assert fields == {"hidden": True}
        assert body == "Body\n"
        assert offset == 4

    def test_invalid_yaml(self):
        with pytest.raises(ParseError):
            split_front_matter("---\ntitle: [oops\n---\n", "a.md")


class TestBookLookup:
    def test_natural_sort(self):
        assert sorted(["10.md", "2.md", "1.md"], key=natural_sort_key) == ["1.md", "2.md", "10.md"]

    def test_assemble_sections(self, tmp_path):
        for section, names in {"front": ["preface.md"], "chapters": ["10.md", "2.md"], "back": ["notes.md"]}.items():
            (tmp_path / section).mkdir()
            for name in names:
                (tmp_path / section / name).write_text("# x\n", encoding="utf-8")
        entries = assemble_inputs(str(tmp_path))
        assert [e.file.replace("\\", "/") for e in entries] == [
            "front/preface.md", "chapters/2.md", "chapters/10.md", "back/notes.md",
        ]
        assert [e.numbering for e in entries] == [
            Numbering.UNNUMBERED, Numbering.DEFAULT, Numbering.DEFAULT, Numbering.UNNUMBERED,
        ]

    def test_find_book_dir(self, tmp_path):
        book = tmp_path / "manuscript" / "1_the_trench_mage"
        book.mkdir(parents=True)
        (book / "book.yaml").write_text("title: The Trench Mage\n", encoding="utf-8")
        assert find_book_dir("1", str(tmp_path)) == str(book)
        assert find_book_dir("trench", str(tmp_path)) == str(book)
        assert find_book_dir("missing", str(tmp_path)) is None

    def test_resolve_artifact(self, tmp_path):
        (tmp_path / "artifacts").mkdir()
        (tmp_path / "artifacts" / "book.css").write_text("p {}", encoding="utf-8")
        assert resolve_artifact(str(tmp_path), "book.css") == str(tmp_path / "artifacts" / "book.css")
        assert resolve_artifact(str(tmp_path), "other.css") is None
