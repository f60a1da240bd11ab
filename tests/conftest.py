"""Shared fixtures: in-memory books, a fake parser and a fake TeX compiler."""

import os

import pytest

from bookweave.config import BookConfig
from bookweave.document import DocumentModelBuilder
from bookweave.errors import CompileError, ParseError
from bookweave.model import Heading, Paragraph, Text


def make_config(root, chapters, **fields):
    """BookConfig for in-memory chapter text (strings) or chapter entries (dicts)."""
    data = {"title": "T", "author": "A. Writer", "lang": "en"}
    data.update(fields)
    data["chapters"] = [{"text": c} if isinstance(c, str) else c for c in chapters]
    return BookConfig.from_mapping(data, str(root))


def make_book(root, chapters, parser=None, **fields):
    config = make_config(root, chapters, **fields)
    return DocumentModelBuilder(config).assemble(parser=parser)


class FakeParser:
    """
    Narrow parser stand-in: "# Title" lines become headings, anything else a
    paragraph, and text containing BROKEN raises a ParseError on its line.
    """

    def __init__(self):
        self.calls = []

    def parse(self, text):
        self.calls.append(text)
        blocks = []
        for number, line in enumerate(text.splitlines(), 1):
            if "BROKEN" in line:
                raise ParseError(None, number, "broken on purpose")
            if line.startswith("#"):
                hashes = len(line) - len(line.lstrip("#"))
                blocks.append(Heading(level=hashes, content=(Text(line[hashes:].strip()),)))
            elif line.strip():
                blocks.append(Paragraph((Text(line.strip()),)))
        return blocks


class FakeCompiler:
    """Narrow compiler stand-in: writes a tiny PDF next to the source."""

    engine = "fake-tex"

    def __init__(self, fail=False):
        self.fail = fail
        self.sources = []

    def available(self):
        return True

    def compile(self, source_path):
        self.sources.append(source_path)
        if self.fail:
            raise CompileError("fake-tex pass 1 failed (exit 1)", "! Undefined control sequence.\nl.12 \\oops")
        pdf = os.path.splitext(source_path)[0] + ".pdf"
        with open(pdf, "wb") as f:
            f.write(b"%PDF-1.4\n%%EOF\n")
        return pdf


@pytest.fixture
def fake_parser():
    return FakeParser()


@pytest.fixture
def fake_compiler():
    return FakeCompiler()


@pytest.fixture
def book_dir(tmp_path):
    """A book on disk: book.yaml, two chapters, one image."""
    (tmp_path / "chapters").mkdir()
    (tmp_path / "images").mkdir()
    (tmp_path / "images" / "map.png").write_bytes(b"\x89PNG\r\n\x1a\nfake")
    (tmp_path / "book.yaml").write_text(
        "title: The Trench Mage\n"
        "author: J. Trent\n"
        "lang: en\n"
        "chapters:\n"
        "  - chapters/1.md\n"
        "  - chapters/2.md\n"
        "epub:\n"
        "  modified: 2024-01-01T00:00:00Z\n",
        encoding="utf-8",
    )
    (tmp_path / "chapters" / "1.md").write_text(
        "# The Mud {#mud}\n\n"
        "It rained.[^rain]\n\n"
        "![The front line](../images/map.png){#map}\n\n"
        "[^rain]: For weeks.\n",
        encoding="utf-8",
    )
    (tmp_path / "chapters" / "2.md").write_text(
        "# The Wire\n\n"
        "Back in [the mud](#mud), see [map].\n\n"
        "## Night\n\n"
        "Quiet.\n",
        encoding="utf-8",
    )
    return tmp_path
