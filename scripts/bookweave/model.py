"""
Document model: inline spans, blocks, chapters, the anchor table, the book.

Everything here is a frozen dataclass holding tuples. Stages that need to
"change" a block build a new one with dataclasses.replace().
"""

import enum
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Optional, Tuple

from markdown.extensions.toc import slugify_unicode

from bookweave.errors import UnresolvedReference


# ── Inline spans ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Text:
    text: str


@dataclass(frozen=True)
class Emphasis:
    content: tuple


@dataclass(frozen=True)
class Strong:
    content: tuple


@dataclass(frozen=True)
class Code:
    text: str


@dataclass(frozen=True)
class Link:
    url: str
    content: tuple
    title: str = ""


@dataclass(frozen=True)
class XRef:
    """Cross-reference placeholder; `target` is filled by the model builder."""

    label: str
    content: tuple
    target: Optional["AnchorEntry"] = None


@dataclass(frozen=True)
class FootnoteRef:
    label: str
    target: Optional["AnchorEntry"] = None


@dataclass(frozen=True)
class LineBreak:
    pass


@dataclass(frozen=True)
class RawSpan:
    format: str
    literal: str


INLINE_TYPES = (Text, Emphasis, Strong, Code, Link, XRef, FootnoteRef, LineBreak, RawSpan)


# ── Blocks ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Heading:
    level: int
    content: tuple
    anchor: Optional[str] = None
    number: Optional[str] = None
    label: Optional[str] = None     # explicit {#id}
    classes: Tuple[str, ...] = ()

    @property
    def unnumbered(self):
        return "unnumbered" in self.classes

    @property
    def unlisted(self):
        return "unlisted" in self.classes


@dataclass(frozen=True)
class Paragraph:
    content: tuple


@dataclass(frozen=True)
class List:
    items: tuple                    # tuple of tuples of blocks
    ordered: bool = False
    start: int = 1


@dataclass(frozen=True)
class CodeBlock:
    text: str
    language: str = ""


@dataclass(frozen=True)
class Image:
    source: str
    caption: str = ""
    anchor: Optional[str] = None
    number: Optional[str] = None
    label: Optional[str] = None
    found: Optional[bool] = None    # None for remote sources

    @property
    def remote(self):
        return "://" in self.source or self.source.startswith("data:")


@dataclass(frozen=True)
class Table:
    rows: tuple                     # tuple of rows, each a tuple of inline tuples
    header_rows: int = 0


@dataclass(frozen=True)
class FootnoteDef:
    label: str
    content: tuple
    anchor: Optional[str] = None
    number: Optional[int] = None
    is_global: bool = False


@dataclass(frozen=True)
class RawInline:
    format: str
    literal: str


@dataclass(frozen=True)
class BlockQuote:
    blocks: tuple


@dataclass(frozen=True)
class Rule:
    pass


BLOCK_TYPES = (
    Heading, Paragraph, List, CodeBlock, Image, Table,
    FootnoteDef, RawInline, BlockQuote, Rule,
)


# ── Chapters ───────────────────────────────────────────────────────────


class Numbering(enum.Enum):
    DEFAULT = "default"         # next number in sequence
    UNNUMBERED = "unnumbered"   # keeps its place, shows no number
    HIDDEN = "hidden"           # no number, title not displayed
    SPECIFIED = "specified"     # explicit number, resets the sequence


@dataclass(frozen=True)
class Chapter:
    index: int
    blocks: tuple
    numbering: Numbering = Numbering.DEFAULT
    number: Optional[int] = None
    title: Optional[str] = None
    source: str = ""

    @property
    def numbered(self):
        return self.number is not None

    @property
    def location(self):
        return self.source or f"chapter {self.index + 1}"

    def heading(self):
        """First level-1 heading, if the chapter has one."""
        for block in self.blocks:
            if isinstance(block, Heading) and block.level == 1:
                return block
        return None

    def display_title(self):
        if self.title:
            return self.title
        heading = self.heading()
        if heading is not None:
            return plain_text(heading.content)
        return ""


# ── Anchors ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AnchorEntry:
    anchor: str
    label: str
    kind: str                       # "heading" | "image" | "footnote"
    chapter: int
    number: Optional[str] = None
    title: str = ""


class AnchorTable:
    """
    Immutable label → anchor mapping produced by the indexer.

    Heading and image labels share one book-wide namespace. Footnote labels
    live in their own namespace keyed by (chapter, label), with chapter None
    for global footnotes.
    """

    def __init__(self, labels, footnotes, locations):
        self._labels = MappingProxyType({k: tuple(v) for k, v in labels.items()})
        self._footnotes = MappingProxyType(dict(footnotes))
        self._locations = tuple(locations)

    def __contains__(self, label):
        return label in self._labels

    def __len__(self):
        return len(self._labels)

    def resolve(self, label, chapter):
        """Resolve a cross-reference label seen in `chapter`."""
        for key in (label, slugify(label)):
            entries = self._labels.get(key)
            if not entries:
                continue
            for entry in entries:
                if entry.chapter == chapter:
                    return entry
            return entries[0]
        raise UnresolvedReference(label, self._location(chapter))

    def resolve_footnote(self, label, chapter):
        entry = self._footnotes.get((chapter, label)) or self._footnotes.get((None, label))
        if entry is None:
            raise UnresolvedReference(f"^{label}", self._location(chapter))
        return entry

    def _location(self, chapter):
        if 0 <= chapter < len(self._locations):
            return self._locations[chapter]
        return f"chapter {chapter + 1}"


# ── Book ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Book:
    title: str
    author: str
    lang: str
    chapters: tuple
    anchors: AnchorTable
    footnotes: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    config: object = None
    root: str = "."
    cover: Optional[str] = None
    warnings: tuple = ()

    def option(self, section, key, default=None):
        if self.config is None:
            return default
        return self.config.get(section, {}).get(key, default)


# ── Helpers ────────────────────────────────────────────────────────────


def slugify(text):
    """Implicit label of a heading: its text, lower-cased and hyphenated."""
    return slugify_unicode(text.strip(), "-")


def plain_text(spans):
    """Flatten inline spans to plain text (TOC entries, titles, slugs)."""
    parts = []
    for span in spans:
        if isinstance(span, (Text, Code)):
            parts.append(span.text)
        elif isinstance(span, (Emphasis, Strong, Link, XRef)):
            parts.append(plain_text(span.content))
        elif isinstance(span, LineBreak):
            parts.append(" ")
    return "".join(parts)


def map_blocks(blocks, fn):
    """
    Apply `fn` to every block, depth first, rebuilding containers.

    `fn` receives a block whose children were already mapped and returns
    the replacement block.
    """
    out = []
    for block in blocks:
        if isinstance(block, List):
            block = replace(block, items=tuple(map_blocks(item, fn) for item in block.items))
        elif isinstance(block, BlockQuote):
            block = replace(block, blocks=map_blocks(block.blocks, fn))
        out.append(fn(block))
    return tuple(out)


def iter_blocks(blocks):
    """Yield every block, depth first, including nested ones."""
    for block in blocks:
        yield block
        if isinstance(block, List):
            for item in block.items:
                yield from iter_blocks(item)
        elif isinstance(block, BlockQuote):
            yield from iter_blocks(block.blocks)
