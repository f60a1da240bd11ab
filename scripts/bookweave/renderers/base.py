"""
Base renderer: the walk over the book shared by every output format.

Subclasses implement one method per block and inline variant (abstract here,
so a renderer that forgets one cannot be instantiated) plus `render_book()`,
which lays the rendered chapters out as files.

A renderer is single-use: INIT → WALKING → DONE, or FAILED. A RenderError
raised for one block skips that block, counts it, and keeps walking. Any
other error (TemplateError above all) fails the renderer and propagates.
"""

import enum
import logging
import os
import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from bookweave.errors import BookError, RenderError, RenderStateError, WarningSet
from bookweave.model import (
    BlockQuote, Code, CodeBlock, Emphasis, FootnoteDef, FootnoteRef, Heading,
    Image, LineBreak, Link, List, Paragraph, RawInline, RawSpan, Rule, Strong,
    Table, Text, XRef,
)

logger = logging.getLogger(__name__)


class RenderState(enum.Enum):
    INIT = "init"
    WALKING = "walking"
    DONE = "done"
    FAILED = "failed"


TRANSITIONS = {
    RenderState.INIT: {RenderState.WALKING, RenderState.FAILED},
    RenderState.WALKING: {RenderState.DONE, RenderState.FAILED},
    RenderState.DONE: set(),
    RenderState.FAILED: set(),
}


@dataclass
class RenderResult:
    """
    files:     output-relative path → text (or bytes)
    resources: output-relative path → absolute source path (images, cover)
    """

    format: str
    files: dict
    resources: dict = field(default_factory=dict)
    warnings: tuple = ()
    errors: int = 0
    state: RenderState = RenderState.DONE


BLOCK_METHODS = {
    Heading: "render_heading",
    Paragraph: "render_paragraph",
    List: "render_list",
    CodeBlock: "render_code",
    Image: "render_image",
    Table: "render_table",
    FootnoteDef: "render_footnote_def",
    RawInline: "render_raw",
    BlockQuote: "render_blockquote",
    Rule: "render_rule",
}

INLINE_METHODS = {
    Text: "render_text",
    Emphasis: "render_emphasis",
    Strong: "render_strong",
    Code: "render_code_span",
    Link: "render_link",
    XRef: "render_xref",
    FootnoteRef: "render_footnote_ref",
    LineBreak: "render_line_break",
    RawSpan: "render_raw_span",
}


class BaseRenderer(ABC):
    format_name = None  # Override in subclass

    def __init__(self, book, templates):
        self.book = book
        self.templates = templates
        self.state = RenderState.INIT
        self.errors = 0
        self.chapter = None
        self.resources = {}
        self._warnings = WarningSet()

    # ── State ──────────────────────────────────────────────

    def transition(self, state):
        if state not in TRANSITIONS[self.state]:
            raise RenderStateError(self.state, state)
        logger.debug("%s renderer: %s → %s", self.format_name, self.state.name, state.name)
        self.state = state

    def render(self):
        """Walk the whole book once. Returns a RenderResult."""
        self.transition(RenderState.WALKING)
        try:
            files = self.render_book()
        except Exception:
            self.transition(RenderState.FAILED)
            raise
        self.transition(RenderState.DONE)
        return RenderResult(
            format=self.format_name,
            files=files,
            resources=dict(sorted(self.resources.items())),
            warnings=self._warnings.as_tuple(),
            errors=self.errors,
            state=self.state,
        )

    @abstractmethod
    def render_book(self):
        """Render every chapter and return {relative path: content}."""

    # ── Warnings ───────────────────────────────────────────

    def warn(self, warning):
        if not isinstance(warning, BookError):
            raise TypeError(f"warnings must be BookError instances, got {type(warning).__name__}")
        self._warnings.add(warning)

    @property
    def location(self):
        return self.chapter.location if self.chapter is not None else "book"

    # ── Dispatch ───────────────────────────────────────────

    def render_chapter_blocks(self, chapter):
        self.chapter = chapter
        return self.render_blocks(chapter.blocks)

    def render_blocks(self, blocks):
        """Rendered blocks, skipping the ones that fail with a RenderError."""
        parts = []
        for block in blocks:
            try:
                rendered = self.render_block(block)
            except RenderError as e:
                self.errors += 1
                self.warn(e)
                logger.debug("%s: skipped %s: %s", self.format_name, type(block).__name__, e)
                continue
            if rendered:
                parts.append(rendered)
        return parts

    def render_block(self, block):
        method = BLOCK_METHODS.get(type(block))
        if method is None:
            raise RenderError(f"unknown block type {type(block).__name__}", self.location)
        return getattr(self, method)(block)

    def render_inlines(self, spans):
        return "".join(self.render_inline(span) for span in spans)

    def render_inline(self, span):
        method = INLINE_METHODS.get(type(span))
        if method is None:
            raise RenderError(f"unknown inline type {type(span).__name__}", self.location)
        return getattr(self, method)(span)

    # ── Shared helpers ─────────────────────────────────────

    def is_chapter_title(self, block):
        """The first level-1 heading of the current chapter."""
        return block.level == 1 and self.chapter is not None and block == self.chapter.heading()

    def image_path(self, image):
        return os.path.normpath(os.path.join(self.book.root, image.source))

    @staticmethod
    def implicit_reference(span):
        """True for `[label]` references, whose text is just the label."""
        return len(span.content) == 1 and isinstance(span.content[0], Text) and span.content[0].text == span.label

    @staticmethod
    def resource_name(source):
        """Output path of a copied local resource, kept inside the output directory."""
        source = posixpath.normpath(source)
        if source.startswith("../") or source == ".." or posixpath.isabs(source):
            return posixpath.join("images", posixpath.basename(source))
        return source

    # ── Blocks (one per variant) ───────────────────────────

    @abstractmethod
    def render_heading(self, block): ...

    @abstractmethod
    def render_paragraph(self, block): ...

    @abstractmethod
    def render_list(self, block): ...

    @abstractmethod
    def render_code(self, block): ...

    @abstractmethod
    def render_image(self, block): ...

    @abstractmethod
    def render_table(self, block): ...

    @abstractmethod
    def render_footnote_def(self, block): ...

    @abstractmethod
    def render_raw(self, block): ...

    @abstractmethod
    def render_blockquote(self, block): ...

    @abstractmethod
    def render_rule(self, block): ...

    # ── Inlines (one per variant) ──────────────────────────

    @abstractmethod
    def render_text(self, span): ...

    @abstractmethod
    def render_emphasis(self, span): ...

    @abstractmethod
    def render_strong(self, span): ...

    @abstractmethod
    def render_code_span(self, span): ...

    @abstractmethod
    def render_link(self, span): ...

    @abstractmethod
    def render_xref(self, span): ...

    @abstractmethod
    def render_footnote_ref(self, span): ...

    @abstractmethod
    def render_line_break(self, span): ...

    @abstractmethod
    def render_raw_span(self, span): ...
