"""
Document model builder.

Validates the book metadata, resolves every cross-reference and footnote
reference against the anchor table, and freezes the result into the Book
that all renderers share.
"""

import logging
import os
import re
from dataclasses import replace
from types import MappingProxyType

from bookweave.errors import InvalidBookMetadata, SkippedImage, UnresolvedReference, WarningSet
from bookweave.indexer import CrossReferenceIndexer
from bookweave.model import (
    Book, Emphasis, FootnoteDef, FootnoteRef, Heading, Link, Paragraph, Strong,
    Table, XRef, iter_blocks, map_blocks,
)
from bookweave.resolve import ChapterResolver

logger = logging.getLogger(__name__)

# BCP 47: language[-script][-region][-variant…][-extension…][-x-private], or x-private alone
LANG_TAG = re.compile(
    r"^(?:"
    r"[A-Za-z]{2,3}(?:-[A-Za-z]{3}){0,3}"
    r"(?:-[A-Za-z]{4})?"
    r"(?:-(?:[A-Za-z]{2}|\d{3}))?"
    r"(?:-(?:[A-Za-z0-9]{5,8}|\d[A-Za-z0-9]{3}))*"
    r"(?:-[0-9A-WY-Za-wy-z](?:-[A-Za-z0-9]{2,8})+)*"
    r"(?:-[xX](?:-[A-Za-z0-9]{1,8})+)?"
    r"|[xX](?:-[A-Za-z0-9]{1,8})+"
    r")$"
)


def valid_language_tag(tag):
    return isinstance(tag, str) and bool(LANG_TAG.match(tag))


class DocumentModelBuilder:
    """
    Usage:
        book = DocumentModelBuilder(config).assemble()

    or, with chapters that were resolved and indexed elsewhere:
        book = DocumentModelBuilder(config).build(chapters, anchors, warnings)
    """

    def __init__(self, config):
        self.config = config

    def validate_metadata(self):
        title = self.config.get("title")
        if not isinstance(title, str) or not title.strip():
            raise InvalidBookMetadata("title is empty")
        lang = self.config.get("lang")
        if not valid_language_tag(lang):
            raise InvalidBookMetadata(f"'{lang}' is not a well-formed language tag")

    def assemble(self, parser=None, timeout=None, workers=None, cancel=None):
        """Resolve, index and build in one go."""
        self.validate_metadata()
        resolver = ChapterResolver(self.config, parser, timeout=timeout, workers=workers, cancel=cancel)
        chapters, warnings = resolver.resolve()
        if not chapters:
            raise InvalidBookMetadata(_no_chapters_reason(warnings))
        indexer = CrossReferenceIndexer(
            numbering_depth=self.config.get("numbering_depth", 1),
            footnote_scope=self.config.get("footnotes", "chapter"),
        )
        chapters, anchors, index_warnings = indexer.index(chapters)
        return self.build(chapters, anchors, list(warnings) + list(index_warnings))

    def build(self, chapters, anchors, warnings=()):
        self.validate_metadata()
        if not chapters:
            raise InvalidBookMetadata("the book has no chapters")

        collected = WarningSet(warnings)
        resolved = []
        for chapter in chapters:
            blocks = map_blocks(
                chapter.blocks,
                lambda block, chapter=chapter: self._resolve_block(block, chapter, anchors, collected),
            )
            resolved.append(replace(chapter, blocks=blocks))

        footnotes = {}
        for chapter in resolved:
            for block in iter_blocks(chapter.blocks):
                if isinstance(block, FootnoteDef):
                    footnotes[block.anchor] = block

        cover = self._cover(collected)
        logger.debug("built book with %d chapters, %d warnings", len(resolved), len(collected))
        return Book(
            title=self.config.title.strip(),
            author=self.config.get("author") or "",
            lang=self.config.lang,
            chapters=tuple(resolved),
            anchors=anchors,
            footnotes=MappingProxyType(footnotes),
            config=self.config,
            root=self.config.book_dir,
            cover=cover,
            warnings=collected.as_tuple(),
        )

    # ── Reference resolution ───────────────────────────────

    def _resolve_block(self, block, chapter, anchors, warnings):
        def spans(content):
            return self._resolve_spans(content, chapter, anchors, warnings)

        if isinstance(block, (Heading, Paragraph, FootnoteDef)):
            return replace(block, content=spans(block.content))
        if isinstance(block, Table):
            rows = tuple(tuple(spans(cell) for cell in row) for row in block.rows)
            return replace(block, rows=rows)
        return block

    def _resolve_spans(self, content, chapter, anchors, warnings):
        out = []
        for span in content:
            if isinstance(span, XRef):
                target = None
                try:
                    target = anchors.resolve(span.label, chapter.index)
                except UnresolvedReference as e:
                    warnings.add(e)
                inner = self._resolve_spans(span.content, chapter, anchors, warnings)
                span = replace(span, content=inner, target=target)
            elif isinstance(span, FootnoteRef):
                target = None
                try:
                    target = anchors.resolve_footnote(span.label, chapter.index)
                except UnresolvedReference as e:
                    warnings.add(e)
                span = replace(span, target=target)
            elif isinstance(span, (Emphasis, Strong, Link)):
                span = replace(span, content=self._resolve_spans(span.content, chapter, anchors, warnings))
            out.append(span)
        return tuple(out)

    def _cover(self, warnings):
        cover = self.config.get("cover")
        if not cover:
            return None
        if not os.path.isfile(self.config.path(cover)):
            warnings.add(SkippedImage(cover, "book.yaml", "cover image not found"))
            return None
        return cover


def _no_chapters_reason(warnings):
    if warnings:
        return f"no chapter could be parsed (first error: {warnings[0]})"
    return "the book has no chapters"
