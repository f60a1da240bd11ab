"""
Cross-reference indexer.

One forward pass over the chapters in book order. Every heading, image and
footnote definition gets a unique anchor from a single counter, headings
get their hierarchical number, and labels are recorded in an AnchorTable.
Nothing else in the pipeline assigns numbers.
"""

import logging
from dataclasses import replace

from bookweave.errors import DuplicateLabel
from bookweave.model import (
    AnchorEntry, AnchorTable, FootnoteDef, Heading, Image, map_blocks,
    plain_text, slugify,
)

logger = logging.getLogger(__name__)

MAX_LEVEL = 6


class CrossReferenceIndexer:
    """
    Usage:
        indexer = CrossReferenceIndexer(numbering_depth=2)
        chapters, anchors, warnings = indexer.index(chapters)

    numbering_depth: deepest heading level that shows a number (1 = chapter
    numbers only, 0 = no numbers at all).
    footnote_scope: "chapter" (labels visible in their own chapter unless
    marked global) or "global".
    """

    def __init__(self, numbering_depth=1, footnote_scope="chapter"):
        self.numbering_depth = numbering_depth
        self.footnote_scope = footnote_scope

    def index(self, chapters):
        run = _IndexRun(self.numbering_depth, self.footnote_scope)
        indexed = [run.chapter(chapter) for chapter in chapters]
        table = AnchorTable(run.labels, run.footnotes, [c.location for c in chapters])
        logger.debug("indexed %d anchors over %d chapters", run.counter, len(chapters))
        return indexed, table, run.warnings


class _IndexRun:
    """State of one indexing pass. Discarded once the table is built."""

    def __init__(self, depth, footnote_scope):
        self.depth = depth
        self.footnote_scope = footnote_scope
        self.counter = 0
        self.labels = {}
        self.footnotes = {}
        self.warnings = []
        self.book_footnotes = 0

    def next_anchor(self, prefix):
        self.counter += 1
        return f"{prefix}-{self.counter}"

    def chapter(self, chapter):
        self.current = chapter
        self.titled = False
        self.sections = [0] * (MAX_LEVEL + 1)
        self.images = 0
        self.notes = 0

        def visit(block):
            if isinstance(block, Heading):
                return self.heading(block)
            if isinstance(block, Image):
                return self.image(block)
            if isinstance(block, FootnoteDef):
                return self.footnote(block)
            return block

        return replace(chapter, blocks=map_blocks(chapter.blocks, visit))

    # ── Blocks ─────────────────────────────────────────────

    def heading(self, block):
        chapter = self.current
        anchor = self.next_anchor("sec")
        number = None

        if block.level == 1:
            first = not self.titled
            self.titled = True
            if first and chapter.numbered and not block.unnumbered and self.depth >= 1:
                number = str(chapter.number)
        elif not block.unnumbered:
            level = min(block.level, MAX_LEVEL)
            self.sections[level] += 1
            for deeper in range(level + 1, MAX_LEVEL + 1):
                self.sections[deeper] = 0
            if chapter.numbered and level <= self.depth:
                parts = [str(chapter.number)] + [str(n) for n in self.sections[2:level + 1]]
                number = ".".join(parts)

        title = plain_text(block.content)
        entry = AnchorEntry(anchor, "", "heading", chapter.index, number, title)
        if block.label:
            self.register(block.label, entry, explicit=True)
        slug = slugify(title)
        if slug and slug != block.label:
            self.register(slug, entry, explicit=False)
        return replace(block, anchor=anchor, number=number)

    def image(self, block):
        chapter = self.current
        anchor = self.next_anchor("fig")
        self.images += 1
        number = f"{chapter.number}.{self.images}" if chapter.numbered else None
        if block.label:
            entry = AnchorEntry(anchor, "", "image", chapter.index, number, block.caption)
            self.register(block.label, entry, explicit=True)
        return replace(block, anchor=anchor, number=number)

    def footnote(self, block):
        chapter = self.current
        anchor = self.next_anchor("fn")
        if self.footnote_scope == "global":
            self.book_footnotes += 1
            number = self.book_footnotes
        else:
            self.notes += 1
            number = self.notes

        scoped = self.footnote_scope == "global" or block.is_global
        key = (None if scoped else chapter.index, block.label)
        if key in self.footnotes:
            self.warnings.append(DuplicateLabel(f"^{block.label}", chapter.location))
        else:
            self.footnotes[key] = AnchorEntry(
                anchor, block.label, "footnote", chapter.index, str(number),
            )
        return replace(block, anchor=anchor, number=number)

    # ── Labels ─────────────────────────────────────────────

    def register(self, label, entry, explicit):
        entry = replace(entry, label=label)
        entries = self.labels.setdefault(label, [])
        clash = any(e.chapter == entry.chapter for e in entries)
        if clash:
            # First definition in a chapter wins; implicit slugs clash silently
            if explicit:
                self.warnings.append(DuplicateLabel(label, self.current.location))
            return
        entries.append(entry)
