"""
Table of contents derived from heading anchors and numbers.

Every renderer builds its navigation from the same tree, so the HTML TOC,
the EPUB nav document, toc.ncx and the LaTeX \\tableofcontents depth agree.
"""

from dataclasses import dataclass, field

from bookweave.model import Heading, Numbering, iter_blocks, plain_text


@dataclass
class TocEntry:
    title: str
    anchor: str
    chapter: int
    level: int
    number: str = None
    listed: bool = True
    children: list = field(default_factory=list)


def build_toc(book, depth=2):
    """
    Nested TocEntry list for headings down to `depth`.

    Headings marked .unlisted are left out (with their subtree), and so is
    the title of a hidden chapter.
    """
    roots = []
    for chapter in book.chapters:
        title_seen = False
        stack = []
        for block in iter_blocks(chapter.blocks):
            if not isinstance(block, Heading) or block.level > depth:
                continue
            if block.level == 1 and not title_seen:
                title_seen = True
                if chapter.numbering is Numbering.HIDDEN:
                    continue
            while stack and stack[-1].level >= block.level:
                stack.pop()
            if block.unlisted or any(not parent.listed for parent in stack):
                # Held on the stack so its subsections stay out too
                stack.append(TocEntry("", block.anchor, chapter.index, block.level, listed=False))
                continue
            title = plain_text(block.content)
            if block.level == 1 and chapter.title:
                title = chapter.title
            entry = TocEntry(title, block.anchor, chapter.index, block.level, block.number)
            if stack:
                stack[-1].children.append(entry)
            else:
                roots.append(entry)
            stack.append(entry)
    return roots
