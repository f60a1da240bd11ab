"""
LaTeX renderer: the whole book as one .tex source.

Compilation to PDF is not done here; see bookweave.builders.latex.
"""

import os

from bookweave import locale
from bookweave.errors import RenderError, SkippedImage, UnresolvedReference
from bookweave.model import Numbering
from bookweave.renderers.base import BaseRenderer
from bookweave.templates import TemplateSet

LATEX_ESCAPES = str.maketrans({
    "\\": r"\textbackslash{}",
    "{": r"\{",
    "}": r"\}",
    "$": r"\$",
    "&": r"\&",
    "#": r"\#",
    "_": r"\_",
    "%": r"\%",
    "~": r"\textasciitilde{}",
    "^": r"\textasciicircum{}",
})

# Inside \href{...} only these need care
URL_ESCAPES = str.maketrans({
    "\\": r"\\",
    "#": r"\#",
    "%": r"\%",
    "{": r"\{",
    "}": r"\}",
})

# Heading commands by level, for classes with and without \chapter
BOOK_HEADINGS = ["chapter", "section", "subsection", "subsubsection", "paragraph", "subparagraph"]
ARTICLE_HEADINGS = ["section", "subsection", "subsubsection", "paragraph", "subparagraph", "subparagraph"]
CHAPTER_CLASSES = {"book", "report", "memoir", "scrbook", "scrreprt"}

LIST_COUNTERS = ["enumi", "enumii", "enumiii", "enumiv"]


def escape(text):
    return text.translate(LATEX_ESCAPES)


class LatexRenderer(BaseRenderer):
    """
    Usage:
        result = LatexRenderer(book, output_dir="build").render()
        result.files    # {"the_trench_mage.tex": "\\documentclass…"}

    Image paths are written relative to `output_dir`, where the .tex file
    is compiled.
    """

    format_name = "latex"
    raw_format = "latex"

    def __init__(self, book, templates=None, output_dir=None):
        super().__init__(book, templates or TemplateSet.load("latex"))
        self.output_dir = os.path.abspath(output_dir or book.root)
        self.documentclass = book.option("tex", "class", "book")
        self.headings = BOOK_HEADINGS if self.documentclass in CHAPTER_CLASSES else ARTICLE_HEADINGS
        self.toc_depth = book.option("tex", "toc_depth", 2)
        self.prefix = getattr(book.config, "prefix", None) or "book"
        self._counter = 0
        self._footnotes_seen = set()
        self._list_depth = 0

    def render_book(self):
        chapters = []
        for chapter in self.book.chapters:
            content = "\n".join(self.render_chapter_blocks(chapter))
            chapters.append(self.templates.render("chapter", content=content))
        self.chapter = None
        # tocdepth counts from 0 (\chapter) in book classes, from 1 (\section) otherwise
        tocdepth = self.toc_depth - 1 if self.headings is BOOK_HEADINGS else self.toc_depth
        source = self.templates.render(
            "document",
            documentclass=self.documentclass,
            language=locale.tex_language(self.book.lang),
            title=escape(self.book.title),
            author=escape(self.book.author),
            date=escape(str(self.book.config.get("date") or "")) if self.book.config else "",
            tocdepth=tocdepth,
            content="\n".join(chapters),
        )
        return {f"{self.prefix}.tex": source}

    # ── Blocks ─────────────────────────────────────────────

    def render_heading(self, block):
        command = self.headings[min(block.level, 6) - 1]
        chapter_title = self.is_chapter_title(block)
        if chapter_title and self.chapter.numbering is Numbering.HIDDEN:
            return self.templates.render("hidden_heading", anchor=block.anchor)
        if chapter_title and self.chapter.title:
            content = escape(self.chapter.title)
        else:
            content = self.render_inlines(block.content)

        parts = []
        if block.number and command == "chapter":
            # Keep LaTeX's own counter in step with explicit chapter numbers
            number = self.chapter.number
            if number != self._counter + 1:
                parts.append(self.templates.render("set_number", counter="chapter", previous=number - 1))
            self._counter = number
        parts.append(self.templates.render(
            "heading",
            command=command,
            star="" if block.number else "*",
            content=content,
            anchor=block.anchor,
        ))
        if not block.number and not block.unlisted and block.level <= self.toc_depth:
            parts.append(self.templates.render("toc_line", command=command, content=content))
        return "\n".join(parts) + "\n"

    def render_paragraph(self, block):
        return self.templates.render("paragraph", content=self.render_inlines(block.content))

    def render_list(self, block):
        self._list_depth += 1
        try:
            items = []
            for item in block.items:
                content = "\n".join(part.rstrip("\n") for part in self.render_blocks(item))
                items.append(self.templates.render("list_item", content=content))
            start = ""
            if block.ordered and block.start != 1 and self._list_depth <= len(LIST_COUNTERS):
                counter = LIST_COUNTERS[self._list_depth - 1]
                start = "\n" + self.templates.render("set_number", counter=counter, previous=block.start - 1)
            return self.templates.render(
                "list",
                environment="enumerate" if block.ordered else "itemize",
                start=start,
                content="\n".join(items),
            )
        finally:
            self._list_depth -= 1

    def render_code(self, block):
        if "\\end{verbatim}" in block.text:
            raise RenderError("code block contains \\end{verbatim} and cannot be typeset verbatim", self.location)
        return self.templates.render("code", content=block.text)

    def render_image(self, block):
        if block.remote:
            self.warn(SkippedImage(block.source, self.location, "remote images cannot be typeset"))
            return ""
        if not block.found:
            self.warn(SkippedImage(block.source, self.location))
            return ""
        path = os.path.relpath(self.image_path(block), self.output_dir).replace(os.sep, "/")
        caption = ""
        if block.caption:
            caption = self.templates.render("caption", content=escape(block.caption))
        return self.templates.render("image", source=path, caption=caption, anchor=block.anchor)

    def render_table(self, block):
        width = max((len(row) for row in block.rows), default=0)
        if not width:
            return ""
        rows = []
        for position, row in enumerate(block.rows):
            cells = [self.render_inlines(cell) for cell in row]
            cells += [""] * (width - len(cells))
            rows.append(self.templates.render("table_row", content=" & ".join(cells)))
            if position + 1 == block.header_rows:
                rows.append(self.templates.render("table_header_rule"))
        return self.templates.render("table", columns="|".join("l" * width), content="\n".join(rows))

    def render_footnote_def(self, block):
        # Typeset where first referenced
        return ""

    def render_raw(self, block):
        if block.format != self.raw_format:
            return ""
        return block.literal + "\n"

    def render_blockquote(self, block):
        return self.templates.render("blockquote", content="\n".join(self.render_blocks(block.blocks)))

    def render_rule(self, block):
        return self.templates.render("rule")

    # ── Inlines ────────────────────────────────────────────

    def render_text(self, span):
        return escape(span.text)

    def render_emphasis(self, span):
        return self.templates.render("emphasis", content=self.render_inlines(span.content))

    def render_strong(self, span):
        return self.templates.render("strong", content=self.render_inlines(span.content))

    def render_code_span(self, span):
        return self.templates.render("code_span", content=escape(span.text))

    def render_link(self, span):
        return self.templates.render(
            "link", href=span.url.translate(URL_ESCAPES), content=self.render_inlines(span.content),
        )

    def render_xref(self, span):
        target = span.target
        if target is None:
            self.warn(UnresolvedReference(span.label, self.location))
            return self.templates.render("unresolved", label=escape(span.label))
        if self.implicit_reference(span) and target.title:
            content = escape(target.title)
        else:
            content = self.render_inlines(span.content)
        return self.templates.render("xref", anchor=target.anchor, content=content)

    def render_footnote_ref(self, span):
        target = span.target
        if target is None:
            self.warn(UnresolvedReference(f"^{span.label}", self.location))
            return self.templates.render("unresolved", label=escape(f"^{span.label}"))
        if target.anchor in self._footnotes_seen:
            return self.templates.render("footnote_again", anchor=target.anchor)
        footnote = self.book.footnotes.get(target.anchor)
        if footnote is None:
            raise RenderError(f"footnote '{span.label}' has no definition", self.location)
        self._footnotes_seen.add(target.anchor)
        return self.templates.render(
            "footnote", anchor=target.anchor, content=self.render_inlines(footnote.content),
        )

    def render_line_break(self, span):
        return self.templates.render("line_break")

    def render_raw_span(self, span):
        if span.format != self.raw_format:
            return ""
        return span.literal
