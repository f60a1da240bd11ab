"""
HTML renderer.

Layouts:
    single  one standalone page, <prefix>.html, stylesheet inlined
    pages   index.html with the table of contents, chapter-NNN.html per
            chapter with previous / contents / next links, style.css
"""

from bookweave import locale
from bookweave.errors import SkippedImage, UnresolvedReference
from bookweave.model import Numbering, Paragraph
from bookweave.renderers.base import BaseRenderer
from bookweave.templates import TemplateSet, stylesheet
from bookweave.toc import build_toc

HTML_ESCAPES = str.maketrans({
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
})


def escape(text):
    return text.translate(HTML_ESCAPES)


class HtmlRenderer(BaseRenderer):
    """
    Usage:
        result = HtmlRenderer(book).render()
        result.files    # {"the_trench_mage.html": "<!DOCTYPE html>…"}
    """

    format_name = "html"
    raw_format = "html"

    def __init__(self, book, templates=None, layout=None, css=None):
        super().__init__(book, templates or TemplateSet.load(self.format_name))
        self.layout = layout or book.option("html", "layout", "single")
        self.css = css if css is not None else stylesheet(self.format_name)
        self.toc_depth = book.option(self.format_name, "toc_depth", 2)
        self.strings = locale.strings(book.lang)
        self.prefix = getattr(book.config, "prefix", None) or "book"

    # ── Layout ─────────────────────────────────────────────

    def render_book(self):
        if self.layout == "pages":
            return self._render_pages()
        return self._render_single()

    def _render_single(self):
        chapters = [self.render_chapter(chapter) for chapter in self.book.chapters]
        page = self.templates.render(
            "page",
            lang=escape(self.book.lang),
            title=escape(self.book.title),
            author=escape(self.book.author),
            css=self.css,
            toc=self.render_toc(),
            content="\n".join(chapters),
        )
        return {f"{self.prefix}.html": page}

    def _render_pages(self):
        files = {}
        chapters = self.book.chapters
        for position, chapter in enumerate(chapters):
            content = self.render_chapter(chapter)
            files[self.page_name(chapter.index)] = self.templates.render(
                "chapter_page",
                lang=escape(self.book.lang),
                title=escape(chapter.display_title() or self.book.title),
                nav=self._nav(position),
                content=content,
            )
        files["index.html"] = self.templates.render(
            "index",
            lang=escape(self.book.lang),
            title=escape(self.book.title),
            author=escape(self.book.author),
            toc=self.render_toc(),
        )
        files["style.css"] = self.css
        return files

    def _nav(self, position):
        chapters = self.book.chapters
        previous = next_ = ""
        if position > 0:
            previous = self.templates.render(
                "nav_link", rel="prev",
                href=self.page_name(chapters[position - 1].index),
                label=escape(self.strings["previous"]),
            )
        if position + 1 < len(chapters):
            next_ = self.templates.render(
                "nav_link", rel="next",
                href=self.page_name(chapters[position + 1].index),
                label=escape(self.strings["next"]),
            )
        return self.templates.render("nav", previous=previous, next=next_, toc=escape(self.strings["toc"]))

    def page_name(self, chapter_index):
        """File holding a chapter, or None when everything is one page."""
        if self.layout == "pages":
            return f"chapter-{chapter_index + 1:03d}.html"
        return None

    def href(self, chapter_index, anchor):
        page = self.page_name(chapter_index)
        if page is None or (self.chapter is not None and self.chapter.index == chapter_index):
            return f"#{anchor}"
        return f"{page}#{anchor}"

    def render_chapter(self, chapter):
        content = "\n".join(self.render_chapter_blocks(chapter))
        self.chapter = None
        return self.templates.render("chapter", index=chapter.index + 1, content=content)

    # ── Table of contents ──────────────────────────────────

    def render_toc(self):
        entries = build_toc(self.book, self.toc_depth)
        if not entries:
            return ""
        return self.templates.render(
            "toc",
            title=escape(self.strings["toc"]),
            content=self._toc_list(entries),
        )

    def _toc_list(self, entries):
        items = []
        for entry in entries:
            page = self.page_name(entry.chapter)
            items.append(self.templates.render(
                "toc_entry",
                href=f"{page}#{entry.anchor}" if page else f"#{entry.anchor}",
                number=self._number(entry.number),
                title=escape(entry.title),
                children="\n" + self._toc_list(entry.children) if entry.children else "",
            ))
        return self.templates.render("toc_list", content="\n".join(items))

    def _number(self, number):
        if not number:
            return ""
        return self.templates.render("heading_number", number=escape(number))

    # ── Blocks ─────────────────────────────────────────────

    def render_heading(self, block):
        chapter_title = self.is_chapter_title(block)
        if chapter_title and self.chapter.numbering is Numbering.HIDDEN:
            return self.templates.render("hidden_heading", anchor=block.anchor)
        if chapter_title and self.chapter.title:
            content = escape(self.chapter.title)
        else:
            content = self.render_inlines(block.content)
        number = self._number(block.number)
        if chapter_title and block.number:
            content = self.templates.render(
                "chapter_header",
                label=escape(self.strings["chapter"]),
                number=escape(block.number),
                title=content,
            )
            number = ""
        return self.templates.render(
            "heading",
            level=min(block.level, 6),
            anchor=block.anchor,
            number=number,
            content=content,
        )

    def render_paragraph(self, block):
        return self.templates.render("paragraph", content=self.render_inlines(block.content))

    def render_list(self, block):
        items = []
        for item in block.items:
            # Tight items are a single paragraph: no <p> inside the <li>
            if len(item) == 1 and isinstance(item[0], Paragraph):
                content = self.render_inlines(item[0].content)
            else:
                content = "\n".join(self.render_blocks(item))
            items.append(self.templates.render("list_item", content=content))
        start = f' start="{block.start}"' if block.ordered and block.start != 1 else ""
        return self.templates.render(
            "list",
            tag="ol" if block.ordered else "ul",
            start=start,
            content="\n".join(items),
        )

    def render_code(self, block):
        language = f' class="language-{escape(block.language)}"' if block.language else ""
        return self.templates.render("code", language=language, content=escape(block.text))

    def render_image(self, block):
        source = self.image_source(block)
        if source is None:
            return ""
        caption = ""
        if block.caption or block.number:
            number = ""
            if block.number:
                number = self.templates.render(
                    "figure_number", label=escape(self.strings["figure"]), number=escape(block.number),
                )
            caption = self.templates.render("caption", number=number, content=escape(block.caption))
        return self.templates.render(
            "image",
            anchor=block.anchor,
            source=escape(source),
            alt=escape(block.caption),
            caption=caption,
        )

    def image_source(self, block):
        """Path written into the src attribute, or None to leave the image out."""
        if block.remote:
            return block.source
        if not block.found:
            self.warn(SkippedImage(block.source, self.location))
            return None
        name = self.resource_name(block.source)
        self.resources[name] = self.image_path(block)
        return name

    def render_table(self, block):
        rows = []
        for position, row in enumerate(block.rows):
            tag = "th" if position < block.header_rows else "td"
            cells = "".join(
                self.templates.render("table_cell", tag=tag, content=self.render_inlines(cell))
                for cell in row
            )
            rows.append(self.templates.render("table_row", content=cells))
        return self.templates.render("table", content="\n".join(rows))

    def render_footnote_def(self, block):
        return self.templates.render(
            "footnote",
            anchor=block.anchor,
            number=block.number,
            content=self.render_inlines(block.content),
        )

    def render_raw(self, block):
        if block.format != self.raw_format:
            return ""
        return self.raw_html(block.literal)

    def raw_html(self, literal):
        return literal

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
        title = f' title="{escape(span.title)}"' if span.title else ""
        return self.templates.render(
            "link", href=escape(span.url), title=title, content=self.render_inlines(span.content),
        )

    def render_xref(self, span):
        target = span.target
        if target is None:
            self.warn(UnresolvedReference(span.label, self.location))
            return self.unresolved(span.label)
        if self.implicit_reference(span) and target.title:
            content = escape(target.title)
        else:
            content = self.render_inlines(span.content)
        return self.templates.render("xref", href=escape(self.href(target.chapter, target.anchor)), content=content)

    def render_footnote_ref(self, span):
        target = span.target
        if target is None:
            self.warn(UnresolvedReference(f"^{span.label}", self.location))
            return self.unresolved(f"^{span.label}")
        return self.templates.render(
            "footnote_ref",
            href=escape(self.href(target.chapter, target.anchor)),
            number=escape(target.number or ""),
        )

    def unresolved(self, label):
        return self.templates.render(
            "unresolved", label=escape(label), title=escape(self.strings["unresolved"]),
        )

    def render_line_break(self, span):
        return self.templates.render("line_break")

    def render_raw_span(self, span):
        if span.format != self.raw_format:
            return ""
        return self.raw_html(span.literal)
