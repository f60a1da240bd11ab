"""
EPUB content renderer: one XHTML document per chapter.

Same walk as the HTML renderer, restricted to the EPUB content profile:
void elements are self-closed, raw HTML is cleaned (scripts and tags
outside the profile are dropped and reported), and images must be local
files, which are copied into the container under images/.
"""

import posixpath
import re

from bs4 import BeautifulSoup, Comment

from bookweave.errors import RenderError, SkippedContent, SkippedImage
from bookweave.renderers.html import HtmlRenderer, escape
from bookweave.templates import TemplateSet, stylesheet

# Removed together with their content
REMOVED_TAGS = {
    "script", "style", "iframe", "frame", "frameset", "object", "embed",
    "applet", "form", "input", "button", "select", "textarea", "noscript",
}

ALLOWED_TAGS = {
    "a", "abbr", "address", "article", "aside", "b", "bdi", "bdo", "blockquote",
    "br", "caption", "cite", "code", "col", "colgroup", "dd", "del", "dfn",
    "div", "dl", "dt", "em", "figcaption", "figure", "footer", "h1", "h2",
    "h3", "h4", "h5", "h6", "header", "hr", "i", "img", "ins", "kbd", "li",
    "mark", "ol", "p", "pre", "q", "rp", "rt", "ruby", "s", "samp", "section",
    "small", "span", "strong", "sub", "sup", "table", "tbody", "td", "tfoot",
    "th", "thead", "time", "tr", "u", "ul", "var", "wbr",
}

VOID_TAGS = {
    "area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta",
    "param", "source", "track", "wbr",
}

TAG = re.compile(r"<(?P<close>/?)(?P<name>[A-Za-z][\w:-]*)(?P<attrs>[^>]*?)(?P<self>/?)>")


class EpubRenderer(HtmlRenderer):
    """
    Usage:
        result = EpubRenderer(book).render()
        result.files        # {"text/chapter_001.xhtml": …, "style.css": …}
        result.resources    # {"images/001_map.png": "/abs/path/map.png"}
    """

    format_name = "epub"

    def __init__(self, book, templates=None, css=None):
        super().__init__(
            book,
            templates or TemplateSet.load("epub"),
            layout="pages",
            css=css if css is not None else stylesheet("epub"),
        )
        self._images = {}

    def render_book(self):
        files = {}
        for chapter in self.book.chapters:
            content = "\n".join(self.render_chapter_blocks(chapter))
            files[f"text/{self.page_name(chapter.index)}"] = self.templates.render(
                "chapter_page",
                lang=escape(self.book.lang),
                title=escape(chapter.display_title() or self.book.title),
                content=content,
            )
        self.chapter = None
        files["style.css"] = self.css
        return files

    def page_name(self, chapter_index):
        return f"chapter_{chapter_index + 1:03d}.xhtml"

    # ── Images ─────────────────────────────────────────────

    def image_source(self, block):
        if block.remote:
            self.warn(SkippedImage(block.source, self.location, "remote images are not embedded"))
            return None
        if not block.found:
            self.warn(SkippedImage(block.source, self.location))
            return None
        name = self._images.get(block.source)
        if name is None:
            name = f"images/{len(self._images) + 1:03d}_{posixpath.basename(block.source)}"
            self._images[block.source] = name
            self.resources[name] = self.image_path(block)
        # Chapter documents live in text/
        return f"../{name}"

    # ── Raw HTML ───────────────────────────────────────────

    def render_raw(self, block):
        if block.format != self.raw_format:
            return ""
        problem = unbalanced_markup(block.literal)
        if problem:
            raise RenderError(f"malformed raw HTML: {problem}", self.location)
        return self.raw_html(block.literal)

    def render_raw_span(self, span):
        if span.format != self.raw_format:
            return ""
        tag = TAG.fullmatch(span.literal.strip())
        if tag:
            # Inline HTML arrives one tag at a time
            return self._single_tag(tag)
        return self.raw_html(span.literal)

    def raw_html(self, literal):
        soup = BeautifulSoup(literal, "html.parser")
        for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
            comment.extract()
        for tag in soup.find_all(True):
            if tag.decomposed:
                continue
            if tag.name in REMOVED_TAGS:
                self.warn(SkippedContent(f"<{tag.name}> element", self.location))
                tag.decompose()
            elif tag.name not in ALLOWED_TAGS:
                self.warn(SkippedContent(f"<{tag.name}> tag", self.location))
                tag.unwrap()
            else:
                for attr in list(tag.attrs):
                    if _unsafe_attribute(attr, tag.attrs[attr]):
                        self.warn(SkippedContent(f"{attr} attribute", self.location))
                        del tag[attr]
        return str(soup)

    def _single_tag(self, match):
        name = match.group("name").lower()
        if name in REMOVED_TAGS or name not in ALLOWED_TAGS:
            self.warn(SkippedContent(f"<{name}> tag", self.location))
            return ""
        if match.group("close"):
            return f"</{name}>"
        # Rebuilt through the parser so attributes come out quoted and filtered
        soup = BeautifulSoup(match.group(0), "html.parser")
        element = soup.find(name)
        for attr in list(element.attrs):
            if _unsafe_attribute(attr, element.attrs[attr]):
                self.warn(SkippedContent(f"{attr} attribute", self.location))
                del element[attr]
        if name in VOID_TAGS:
            return str(element)
        return str(element)[: -len(f"</{name}>")]


def _unsafe_attribute(name, value):
    if name.lower().startswith("on"):
        return True
    if name.lower() in ("href", "src") and isinstance(value, str):
        return value.strip().lower().startswith("javascript:")
    return False


def unbalanced_markup(literal):
    """Describe the first tag-nesting problem in an HTML fragment, or None."""
    stack = []
    for match in TAG.finditer(literal):
        name = match.group("name").lower()
        if name in VOID_TAGS or match.group("self"):
            continue
        if match.group("close"):
            if not stack or stack[-1] != name:
                return f"unexpected </{name}>"
            stack.pop()
        else:
            stack.append(name)
    if stack:
        return f"<{stack[-1]}> is never closed"
    return None
