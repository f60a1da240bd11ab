"""
Markdown parser: chapter text → model blocks.

Python-Markdown does the block and inline parsing. A tree processor that
runs after inline processing (and after attr_list and smarty) converts the tree
into model blocks; the HTML that Markdown serializes afterwards is thrown
away.

Fenced code, raw-format fences (```{=latex}) and footnote definitions are
lifted out of the source first and replaced by placeholder paragraphs, so
they come back as blocks in their original position.

Anything with the same `parse(text) -> blocks` shape can stand in for
MarkdownParser (tests use a fake).
"""

import html
import re
from urllib.parse import unquote

import markdown
from markdown import util
from markdown.treeprocessors import Treeprocessor

from bookweave.errors import ParseError
from bookweave.model import (
    BlockQuote, CodeBlock, Code, Emphasis, FootnoteDef, FootnoteRef, Heading,
    Image, LineBreak, Link, List, Paragraph, RawInline, RawSpan, Rule, Strong,
    Table, Text, XRef,
)


EXTENSIONS = ["tables", "attr_list", "sane_lists"]

FENCE_OPEN = re.compile(r"^(?P<fence>`{3,}|~{3,})[ \t]*(?P<info>[^`\n]*?)[ \t]*$")
FOOTNOTE_DEF = re.compile(r"^\[\^(?P<global>!?)(?P<label>[^\]\s]+)\]:[ \t]?(?P<text>.*)$")
RAW_INFO = re.compile(r"^\{\s*=(?P<format>[\w-]+)\s*\}$")

LIFTED = "BOOKWEAVELIFTED{}"
LIFTED_RE = re.compile(r"^BOOKWEAVELIFTED(\d+)$")

STX = re.escape(util.STX)
ETX = re.escape(util.ETX)

# Things left in text nodes after inline processing
INLINE_TOKEN = re.compile(
    rf"{STX}wzxhzdk:(?P<stash>\d+){ETX}"
    rf"|{STX}(?P<escaped>\d+){ETX}"
    r"|\[\^(?P<note>[^\]\s]+)\]"
    rf"|\[(?P<ref>[^\]\^{STX}\s][^\]{STX}]*)\]"
)
ENTITY = re.compile(r"^(?:&(?:#\d+|#x[0-9a-fA-F]+|\w+);)+$")
# Entities the email autolink processor obfuscates addresses with
SUBSTITUTED_ENTITY = re.compile(re.escape(util.AMP_SUBSTITUTE) + r"(#\d+|#x[0-9a-fA-F]+|\w+);")

HEADINGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
BLOCK_TAGS = HEADINGS | {"p", "ul", "ol", "pre", "blockquote", "hr", "table", "div"}

RAW_FORMATS = {"tex": "latex", "latex": "latex", "html": "html", "xhtml": "html"}


class MarkdownParser:
    """Parse one chapter's Markdown into a list of blocks."""

    def __init__(self, extensions=None, extension_configs=None):
        self.extension_configs = dict(extension_configs or {})
        self.extensions = list(extensions or EXTENSIONS)
        self.extensions += [name for name in self.extension_configs if name not in self.extensions]

    def parse(self, text):
        source, lifted = self._lift(text)
        return list(self._convert(source, lifted))

    # ── Markdown run ───────────────────────────────────────

    def _convert(self, source, lifted):
        # One Markdown instance per call: instances are not thread-safe
        md = markdown.Markdown(extensions=self.extensions, extension_configs=self.extension_configs)
        collector = _BlockCollector(md, lifted)
        # After inline processing, attr_list and smarty; before unescaping
        md.treeprocessors.register(collector, "bookweave_blocks", 1)
        md.convert(source)
        return collector.blocks

    def _inline_markdown(self, text):
        """Inline spans of a short Markdown snippet (footnote bodies)."""
        spans = []
        for block in self._convert(text, []):
            if isinstance(block, Paragraph):
                if spans:
                    spans.append(LineBreak())
                spans.extend(block.content)
        return tuple(spans)

    # ── Lifting ────────────────────────────────────────────

    def _lift(self, text):
        lines = text.replace("\r\n", "\n").split("\n")
        out = []
        lifted = []
        i = 0
        while i < len(lines):
            line = lines[i]

            fence = FENCE_OPEN.match(line)
            if fence:
                end = _find_fence_end(lines, i, fence.group("fence"))
                if end is None:
                    raise ParseError(None, i + 1, "unterminated code fence")
                lifted.append(_fenced_block(fence.group("info"), lines[i + 1:end]))
                out.extend(["", LIFTED.format(len(lifted) - 1), ""])
                i = end + 1
                continue

            note = FOOTNOTE_DEF.match(line)
            if note:
                body, end = _footnote_body(lines, i, note.group("text"))
                if not body.strip():
                    raise ParseError(None, i + 1, f"empty footnote definition '{note.group('label')}'")
                lifted.append(FootnoteDef(
                    label=note.group("label"),
                    content=self._inline_markdown(body),
                    is_global=bool(note.group("global")),
                ))
                out.extend(["", LIFTED.format(len(lifted) - 1), ""])
                i = end
                continue

            out.append(line)
            i += 1
        return "\n".join(out), lifted


def _find_fence_end(lines, start, marker):
    close = re.compile("^" + re.escape(marker[0]) + "{" + str(len(marker)) + r",}[ \t]*$")
    for j in range(start + 1, len(lines)):
        if close.match(lines[j]):
            return j
    return None


def _fenced_block(info, body_lines):
    body = "\n".join(body_lines)
    raw = RAW_INFO.match(info)
    if raw:
        fmt = raw.group("format").lower()
        return RawInline(RAW_FORMATS.get(fmt, fmt), body)
    language = info.strip("{} ").lstrip(".").split()[0] if info.strip("{} ") else ""
    return CodeBlock(body, language)


def _footnote_body(lines, start, first):
    """Collect a footnote's text: its first line plus indented continuation lines."""
    body = [first]
    j = start + 1
    while j < len(lines):
        line = lines[j]
        if line.startswith(("    ", "\t")):
            body.append(line.strip())
        elif not line.strip() and j + 1 < len(lines) and lines[j + 1].startswith(("    ", "\t")):
            body.append("")
        else:
            break
        j += 1
    return "\n".join(body).strip(), j


# ── Tree conversion ────────────────────────────────────────────────────


class _BlockCollector(Treeprocessor):
    """Runs after inline processing; turns the element tree into blocks."""

    def __init__(self, md, lifted):
        super().__init__(md)
        self.lifted = lifted
        self.blocks = ()

    def run(self, root):
        self.blocks = self._blocks(root)
        return None

    def _blocks(self, parent):
        blocks = []
        for el in parent:
            blocks.extend(self._block(el))
        return tuple(blocks)

    def _block(self, el):
        tag = el.tag
        if tag in HEADINGS:
            return [Heading(
                level=int(tag[1]),
                content=_strip(self._inlines(el)),
                label=el.get("id"),
                classes=tuple(el.get("class", "").split()),
            )]
        if tag == "p":
            return self._paragraph(el)
        if tag in ("ul", "ol"):
            return [self._list(el)]
        if tag == "pre":
            code = el.find("code")
            node = code if code is not None else el
            language = ""
            for cls in (node.get("class") or "").split():
                if cls.startswith("language-"):
                    language = cls[len("language-"):]
            return [CodeBlock(html.unescape(node.text or "").rstrip("\n"), language)]
        if tag == "blockquote":
            return [BlockQuote(self._blocks(el))]
        if tag == "hr":
            return [Rule()]
        if tag == "table":
            return [self._table(el)]
        return list(self._mixed(el))

    def _paragraph(self, el):
        text = (el.text or "").strip()
        if len(el) == 0:
            lifted = LIFTED_RE.match(text)
            if lifted:
                return [self.lifted[int(lifted.group(1))]]
            spans = self._text(el.text)
            if len(spans) == 1 and isinstance(spans[0], RawSpan):
                return [RawInline(spans[0].format, spans[0].literal)]

        # A paragraph is split around its top-level images
        blocks = []
        pending = list(self._text(el.text))
        for child in el:
            if child.tag == "img":
                _flush_paragraph(blocks, pending)
                blocks.append(Image(
                    source=child.get("src", ""),
                    caption=child.get("alt", "") or child.get("title", ""),
                    label=child.get("id"),
                ))
            else:
                pending.extend(self._inline(child))
            pending.extend(self._text(child.tail))
        _flush_paragraph(blocks, pending)
        return blocks

    def _mixed(self, el):
        """Content that may mix inline text and nested blocks (list items, divs)."""
        blocks = []
        pending = list(self._text(el.text))
        for child in el:
            if child.tag in BLOCK_TAGS:
                _flush_paragraph(blocks, pending)
                blocks.extend(self._block(child))
            else:
                pending.extend(self._inline(child))
            pending.extend(self._text(child.tail))
        _flush_paragraph(blocks, pending)
        return tuple(blocks)

    def _list(self, el):
        try:
            start = int(el.get("start", "1"))
        except ValueError:
            start = 1
        items = tuple(self._mixed(li) for li in el if li.tag == "li")
        return List(items=items, ordered=el.tag == "ol", start=start)

    def _table(self, el):
        rows = []
        header_rows = 0
        for section in el:
            if section.tag == "tr":
                rows.append(self._row(section))
                continue
            for tr in section:
                if tr.tag != "tr":
                    continue
                rows.append(self._row(tr))
                if section.tag == "thead":
                    header_rows += 1
        return Table(rows=tuple(rows), header_rows=header_rows)

    def _row(self, tr):
        return tuple(_strip(self._inlines(cell)) for cell in tr if cell.tag in ("th", "td"))

    # ── Inline content ─────────────────────────────────────

    def _inlines(self, el):
        spans = list(self._text(el.text))
        for child in el:
            spans.extend(self._inline(child))
            spans.extend(self._text(child.tail))
        return _merge(spans)

    def _inline(self, el):
        tag = el.tag
        if tag == "em":
            return (Emphasis(self._inlines(el)),)
        if tag == "strong":
            return (Strong(self._inlines(el)),)
        if tag == "code":
            return (Code(html.unescape(el.text or "")),)
        if tag == "a":
            href = _decode(el.get("href", ""))
            content = self._inlines(el)
            if href.startswith("#") and len(href) > 1:
                return (XRef(unquote(href[1:]), content),)
            return (Link(href, content, _decode(el.get("title", ""))),)
        if tag == "img":
            return (Text(el.get("alt", "")),)
        if tag == "br":
            return (LineBreak(),)
        return self._inlines(el)

    def _text(self, text):
        if not text:
            return ()
        spans = []
        pos = 0
        for match in INLINE_TOKEN.finditer(text):
            if match.start() > pos:
                spans.append(Text(_decode(text[pos:match.start()])))
            pos = match.end()
            if match.group("stash") is not None:
                spans.append(self._stashed(int(match.group("stash"))))
            elif match.group("escaped") is not None:
                spans.append(Text(chr(int(match.group("escaped")))))
            elif match.group("note") is not None:
                spans.append(FootnoteRef(match.group("note")))
            else:
                label = match.group("ref")
                spans.append(XRef(label, (Text(label),)))
        if pos < len(text):
            spans.append(Text(_decode(text[pos:])))
        return _merge(spans)

    def _stashed(self, index):
        raw = self.md.htmlStash.rawHtmlBlocks[index]
        if not isinstance(raw, str):
            raw = markdown.serializers.to_xhtml_string(raw)
        if ENTITY.match(raw):
            return Text(html.unescape(raw))
        return RawSpan("html", raw)


# ── Span helpers ───────────────────────────────────────────────────────


def _decode(text):
    """Undo the entity obfuscation of email autolinks."""
    if util.AMP_SUBSTITUTE not in text:
        return text
    return SUBSTITUTED_ENTITY.sub(lambda m: html.unescape(f"&{m.group(1)};"), text)


def _merge(spans):
    out = []
    for span in spans:
        if isinstance(span, Text) and out and isinstance(out[-1], Text):
            out[-1] = Text(out[-1].text + span.text)
        elif isinstance(span, Text) and not span.text:
            continue
        else:
            out.append(span)
    return tuple(out)


def _strip(spans):
    spans = list(_merge(spans))
    if spans and isinstance(spans[0], Text):
        spans[0] = Text(spans[0].text.lstrip())
    if spans and isinstance(spans[-1], Text):
        spans[-1] = Text(spans[-1].text.rstrip())
    return tuple(s for s in spans if not (isinstance(s, Text) and not s.text))


def _flush_paragraph(blocks, pending):
    spans = _strip(pending)
    pending.clear()
    if spans:
        blocks.append(Paragraph(spans))
