"""
Typographic cleaning of chapter text.

Off unless book.yaml asks for it:

    clean: true                 # smart quotes, whitespace, French spacing
    clean:
      smart_quotes: true
      dashes: true              # -- and --- become en and em dashes
      guillemets: true          # << and >> become « and »

Quotes, dashes and guillemets are Python-Markdown's smarty extension, so
they only apply when chapters go through MarkdownParser. Whitespace is
cleaned afterwards on the text spans of the parsed blocks; code and raw
blocks are never touched.
"""

import re
from dataclasses import replace

from bookweave import locale
from bookweave.model import (
    Emphasis, FootnoteDef, Heading, Image, Link, Paragraph, Strong, Table, Text,
    XRef, map_blocks,
)

SPACES = re.compile(r"[ \t]{2,}")

# French: thin no-break space before ; ! ? and inside guillemets,
# no-break space before a colon
NARROW_NBSP = "\u202f"
NBSP = "\u00a0"
FRENCH_RULES = [
    (re.compile(r"[ \t]+(?=[;!?»])"), NARROW_NBSP),
    (re.compile(r"(?<=«)[ \t]+"), NARROW_NBSP),
    (re.compile(r"[ \t]+(?=:)"), NBSP),
]

FRENCH_QUOTES = {
    "left-double-quote": "&laquo;&#8239;",
    "right-double-quote": "&#8239;&raquo;",
}


class Cleaner:
    """
    Usage:
        cleaner = Cleaner.from_config(config)
        parser = MarkdownParser(extension_configs=cleaner.markdown_extensions())
        blocks = cleaner.clean_blocks(parser.parse(text))
    """

    def __init__(self, options=None, lang="en"):
        self.options = options or None
        self.french = locale.primary_subtag(lang) == "fr"

    @classmethod
    def from_config(cls, config):
        return cls(config.get("clean"), config.get("lang"))

    @property
    def enabled(self):
        return self.options is not None

    def markdown_extensions(self):
        """{extension name: config} to add to the Markdown run."""
        if not self.enabled:
            return {}
        smarty = {
            "smart_quotes": bool(self.options["smart_quotes"]),
            "smart_dashes": bool(self.options["dashes"]),
            "smart_angled_quotes": bool(self.options["guillemets"]),
            "smart_ellipses": False,
        }
        if self.french:
            smarty["substitutions"] = dict(FRENCH_QUOTES)
        return {"smarty": smarty}

    # ── Text spans ─────────────────────────────────────────

    def clean_text(self, text):
        text = SPACES.sub(" ", text)
        if self.french:
            for pattern, space in FRENCH_RULES:
                text = pattern.sub(space, text)
        return text

    def clean_blocks(self, blocks):
        if not self.enabled:
            return tuple(blocks)
        return map_blocks(blocks, self._clean_block)

    def _clean_block(self, block):
        if isinstance(block, (Heading, Paragraph, FootnoteDef)):
            return replace(block, content=self._clean_spans(block.content))
        if isinstance(block, Table):
            return replace(block, rows=tuple(tuple(self._clean_spans(cell) for cell in row) for row in block.rows))
        if isinstance(block, Image) and block.caption:
            return replace(block, caption=self.clean_text(block.caption))
        return block

    def _clean_spans(self, spans):
        out = []
        for span in spans:
            if isinstance(span, Text):
                span = Text(self.clean_text(span.text))
            elif isinstance(span, (Emphasis, Strong, Link, XRef)):
                span = replace(span, content=self._clean_spans(span.content))
            out.append(span)
        return tuple(out)
