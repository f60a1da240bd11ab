"""
bookweave — Markdown book to HTML, EPUB, LaTeX and PDF.

Public API:
    from bookweave.config import BookConfig
    from bookweave.resolve import find_book_dir, ChapterResolver
    from bookweave.document import DocumentModelBuilder
    from bookweave.pipeline import BookPipeline
    from bookweave.builders import BUILDERS, DEFAULT_FORMATS
    from bookweave.renderers import HtmlRenderer, EpubRenderer, LatexRenderer
    from bookweave.epubcheck import validate_epub
"""

__version__ = "0.4.0"
