from bookweave.builders.epub import EpubBuilder
from bookweave.builders.html import HtmlBuilder, HtmlDirBuilder
from bookweave.builders.latex import LatexBuilder, LatexCompiler, PdfBuilder

BUILDERS = {
    "html": HtmlBuilder,
    "html-dir": HtmlDirBuilder,
    "epub": EpubBuilder,
    "tex": LatexBuilder,
    "pdf": PdfBuilder,
}

# --all builds these (PDF is opt-in with --pdf: it needs a TeX engine)
DEFAULT_FORMATS = ["html", "epub", "tex"]
