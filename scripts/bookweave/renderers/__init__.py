from bookweave.renderers.base import BaseRenderer, RenderResult, RenderState
from bookweave.renderers.epub import EpubRenderer
from bookweave.renderers.html import HtmlRenderer
from bookweave.renderers.latex import LatexRenderer

RENDERERS = {
    "html": HtmlRenderer,
    "epub": EpubRenderer,
    "latex": LatexRenderer,
}
