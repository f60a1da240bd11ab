"""
HTML builders.

    html      <prefix>.html (or a directory when html.layout is "pages")
    html-dir  <prefix>/index.html + chapter-NNN.html + style.css
"""

import os

from bookweave.builders.base import BaseBuilder
from bookweave.renderers.html import HtmlRenderer


class HtmlBuilder(BaseBuilder):
    format_name = "HTML"
    extension = ".html"
    layout = None   # None: html.layout from book.yaml

    @property
    def page_layout(self):
        return self.layout or self.book.option("html", "layout", "single")

    @property
    def output_file(self):
        if self.page_layout == "pages":
            return os.path.join(self.output_dir, self.prefix)
        return super().output_file

    def make_renderer(self):
        return HtmlRenderer(
            self.book,
            templates=self.load_templates("html", "html"),
            layout=self.page_layout,
            css=self.load_stylesheet("html", "html"),
        )

    def package(self, result):
        self.header()
        if self.page_layout == "pages":
            target = self.output_file
        else:
            target = self.output_dir
        self.log(f"  Layout: {self.page_layout}")
        written = self.write_files(result.files, target)
        self.copy_resources(result.resources, target)
        if result.errors:
            print(f"  Warning: {result.errors} block(s) could not be rendered")
        print(f"  ✓ {self.output_file}")
        self.log(f"  {len(written)} file(s), {len(result.resources)} image(s)")
        return [self.output_file]


class HtmlDirBuilder(HtmlBuilder):
    format_name = "HTML (pages)"
    layout = "pages"
