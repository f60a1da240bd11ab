"""
EPUB builder.

Pipeline: EpubRenderer → EpubPackager (OPF, nav, ncx, zip) → epubcheck validation.
"""

from bookweave.builders.base import BaseBuilder
from bookweave.epub import EpubPackager
from bookweave.epubcheck import validate_epub
from bookweave.renderers.epub import EpubRenderer


class EpubBuilder(BaseBuilder):
    format_name = "EPUB"
    extension = ".epub"

    def make_renderer(self):
        return EpubRenderer(
            self.book,
            templates=self.load_templates("epub", "epub"),
            css=self.load_stylesheet("epub", "epub"),
        )

    def package(self, result):
        self.header()

        skip_validate = self.kwargs.get("no_validate", False)
        json_report = self.kwargs.get("json_report", None)

        if self.book.cover:
            self.log(f"  Cover: {self.book.cover}")
        else:
            print("  Warning: No cover image found")

        packager = EpubPackager(self.book, result)
        packager.write(self.output_file)
        self.log(f"  Chapters: {len(packager.chapter_hrefs())}, images: {len(result.resources)}")
        if result.errors:
            print(f"  Warning: {result.errors} block(s) could not be rendered")
        print(f"  ✓ {self.output_file}")

        # ── Validate ───────────────────────────────────────
        if not skip_validate:
            validate_epub(
                self.output_file,
                verbose=self.verbose,
                json_report=json_report,
                timeout=self.timeout,
            )

        return [self.output_file]
