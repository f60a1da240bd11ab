"""
Build orchestration: book.yaml → Book → renderers (in parallel) → files.

Usage:
    config = BookConfig.load(book_dir)
    result = BookPipeline(config).build(["html", "epub"], "build/")
    result.outputs      # ["build/the_trench_mage.html", "build/the_trench_mage.epub"]
    result.warnings     # (UnresolvedReference('ch3', 'chapters/3.md'), …)

A fatal problem raises the first BookError met. Everything recoverable is
collected into BuildResult.warnings, de-duplicated, in order of occurrence.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass

from bookweave.builders import BUILDERS
from bookweave.document import DocumentModelBuilder
from bookweave.errors import BuildCancelled, ConfigError, IOTimeout, WarningSet
from bookweave.renderers import RENDERERS

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    outputs: list
    warnings: tuple = ()


class BookPipeline:
    def __init__(self, config, parser=None, compiler=None, timeout=None, workers=None,
                 cancel=None, verbose=False, **options):
        self.config = config
        self.parser = parser
        self.compiler = compiler
        self.timeout = timeout if timeout is not None else config.get("timeout")
        self.workers = workers
        self.cancel = cancel
        self.verbose = verbose
        self.options = options

    def check_cancelled(self):
        if self.cancel is not None and self.cancel.is_set():
            raise BuildCancelled()

    # ── Stages ─────────────────────────────────────────────

    def load(self):
        """Resolve, index and assemble the book."""
        builder = DocumentModelBuilder(self.config)
        return builder.assemble(
            parser=self.parser,
            timeout=self.timeout,
            workers=self.workers,
            cancel=self.cancel,
        )

    def render(self, book, renderers):
        """
        Run renderers concurrently over the same book.

        `renderers` holds renderer instances or format names ("html", "epub",
        "latex"). Returns the RenderResults in the same order.
        """
        renderers = [RENDERERS[r](book) if isinstance(r, str) else r for r in renderers]
        if not renderers:
            return []
        self.check_cancelled()
        pool = ThreadPoolExecutor(max_workers=len(renderers), thread_name_prefix="render")
        try:
            futures = [pool.submit(renderer.render) for renderer in renderers]
            results = []
            for renderer, future in zip(renderers, futures):
                try:
                    results.append(future.result(timeout=self.timeout))
                except FutureTimeout:
                    raise IOTimeout(f"rendering {renderer.format_name}", self.timeout)
                self.check_cancelled()
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
        return results

    def builders(self, book, formats, output_dir):
        unknown = [f for f in formats if f not in BUILDERS]
        if unknown:
            raise ConfigError(f"unknown output format(s): {', '.join(unknown)}")
        options = dict(self.options)
        # The PDF step must not delete a .tex that was asked for
        if "tex" in formats:
            options["keep_tex"] = True
        return [
            BUILDERS[fmt](
                book,
                output_dir,
                verbose=self.verbose,
                timeout=self.timeout,
                compiler=self.compiler,
                **options,
            )
            for fmt in formats
        ]

    def build(self, formats, output_dir):
        book = self.load()
        builders = self.builders(book, formats, output_dir)
        # Templates are loaded here, so a broken template stops the build before rendering
        renderers = [builder.make_renderer() for builder in builders]
        results = self.render(book, renderers)

        outputs = []
        warnings = WarningSet(book.warnings)
        for builder, result in zip(builders, results):
            self.check_cancelled()
            outputs.extend(builder.package(result))
            warnings.update(result.warnings)
        logger.debug("built %d output(s) with %d warning(s)", len(outputs), len(warnings))
        return BuildResult(outputs=outputs, warnings=warnings.as_tuple())
