"""
Base builder class for all output formats.

A builder pairs a renderer with the packaging step for its format:
`make_renderer()` builds the renderer (loading templates, so template
problems surface before any rendering starts), the pipeline runs it, and
`package(result)` writes the files. Shared logic (logging, artifact
resolution, tool checks) lives here.
"""

import os
import shutil
from abc import ABC, abstractmethod

from bookweave.errors import TemplateError
from bookweave.resolve import resolve_artifact
from bookweave.templates import TemplateSet, stylesheet


class BaseBuilder(ABC):
    """
    Abstract base for format builders.

    Subclasses must define:
        format_name:     str    human-readable name ("EPUB", "PDF", etc.)
        extension:       str    output file extension (".epub", ".tex", etc.)
        make_renderer(): method returning a renderer for the book
        package():       method writing a RenderResult to disk
    """

    format_name = None  # Override in subclass
    extension = None    # Override in subclass

    def __init__(self, book, output_dir, verbose=False, timeout=None, **kwargs):
        self.book = book
        self.config = book.config
        self.output_dir = output_dir
        self.verbose = verbose
        self.timeout = timeout
        self.kwargs = kwargs

    # ── Output path ────────────────────────────────────────

    @property
    def prefix(self):
        return self.config.get("prefix") or "book"

    @property
    def output_file(self):
        return os.path.join(self.output_dir, f"{self.prefix}{self.extension}")

    # ── Logging ────────────────────────────────────────────

    def log(self, msg):
        if self.verbose:
            print(msg)

    def header(self):
        print(f"\n{'─' * 60}")
        print(f"  Building {self.format_name}: {self.book.title}")
        print(f"{'─' * 60}")

    # ── Artifact resolution (delegates to shared module) ───

    def resolve(self, filename):
        """Resolve an artifact filename for this book."""
        return resolve_artifact(self.book.root, filename)

    def load_templates(self, section, name):
        """Default templates for `name`, with the overrides named in config[section]."""
        configured = self.book.option(section, "template")
        path = None
        if configured:
            path = self.resolve(configured)
            if not path:
                raise TemplateError(name, f"template file '{configured}' not found in the book or artifacts/")
            self.log(f"  Templates: {path}")
        return TemplateSet.load(name, path)

    def load_stylesheet(self, section, name):
        configured = self.book.option(section, "css")
        path = self.resolve(configured) if configured else None
        if configured and not path:
            print(f"  Warning: stylesheet '{configured}' not found, using the default")
        elif path:
            self.log(f"  CSS: {path}")
        return stylesheet(name, path)

    # ── Files ──────────────────────────────────────────────

    def write_files(self, files, target_dir):
        """Write {relative path: text or bytes} under target_dir. Returns the paths."""
        written = []
        for relative, content in files.items():
            path = os.path.join(target_dir, *relative.split("/"))
            os.makedirs(os.path.dirname(path), exist_ok=True)
            if isinstance(content, bytes):
                with open(path, "wb") as f:
                    f.write(content)
            else:
                with open(path, "w", encoding="utf-8", newline="\n") as f:
                    f.write(content)
            written.append(path)
        return written

    def copy_resources(self, resources, target_dir):
        """Copy {relative path: source path} under target_dir."""
        for relative, source in resources.items():
            path = os.path.join(target_dir, *relative.split("/"))
            if os.path.abspath(path) == os.path.abspath(source):
                continue
            os.makedirs(os.path.dirname(path), exist_ok=True)
            shutil.copyfile(source, path)
            self.log(f"  Copied {relative}")

    # ── Abstract interface ─────────────────────────────────

    @abstractmethod
    def make_renderer(self):
        """Return a fresh renderer for this format."""
        ...

    @abstractmethod
    def package(self, result):
        """
        Write a RenderResult to disk. Returns the list of output paths.
        """
        ...
