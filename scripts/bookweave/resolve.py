"""
Book resolution, chapter assembly, and artifact lookup.

Finds a book directory, works out which chapter files make up the book and
in what order, reads and parses them (concurrently), and numbers them.
"""

import glob
import logging
import os
import posixpath
import re
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import replace

import yaml

from bookweave.clean import Cleaner
from bookweave.config import FRONT_MATTER, ChapterEntry, numbering_from_fields
from bookweave.errors import (
    BuildCancelled, ChapterNotFound, ConfigError, IOTimeout, ParseError,
)
from bookweave.model import Chapter, Heading, Image, Numbering, Text, map_blocks
from bookweave.parser import MarkdownParser

logger = logging.getLogger(__name__)

FRONT_MATTER_KEYS = {"numbered", "hidden", "number", "title"}


def natural_sort_key(s):
    """Sort strings with embedded numbers naturally (2.md before 10.md)."""
    return [
        int(text) if text.isdigit() else text.lower()
        for text in re.split(r"(\d+)", s)
    ]


def find_book_dir(identifier, project_root):
    """
    Resolve a book identifier to its manuscript directory.

    Accepts:
        - Direct path:  manuscript/1_the_trench_mage
        - Number:       1         (matches "1_..." prefix)
        - Keyword:      trench    (matches dir name or YAML title)

    Returns: absolute path to the book directory, or None.
    """
    manuscript_root = os.path.join(project_root, "manuscript")

    # Direct path (absolute or relative)
    for candidate in [identifier, os.path.join(project_root, identifier)]:
        if os.path.isdir(candidate) and os.path.exists(
            os.path.join(candidate, "book.yaml")
        ):
            return os.path.abspath(candidate)

    if not os.path.isdir(manuscript_root):
        return None

    identifier_lower = identifier.lower()

    for entry in sorted(os.listdir(manuscript_root)):
        book_path = os.path.join(manuscript_root, entry)
        if not os.path.isdir(book_path):
            continue

        # Match by number prefix: "1" matches "1_the_trench_mage"
        match = re.match(r"^(\d+)_", entry)
        if match and match.group(1) == identifier:
            return book_path

        # Match by keyword in directory name
        if identifier_lower in entry.lower():
            return book_path

        # Match by keyword in YAML title
        yaml_path = os.path.join(book_path, "book.yaml")
        if os.path.exists(yaml_path):
            try:
                with open(yaml_path, encoding="utf-8") as f:
                    cfg = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                logger.debug("skipping %s: %s", yaml_path, e)
                continue
            if isinstance(cfg, dict) and identifier_lower in str(cfg.get("title", "")).lower():
                return book_path

    return None


def get_section_files(book_dir, section):
    """Get sorted markdown files from a section subdirectory."""
    section_dir = os.path.join(book_dir, section)
    if not os.path.isdir(section_dir):
        return []
    files = glob.glob(os.path.join(section_dir, "*.md"))
    files.sort(key=natural_sort_key)
    return files


def assemble_inputs(book_dir):
    """
    Chapter entries for a book without a `chapters:` list.

    Section order is front → chapters → back; front and back matter are
    unnumbered. Falls back to *.md in the book root if no subdirectories
    exist.
    """
    entries = []
    for section in ("front", "chapters", "back"):
        numbering = Numbering.DEFAULT if section == "chapters" else Numbering.UNNUMBERED
        for path in get_section_files(book_dir, section):
            rel = os.path.relpath(path, book_dir)
            entries.append(ChapterEntry(file=rel, numbering=numbering))

    # Fallback: flat layout
    if not entries:
        files = glob.glob(os.path.join(book_dir, "*.md"))
        files.sort(key=natural_sort_key)
        entries = [ChapterEntry(file=os.path.relpath(f, book_dir)) for f in files]

    return entries


def chapter_entries(config):
    """Declared chapters in book order."""
    if config.get("chapters") is not None:
        return list(config.chapters)
    return assemble_inputs(config.book_dir)


def resolve_artifact(book_dir, filename):
    """
    Resolve an artifact filename (template, stylesheet, cover) to a full path.

    Search order (first match wins):
        1. the path itself, relative to the book directory
        2. book artifacts/    (per-book overrides)
        3. repo artifacts/    (shared across all books)

    Returns: absolute path or None.
    """
    if not filename:
        return None

    candidates = [
        os.path.join(book_dir, filename),
        os.path.join(book_dir, "artifacts", filename),
        # Repo-level artifacts/ (up from manuscript/<book>)
        os.path.join(os.path.dirname(os.path.dirname(book_dir)), "artifacts", filename),
    ]
    for path in candidates:
        if os.path.isfile(path):
            return os.path.abspath(path)
    return None


# ── Chapter resolver ───────────────────────────────────────────────────


def split_front_matter(text, source):
    """
    Remove a leading YAML block from chapter text.

    Returns (fields, body, line_offset). Keys other than the chapter
    numbering fields are ignored.
    """
    match = FRONT_MATTER.match(text)
    if not match:
        return {}, text, 0
    try:
        fields = yaml.safe_load(match.group("yaml")) or {}
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        line = mark.line + 2 if mark is not None else 1
        raise ParseError(source, line, f"front matter is not valid YAML: {getattr(e, 'problem', e)}")
    if not isinstance(fields, dict):
        raise ParseError(source, 1, "front matter must be a YAML mapping")
    offset = match.group(0).count("\n")
    ignored = set(fields) - FRONT_MATTER_KEYS
    if ignored:
        logger.debug("%s: ignoring front matter keys %s", source, ", ".join(sorted(ignored)))
    return {k: v for k, v in fields.items() if k in FRONT_MATTER_KEYS}, text[match.end():], offset


class ChapterResolver:
    """
    Turn declared chapter entries into numbered Chapters.

    Usage:
        resolver = ChapterResolver(config)
        chapters, warnings = resolver.resolve()

    Parse failures are returned as warnings (the chapter is dropped) unless
    the book is strict; a missing file or a timeout raises.
    """

    def __init__(self, config, parser=None, timeout=None, workers=None, cancel=None):
        self.config = config
        self.cleaner = Cleaner.from_config(config)
        self.parser = parser or MarkdownParser(extension_configs=self.cleaner.markdown_extensions())
        self.timeout = timeout if timeout is not None else config.get("timeout")
        self.workers = workers or config.get("workers") or 1
        self.cancel = cancel

    def resolve(self, entries=None):
        entries = chapter_entries(self.config) if entries is None else entries
        if not entries:
            return [], []

        results = [None] * len(entries)
        pool = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="chapter")
        try:
            futures = [pool.submit(self._load, index, entry) for index, entry in enumerate(entries)]
            # Barrier: numbering needs every chapter, in declared order
            for index, future in enumerate(futures):
                results[index] = self._wait(future, entries[index])
        finally:
            # A timed-out read must not hold up the caller
            pool.shutdown(wait=False, cancel_futures=True)

        chapters = []
        warnings = []
        counter = 0
        for index, (entry, outcome) in enumerate(zip(entries, results)):
            numbering, number, title, blocks = outcome
            if numbering is Numbering.SPECIFIED:
                counter = number
            elif numbering is Numbering.DEFAULT:
                counter += 1
                number = counter
            else:
                number = None

            if isinstance(blocks, ParseError):
                if self.config.get("strict"):
                    raise blocks
                logger.debug("dropping %s: %s", _source_name(entry, index), blocks)
                warnings.append(blocks)
                continue

            chapters.append(Chapter(
                index=len(chapters),
                blocks=blocks,
                numbering=numbering,
                number=number,
                title=title,
                source=_source_name(entry, index),
            ))
        return chapters, warnings

    def _wait(self, future, entry):
        if self.cancel is not None and self.cancel.is_set():
            raise BuildCancelled()
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            raise IOTimeout(f"reading chapter {entry.file or '<text>'}", self.timeout)

    def _load(self, index, entry):
        """Read and parse one chapter. Runs in a worker thread."""
        if self.cancel is not None and self.cancel.is_set():
            raise BuildCancelled()
        source = _source_name(entry, index)
        numbering, number, title = entry.numbering, entry.number, entry.title
        try:
            text = entry.text if entry.text is not None else self._read(entry.file)
            fields, body, offset = split_front_matter(text, source)
            # A one-file book's header holds book fields, not chapter fields
            if fields and not (entry.file and entry.file == self.config.source_file):
                try:
                    numbering = numbering_from_fields(fields, numbering)
                except ConfigError as e:
                    raise ParseError(source, 1, str(e))
                number = fields.get("number", number)
                title = fields.get("title", title)
            try:
                blocks = self.parser.parse(body)
            except ParseError as e:
                line = e.line + offset if e.line else e.line
                raise ParseError(source, line, e.message)
        except ParseError as e:
            return numbering, number, title, e

        blocks = self.cleaner.clean_blocks(blocks)
        if title and numbering is not Numbering.HIDDEN and not _has_title_heading(blocks):
            blocks = (Heading(level=1, content=(Text(str(title)),)),) + tuple(blocks)
        if _first_heading_unnumbered(blocks) and numbering is Numbering.DEFAULT:
            numbering = Numbering.UNNUMBERED
        base = os.path.dirname(entry.file) if entry.file else ""
        blocks = map_blocks(blocks, lambda block: self._rebase(block, base))
        logger.debug("parsed %s: %d blocks", source, len(blocks))
        return numbering, number, title, tuple(blocks)

    def _read(self, file):
        path = self.config.path(file)
        if not os.path.isfile(path):
            raise ChapterNotFound(path)
        try:
            with open(path, encoding="utf-8") as f:
                return f.read()
        except UnicodeDecodeError as e:
            raise ParseError(file, 0, f"file contains invalid UTF-8 (byte {e.start})")

    def _rebase(self, block, base):
        """Make a local image path relative to the book directory."""
        if not isinstance(block, Image) or block.remote:
            return block
        source = posixpath.normpath(posixpath.join(base.replace(os.sep, "/"), block.source))
        if source.startswith(".."):
            logger.warning("image %s lies outside the book directory", source)
        return replace(block, source=source, found=os.path.isfile(self.config.path(source)))


def _source_name(entry, index):
    return entry.file if entry.file else f"chapter {index + 1}"


def _first_heading_unnumbered(blocks):
    for block in blocks:
        if isinstance(block, Heading) and block.level == 1:
            return block.unnumbered
    return False


def _has_title_heading(blocks):
    return any(isinstance(block, Heading) and block.level == 1 for block in blocks)
