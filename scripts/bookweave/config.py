"""
Book configuration: load, validate, and provide defaults for book.yaml.
"""

import copy
import os
import re

import yaml

from bookweave.errors import ConfigError
from bookweave.model import Numbering


# Defaults applied if missing
DEFAULTS = {
    "title": "",
    "author": "",
    "lang": "en",
    "date": "",
    "numbering_depth": 1,
    "footnotes": "chapter",
    "strict": False,
    "timeout": 60,
    "workers": 4,
    "cover": None,
    "clean": False,
    "html": {},
    "epub": {},
    "tex": {},
}

# Defaults within format sub-configs
HTML_DEFAULTS = {
    "layout": "single",
    "template": None,
    "css": None,
    "toc_depth": 2,
}

EPUB_DEFAULTS = {
    "toc_depth": 2,
    "template": None,
    "css": None,
    "cover_alt": None,
    "identifier": None,
    "modified": None,
    "accessibility": {},
}

TEX_DEFAULTS = {
    "template": None,
    "toc_depth": 2,
    "class": "book",
    "engine": "xelatex",
    "passes": 2,
    "keep_tex": False,
}

# `clean: true` means these; a mapping overrides them
CLEAN_DEFAULTS = {
    "smart_quotes": True,
    "dashes": False,
    "guillemets": False,
}

FOOTNOTE_SCOPES = ("chapter", "global")

MARKDOWN_SUFFIXES = (".md", ".markdown")

# Leading YAML block: "---" … "---" or "..."
FRONT_MATTER = re.compile(r"\A---[ \t]*\n(?P<yaml>.*?)\n(?:---|\.\.\.)[ \t]*(?:\n|\Z)", re.DOTALL)

# "+ ch.md", "- intro.md", "! hidden.md", "3. ch.md" (chapter list markers)
CHAPTER_MARKER = re.compile(r"^\s*(?:(?P<mark>[-+!])|(?P<number>\d+)\s*[.:+]\s)\s*(?P<file>\S.*?)\s*$")


class ChapterEntry:
    """One declared chapter: a file (or in-memory text) plus numbering."""

    def __init__(self, file=None, text=None, numbering=Numbering.DEFAULT, number=None, title=None):
        if (file is None) == (text is None):
            raise ConfigError("chapter entry needs exactly one of 'file' or 'text'")
        self.file = file
        self.text = text
        self.numbering = numbering
        self.number = number
        self.title = title

    def __repr__(self):
        return f"ChapterEntry({self.file or '<text>'!s}, {self.numbering.name})"

    @classmethod
    def parse(cls, entry):
        """Build an entry from a book.yaml `chapters:` item."""
        if isinstance(entry, ChapterEntry):
            return entry
        if isinstance(entry, str):
            return cls._from_string(entry)
        if isinstance(entry, dict):
            return cls._from_mapping(entry)
        raise ConfigError(f"invalid chapter entry: {entry!r}")

    @classmethod
    def _from_string(cls, line):
        match = CHAPTER_MARKER.match(line)
        if not match:
            if not line.strip() or len(line.split()) > 1:
                raise ConfigError(f"invalid chapter entry: {line!r}")
            return cls(file=line.strip())
        filename = match.group("file")
        if len(filename.split()) > 1:
            raise ConfigError(f"chapter filenames must not contain whitespace: {line!r}")
        if match.group("number"):
            return cls(file=filename, numbering=Numbering.SPECIFIED, number=int(match.group("number")))
        numbering = {
            "+": Numbering.DEFAULT,
            "-": Numbering.UNNUMBERED,
            "!": Numbering.HIDDEN,
        }[match.group("mark")]
        return cls(file=filename, numbering=numbering)

    @classmethod
    def _from_mapping(cls, data):
        unknown = set(data) - {"file", "text", "numbered", "hidden", "number", "title"}
        if unknown:
            raise ConfigError(f"unknown chapter keys: {', '.join(sorted(unknown))}")
        return cls(
            file=data.get("file"),
            text=data.get("text"),
            numbering=numbering_from_fields(data),
            number=data.get("number"),
            title=data.get("title"),
        )


def numbering_from_fields(data, default=Numbering.DEFAULT):
    """Map numbered/hidden/number fields (book.yaml or front matter) to a Numbering."""
    if data.get("hidden"):
        return Numbering.HIDDEN
    if data.get("number") is not None:
        if not isinstance(data["number"], int) or isinstance(data["number"], bool):
            raise ConfigError(f"chapter number must be an integer, got {data['number']!r}")
        return Numbering.SPECIFIED
    if "numbered" in data:
        return Numbering.DEFAULT if data["numbered"] else Numbering.UNNUMBERED
    return default


class BookConfig:
    """
    Loaded, validated book configuration.

    Usage:
        config = BookConfig.load(book_dir)
        config.title                # "The Trench Mage"
        config.epub["toc_depth"]    # 2
        config.get("series")        # None if not set
        config.set("tex.class", "article")

    A book can also be a single Markdown file whose YAML header holds the
    book fields; `source_file` then names that file.
    """

    def __init__(self, data, book_dir, source_file=None):
        self._data = data
        self.book_dir = book_dir
        self.source_file = source_file

    @classmethod
    def load(cls, book_dir):
        """Load and validate book.yaml from a book directory (or a single .md file)."""
        if os.path.isfile(book_dir) and book_dir.lower().endswith(MARKDOWN_SUFFIXES):
            return cls.load_markdown(book_dir)

        yaml_path = os.path.join(book_dir, "book.yaml")
        if not os.path.exists(yaml_path):
            raise ConfigError(f"No book.yaml found in {book_dir}")

        with open(yaml_path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"book.yaml is not valid YAML: {e}")

        return cls.from_mapping(data, book_dir)

    @classmethod
    def load_markdown(cls, path):
        """
        Load a one-file book.

        The file's YAML header is the book configuration. The file itself
        becomes the only chapter, hidden, and LaTeX uses the article class.
        """
        with open(path, encoding="utf-8") as f:
            text = f.read()

        data = {}
        match = FRONT_MATTER.match(text)
        if match:
            try:
                data = yaml.safe_load(match.group("yaml"))
            except yaml.YAMLError as e:
                raise ConfigError(f"{os.path.basename(path)}: header is not valid YAML: {e}")
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise ConfigError(f"{os.path.basename(path)}: header must be a YAML mapping")
        if "chapters" in data:
            raise ConfigError(f"{os.path.basename(path)}: a single-file book cannot list chapters")

        filename = os.path.basename(path)
        data = dict(data)
        data.setdefault("prefix", os.path.splitext(filename)[0])
        data["chapters"] = [{"file": filename, "hidden": True}]
        tex = data.setdefault("tex", {})
        if isinstance(tex, dict):
            tex.setdefault("class", "article")

        config = cls.from_mapping(data, os.path.dirname(os.path.abspath(path)))
        config.source_file = filename
        return config

    @classmethod
    def from_mapping(cls, data, book_dir="."):
        """Validate a mapping and apply defaults. Does not touch the input."""
        if not isinstance(data, dict):
            raise ConfigError(f"book.yaml must be a YAML mapping, got {type(data).__name__}")

        data = copy.deepcopy(data)

        # Apply top-level defaults
        for key, default in DEFAULTS.items():
            data.setdefault(key, copy.deepcopy(default))

        # Apply format-section defaults
        for section, defaults in (("html", HTML_DEFAULTS), ("epub", EPUB_DEFAULTS), ("tex", TEX_DEFAULTS)):
            if not isinstance(data[section], dict):
                raise ConfigError(f"'{section}' must be a mapping")
            for key, default in defaults.items():
                data[section].setdefault(key, copy.deepcopy(default))

        if data["footnotes"] not in FOOTNOTE_SCOPES:
            raise ConfigError(
                f"footnotes must be one of {', '.join(FOOTNOTE_SCOPES)}, got {data['footnotes']!r}"
            )
        if data["html"]["layout"] not in ("single", "pages"):
            raise ConfigError(f"html.layout must be 'single' or 'pages', got {data['html']['layout']!r}")
        for key in ("numbering_depth", "workers"):
            if not isinstance(data[key], int) or data[key] < 0:
                raise ConfigError(f"{key} must be a non-negative integer")

        data["clean"] = _clean_options(data["clean"])

        if not data.get("prefix"):
            data["prefix"] = _prefix_from_title(data.get("title") or "book")

        if "chapters" in data:
            if not isinstance(data["chapters"], list):
                raise ConfigError("'chapters' must be a list")
            data["chapters"] = [ChapterEntry.parse(entry) for entry in data["chapters"]]

        return cls(data, os.path.abspath(book_dir))

    # ── Attribute access ───────────────────────────────────

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._data[name]
        except KeyError:
            raise AttributeError(f"BookConfig has no field '{name}'")

    def get(self, key, default=None):
        return self._data.get(key, default)

    def __getitem__(self, key):
        return self._data[key]

    def __contains__(self, key):
        return key in self._data

    def set(self, key, value):
        """
        Override one field after loading. A dotted key reaches into a
        section: set("tex.class", "article").
        """
        *sections, name = key.split(".")
        target = self._data
        for section in sections:
            target = target.get(section)
            if not isinstance(target, dict):
                raise ConfigError(f"cannot set '{key}': '{section}' is not a section")
        if name == "clean":
            value = _clean_options(value)
        target[name] = value

    # ── Convenience ────────────────────────────────────────

    def path(self, relative):
        """Absolute path of a file named relative to the book directory."""
        if relative is None:
            return None
        return os.path.normpath(os.path.join(self.book_dir, relative))

    def summary(self):
        """Print a short config summary."""
        print(f"\n  Book:   {self.title}")
        print(f"  Author: {self.author}")
        print(f"  Source: {self.book_dir}")
        if self.get("series"):
            print(f"  Series: {self.series}")


def _prefix_from_title(title):
    stem = re.sub(r"[^\w]+", "_", title.strip().lower(), flags=re.UNICODE).strip("_")
    return stem or "book"


def _clean_options(value):
    """Normalize the `clean` field to False or a full options mapping."""
    if value is None or value is False:
        return False
    if value is True:
        return dict(CLEAN_DEFAULTS)
    if isinstance(value, dict):
        unknown = set(value) - set(CLEAN_DEFAULTS)
        if unknown:
            raise ConfigError(f"unknown clean options: {', '.join(sorted(unknown))}")
        return {**CLEAN_DEFAULTS, **value}
    raise ConfigError(f"clean must be true, false or a mapping, got {value!r}")
