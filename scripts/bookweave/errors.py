"""
Error taxonomy for the build pipeline.

Fatal errors are raised. Recoverable ones are raised inside a stage, caught
by that stage, and handed back to the caller as warnings, so every class here
compares by type and arguments to let the pipeline de-duplicate them.
"""


class BookError(Exception):
    """Base class for everything the pipeline reports."""

    fatal = True

    def __eq__(self, other):
        return type(self) is type(other) and self.args == other.args

    def __hash__(self):
        return hash((type(self).__name__, self.args))


class ConfigError(BookError):
    """Raised when book.yaml is missing or invalid."""

    def __str__(self):
        return self.args[0]


class ChapterNotFound(BookError):
    def __init__(self, path):
        super().__init__(path)
        self.path = path

    def __str__(self):
        return f"chapter file not found: {self.path}"


class ParseError(BookError):
    """Malformed chapter source. Drops that chapter unless the build is strict."""

    fatal = False

    def __init__(self, file, line, message):
        super().__init__(file, line, message)
        self.file = file
        self.line = line
        self.message = message

    def __str__(self):
        where = self.file or "<source>"
        if self.line:
            where = f"{where}:{self.line}"
        return f"{where}: {self.message}"


class UnresolvedReference(BookError):
    fatal = False

    def __init__(self, label, location):
        super().__init__(label, location)
        self.label = label
        self.location = location

    def __str__(self):
        return f"unresolved reference '{self.label}' in {self.location}"


class DuplicateLabel(BookError):
    fatal = False

    def __init__(self, label, location):
        super().__init__(label, location)
        self.label = label
        self.location = location

    def __str__(self):
        return f"label '{self.label}' defined more than once ({self.location}); keeping the first"


class InvalidBookMetadata(BookError):
    def __init__(self, reason):
        super().__init__(reason)
        self.reason = reason

    def __str__(self):
        return f"invalid book metadata: {self.reason}"


class TemplateError(BookError):
    """Malformed template. Structural: the renderer stops."""

    def __init__(self, name, message):
        super().__init__(name, message)
        self.name = name
        self.message = message

    def __str__(self):
        return f"template '{self.name}': {self.message}"


class RenderError(BookError):
    """A single block could not be rendered; the block is skipped."""

    fatal = False

    def __init__(self, message, location):
        super().__init__(message, location)
        self.message = message
        self.location = location

    def __str__(self):
        return f"{self.location}: {self.message}"


class SkippedImage(BookError):
    fatal = False

    def __init__(self, source, location, reason="file not found"):
        super().__init__(source, location, reason)
        self.source = source
        self.location = location
        self.reason = reason

    def __str__(self):
        return f"skipped image '{self.source}' in {self.location} ({self.reason})"


class SkippedContent(BookError):
    fatal = False

    def __init__(self, what, location):
        super().__init__(what, location)
        self.what = what
        self.location = location

    def __str__(self):
        return f"removed {self.what} from {self.location}"


class DanglingResource(BookError):
    """A manifest item nothing points to. Never expected from valid input."""

    def __init__(self, item_id):
        super().__init__(item_id)
        self.item_id = item_id

    def __str__(self):
        return f"manifest item '{self.item_id}' is not reachable from spine or navigation"


class IOTimeout(BookError):
    def __init__(self, what, seconds):
        super().__init__(what, seconds)
        self.what = what
        self.seconds = seconds

    def __str__(self):
        return f"timed out after {self.seconds}s: {self.what}"


class CompileError(BookError):
    def __init__(self, message, log=""):
        super().__init__(message, log)
        self.message = message
        self.log = log

    def __str__(self):
        return self.message


class BuildCancelled(BookError):
    def __str__(self):
        return "build cancelled"


class RenderStateError(BookError):
    def __init__(self, current, requested):
        super().__init__(current, requested)

    def __str__(self):
        current, requested = self.args
        return f"renderer cannot go from {current.name} to {requested.name}"


class WarningSet:
    """Warnings in order of first occurrence, without duplicates."""

    def __init__(self, initial=()):
        self._items = {}
        self.update(initial)

    def add(self, warning):
        self._items.setdefault(warning, None)

    def update(self, warnings):
        for warning in warnings:
            self.add(warning)

    def __len__(self):
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    def as_tuple(self):
        return tuple(self._items)
