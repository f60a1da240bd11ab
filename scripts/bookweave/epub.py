"""
EPUB 3 packaging.

Takes the XHTML documents and resources produced by EpubRenderer and writes
the container:

    mimetype                    (first entry, stored)
    META-INF/container.xml
    OEBPS/content.opf           metadata, manifest, spine
    OEBPS/nav.xhtml             navigation document
    OEBPS/toc.ncx               legacy navigation (EPUB 2 readers)
    OEBPS/cover.xhtml           when the book has a cover
    OEBPS/style.css
    OEBPS/text/chapter_NNN.xhtml
    OEBPS/images/…

Accessibility and series metadata are written straight into the OPF, so the
archive needs no post-processing. Entry order and timestamps are fixed, so
the same book always produces the same bytes.
"""

import datetime
import logging
import mimetypes
import os
import posixpath
import re
import uuid
import zipfile
from dataclasses import dataclass

from bookweave import locale
from bookweave.errors import DanglingResource
from bookweave.renderers.html import escape
from bookweave.toc import TocEntry, build_toc

logger = logging.getLogger(__name__)

MIMETYPE = "application/epub+zip"
XHTML = "application/xhtml+xml"

# DOS epoch: the earliest timestamp a zip entry can carry
ZIP_TIMESTAMP = (1980, 1, 1, 0, 0, 0)
ZIP_EPOCH = int(datetime.datetime(*ZIP_TIMESTAMP, tzinfo=datetime.timezone.utc).timestamp())

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

CONTENT_OPF = """<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="3.0" unique-identifier="book-id" xml:lang="{lang}">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
{metadata}
  </metadata>
  <manifest>
{manifest}
  </manifest>
  <spine toc="ncx">
{spine}
  </spine>
</package>
"""

NAV_XHTML = """<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops" xml:lang="{lang}" lang="{lang}">
<head>
<meta charset="utf-8" />
<title>{toc_title}</title>
<link rel="stylesheet" type="text/css" href="style.css" />
</head>
<body>
<nav epub:type="toc" id="toc">
<h1>{toc_title}</h1>
{toc}
</nav>
<nav epub:type="landmarks" hidden="hidden">
<ol>
{landmarks}
</ol>
</nav>
</body>
</html>
"""

TOC_NCX = """<?xml version="1.0" encoding="UTF-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1" xml:lang="{lang}">
  <head>
    <meta name="dtb:uid" content="{identifier}"/>
    <meta name="dtb:depth" content="{depth}"/>
    <meta name="dtb:totalPageCount" content="0"/>
    <meta name="dtb:maxPageNumber" content="0"/>
  </head>
  <docTitle><text>{title}</text></docTitle>
  <navMap>
{points}
  </navMap>
</ncx>
"""

COVER_XHTML = """<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops" xml:lang="{lang}" lang="{lang}">
<head>
<meta charset="utf-8" />
<title>{title}</title>
<style>body {{ margin: 0; text-align: center; }} img {{ max-width: 100%; max-height: 100%; }}</style>
</head>
<body epub:type="cover">
<section class="cover">
<img src="{src}" alt="{alt}" />
</section>
</body>
</html>
"""

# href="…" / src="…" in documents, url(…) in stylesheets
REFERENCE = re.compile(r"""(?:\b(?:href|src)\s*=\s*["']|url\(\s*["']?)(?P<target>[^"'#)\s]+)""")


@dataclass(frozen=True)
class ManifestItem:
    id: str
    href: str
    media_type: str
    properties: str = ""


class EpubPackager:
    """
    Usage:
        result = EpubRenderer(book).render()
        EpubPackager(book, result).write("build/book.epub")
    """

    def __init__(self, book, result, modified=None):
        self.book = book
        self.result = result
        self.toc_depth = book.option("epub", "toc_depth", 2)
        self.strings = locale.strings(book.lang)
        self.identifier = _identifier(book)
        self.modified = modified or _modified(book, result.resources.values())
        self.cover = book.cover
        self.cover_href = None
        if self.cover:
            self.cover_href = f"images/cover{os.path.splitext(self.cover)[1].lower()}"

    # ── Manifest ───────────────────────────────────────────

    def chapter_hrefs(self):
        """Chapter documents in reading order."""
        return sorted(href for href in self.result.files if href.startswith("text/"))

    def manifest(self):
        """Spine documents in reading order, then ancillary resources by name."""
        items = []
        if self.cover:
            items.append(ManifestItem("cover", "cover.xhtml", XHTML))
        for number, href in enumerate(self.chapter_hrefs(), 1):
            items.append(ManifestItem(f"chapter-{number:03d}", href, XHTML))

        ancillary = [
            ManifestItem("nav", "nav.xhtml", XHTML, "nav"),
            ManifestItem("ncx", "toc.ncx", "application/x-dtbncx+xml"),
        ]
        if "style.css" in self.result.files:
            ancillary.append(ManifestItem("css", "style.css", "text/css"))
        if self.cover:
            ancillary.append(ManifestItem("cover-image", self.cover_href, _media_type(self.cover_href), "cover-image"))
        for number, href in enumerate(sorted(self.result.resources), 1):
            ancillary.append(ManifestItem(f"image-{number:03d}", href, _media_type(href)))
        items.extend(sorted(ancillary, key=lambda item: item.href))

        seen = set()
        for item in items:
            if item.id in seen:
                raise ValueError(f"duplicate manifest id {item.id}")
            seen.add(item.id)
        return items

    def spine(self, items):
        return [item for item in items if item.media_type == XHTML and item.properties != "nav"]

    # ── Documents ──────────────────────────────────────────

    def contents(self, items):
        """OEBPS-relative href → bytes for every manifest item."""
        files = {}
        for href, text in self.result.files.items():
            files[href] = text.encode("utf-8") if isinstance(text, str) else text
        files["nav.xhtml"] = self.nav_document().encode("utf-8")
        files["toc.ncx"] = self.ncx_document().encode("utf-8")
        resources = dict(self.result.resources)
        if self.cover:
            files["cover.xhtml"] = self.cover_document().encode("utf-8")
            resources[self.cover_href] = os.path.join(self.book.root, self.cover)
        for href, path in sorted(resources.items()):
            with open(path, "rb") as f:
                files[href] = f.read()
        missing = [item.href for item in items if item.href not in files]
        if missing:
            raise ValueError(f"manifest items without content: {', '.join(missing)}")
        return files

    def toc_entries(self):
        entries = build_toc(self.book, self.toc_depth)
        if entries:
            return entries
        # A navigation document needs at least one entry
        return [
            TocEntry(chapter.display_title() or f"{self.strings['chapter']} {chapter.index + 1}",
                     None, chapter.index, 1)
            for chapter in self.book.chapters
        ]

    def entry_href(self, entry):
        href = f"text/chapter_{entry.chapter + 1:03d}.xhtml"
        return f"{href}#{entry.anchor}" if entry.anchor else href

    def nav_document(self):
        landmarks = []
        if self.cover:
            landmarks.append(f'<li><a epub:type="cover" href="cover.xhtml">{escape(self.strings["cover"])}</a></li>')
        landmarks.append(f'<li><a epub:type="toc" href="nav.xhtml#toc">{escape(self.strings["toc"])}</a></li>')
        chapters = self.chapter_hrefs()
        if chapters:
            landmarks.append(f'<li><a epub:type="bodymatter" href="{chapters[0]}">{escape(self.book.title)}</a></li>')
        return NAV_XHTML.format(
            lang=escape(self.book.lang),
            toc_title=escape(self.strings["toc"]),
            toc=self._nav_list(self.toc_entries()),
            landmarks="\n".join(landmarks),
        )

    def _nav_list(self, entries):
        lines = ["<ol>"]
        for entry in entries:
            label = escape(f"{entry.number} {entry.title}" if entry.number else entry.title)
            link = f'<a href="{escape(self.entry_href(entry))}">{label}</a>'
            if entry.children:
                lines.append(f"<li>{link}\n{self._nav_list(entry.children)}</li>")
            else:
                lines.append(f"<li>{link}</li>")
        lines.append("</ol>")
        return "\n".join(lines)

    def ncx_document(self):
        points = []
        depth = self._nav_points(self.toc_entries(), points, 2, [0])
        return TOC_NCX.format(
            lang=escape(self.book.lang),
            identifier=escape(self.identifier),
            depth=depth,
            title=escape(self.book.title),
            points="\n".join(points),
        )

    def _nav_points(self, entries, lines, indent, order):
        depth = 1 if entries else 0
        pad = "  " * indent
        for entry in entries:
            order[0] += 1
            label = escape(f"{entry.number} {entry.title}" if entry.number else entry.title)
            lines.append(f'{pad}<navPoint id="navpoint-{order[0]}" playOrder="{order[0]}">')
            lines.append(f"{pad}  <navLabel><text>{label}</text></navLabel>")
            lines.append(f'{pad}  <content src="{escape(self.entry_href(entry))}"/>')
            depth = max(depth, 1 + self._nav_points(entry.children, lines, indent + 1, order))
            lines.append(f"{pad}</navPoint>")
        return depth

    def cover_document(self):
        title = self.book.title
        alt = self.book.option("epub", "cover_alt") or f"Cover image for {title}"
        return COVER_XHTML.format(
            lang=escape(self.book.lang),
            title=escape(self.strings["cover"]),
            src=escape(self.cover_href),
            alt=escape(alt),
        )

    def package_document(self, items):
        manifest = []
        for item in items:
            properties = f' properties="{item.properties}"' if item.properties else ""
            manifest.append(
                f'    <item id="{item.id}" href="{escape(item.href)}" media-type="{item.media_type}"{properties}/>'
            )
        spine = [f'    <itemref idref="{item.id}"/>' for item in self.spine(items)]
        return CONTENT_OPF.format(
            lang=escape(self.book.lang),
            metadata="\n".join(self.metadata()),
            manifest="\n".join(manifest),
            spine="\n".join(spine),
        )

    def metadata(self):
        book = self.book
        lines = [
            f'    <dc:identifier id="book-id">{escape(self.identifier)}</dc:identifier>',
            f"    <dc:title>{escape(book.title)}</dc:title>",
        ]
        if book.author:
            lines.append(f"    <dc:creator>{escape(book.author)}</dc:creator>")
        lines.append(f"    <dc:language>{escape(book.lang)}</dc:language>")
        date = book.config.get("date") if book.config else None
        if date:
            lines.append(f"    <dc:date>{escape(str(date))}</dc:date>")
        lines.append(f'    <meta property="dcterms:modified">{self.modified}</meta>')
        if self.cover:
            lines.append('    <meta name="cover" content="cover-image"/>')

        # Accessibility metadata (EU Accessibility Act)
        accessibility = book.option("epub", "accessibility") or {}
        for prop in ("accessMode", "accessModeSufficient", "accessibilityFeature"):
            values = accessibility.get(prop) or []
            if isinstance(values, str):
                values = [values]
            for value in values:
                lines.append(f'    <meta property="schema:{prop}">{escape(str(value))}</meta>')
        for prop in ("accessibilityHazard", "accessibilitySummary"):
            value = accessibility.get(prop)
            if value:
                value = " ".join(str(value).split())
                lines.append(f'    <meta property="schema:{prop}">{escape(value)}</meta>')

        # Series metadata
        series = book.config.get("series") if book.config else None
        if series:
            lines.append(f'    <meta property="belongs-to-collection" id="series">{escape(str(series))}</meta>')
            lines.append('    <meta refines="#series" property="collection-type">series</meta>')
            series_number = book.config.get("series_number")
            if series_number:
                lines.append(f'    <meta refines="#series" property="group-position">{escape(str(series_number))}</meta>')
        return lines

    # ── Checks ─────────────────────────────────────────────

    def check_reachable(self, items, files):
        """Every manifest item must be reachable from the spine or navigation."""
        by_href = {item.href: item for item in items}
        roots = [item.href for item in self.spine(items)] + ["nav.xhtml", "toc.ncx"]
        reached = set()
        queue = list(roots)
        while queue:
            href = queue.pop(0)
            if href in reached or href not in by_href:
                continue
            reached.add(href)
            if not href.endswith((".xhtml", ".ncx", ".css")):
                continue
            text = files[href].decode("utf-8")
            base = posixpath.dirname(href)
            for match in REFERENCE.finditer(text):
                target = match.group("target")
                if "://" in target or target.startswith(("mailto:", "data:")):
                    continue
                queue.append(posixpath.normpath(posixpath.join(base, target)))
        for item in items:
            if item.href not in reached:
                raise DanglingResource(item.id)

    # ── Writing ────────────────────────────────────────────

    def write(self, path):
        items = self.manifest()
        files = self.contents(items)
        self.check_reachable(items, files)
        opf = self.package_document(items)

        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        with zipfile.ZipFile(path, "w") as zf:
            _write_entry(zf, "mimetype", MIMETYPE.encode("ascii"), zipfile.ZIP_STORED)
            _write_entry(zf, "META-INF/container.xml", CONTAINER_XML.encode("utf-8"))
            _write_entry(zf, "OEBPS/content.opf", opf.encode("utf-8"))
            for item in items:
                _write_entry(zf, f"OEBPS/{item.href}", files[item.href])
        logger.debug("wrote %s: %d manifest items", path, len(items))
        return path


def _write_entry(zf, name, data, compress_type=zipfile.ZIP_DEFLATED):
    info = zipfile.ZipInfo(name, date_time=ZIP_TIMESTAMP)
    info.compress_type = compress_type
    info.external_attr = 0o644 << 16
    zf.writestr(info, data)


def _media_type(href):
    media_type, _ = mimetypes.guess_type(href)
    if media_type is None:
        raise ValueError(f"unknown media type for {href}")
    return media_type


def _identifier(book):
    identifier = book.option("epub", "identifier")
    if identifier:
        return str(identifier)
    # Stable across builds of the same book
    name = "\0".join([book.title, book.author, book.lang])
    return f"urn:uuid:{uuid.uuid5(uuid.NAMESPACE_URL, name)}"


def _modified(book, resources=()):
    """
    dcterms:modified: the configured value, else SOURCE_DATE_EPOCH, else the
    newest modification time among the book's source files (UTC).
    """
    value = book.option("epub", "modified")
    if isinstance(value, datetime.datetime):
        moment = value if value.tzinfo else value.replace(tzinfo=datetime.timezone.utc)
    elif isinstance(value, datetime.date):
        moment = datetime.datetime(value.year, value.month, value.day, tzinfo=datetime.timezone.utc)
    elif value:
        return str(value)
    elif os.environ.get("SOURCE_DATE_EPOCH", "").isdigit():
        moment = datetime.datetime.fromtimestamp(int(os.environ["SOURCE_DATE_EPOCH"]), datetime.timezone.utc)
    else:
        moment = datetime.datetime.fromtimestamp(_source_mtime(book, resources), datetime.timezone.utc)
    return moment.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _source_mtime(book, resources):
    """Newest whole-second mtime of book.yaml, chapters, cover and images."""
    paths = [os.path.join(book.root, "book.yaml")]
    paths += [os.path.join(book.root, chapter.source) for chapter in book.chapters]
    paths += list(resources)
    if book.cover:
        paths.append(os.path.join(book.root, book.cover))
    times = [int(os.path.getmtime(path)) for path in paths if os.path.isfile(path)]
    # In-memory books have no files; fall back to the zip entry epoch
    return max(times) if times else ZIP_EPOCH
