"""
Template sets for the renderers.

A template set maps a block variant or page part ("heading", "paragraph",
"page", …) to a str.format template with named placeholders. Overrides come
from a YAML file listing only the keys to replace:

    # artifacts/html_templates.yaml
    paragraph: '<p class="body">{content}</p>'

An override may only use the placeholders its default uses. Unknown keys,
unknown placeholders and malformed braces raise TemplateError when the set
is loaded, before any rendering starts.

LaTeX templates double their literal braces ({{ }}) so that only the named
placeholders are substituted.
"""

import string

import yaml

from bookweave.errors import TemplateError


# ── HTML ───────────────────────────────────────────────────────────────

HTML = {
    "page": """<!DOCTYPE html>
<html lang="{lang}">
<head>
<meta charset="utf-8" />
<meta name="viewport" content="width=device-width, initial-scale=1" />
<meta name="author" content="{author}" />
<title>{title}</title>
<style>
{css}</style>
</head>
<body>
<header class="book-header">
<h1 class="book-title">{title}</h1>
<p class="book-author">{author}</p>
</header>
{toc}
<main>
{content}
</main>
</body>
</html>
""",
    "index": """<!DOCTYPE html>
<html lang="{lang}">
<head>
<meta charset="utf-8" />
<meta name="viewport" content="width=device-width, initial-scale=1" />
<meta name="author" content="{author}" />
<title>{title}</title>
<link rel="stylesheet" href="style.css" />
</head>
<body>
<header class="book-header">
<h1 class="book-title">{title}</h1>
<p class="book-author">{author}</p>
</header>
{toc}
</body>
</html>
""",
    "chapter_page": """<!DOCTYPE html>
<html lang="{lang}">
<head>
<meta charset="utf-8" />
<meta name="viewport" content="width=device-width, initial-scale=1" />
<title>{title}</title>
<link rel="stylesheet" href="style.css" />
</head>
<body>
{nav}
<main>
{content}
</main>
{nav}
</body>
</html>
""",
    "chapter": '<section class="chapter" id="chapter-{index}">\n{content}\n</section>',
    "toc": '<nav class="toc" id="toc">\n<h2>{title}</h2>\n{content}\n</nav>',
    "toc_list": "<ul>\n{content}\n</ul>",
    "toc_entry": '<li><a href="{href}">{number}{title}</a>{children}</li>',
    "nav": '<nav class="chapter-nav">{previous} <a href="index.html">{toc}</a> {next}</nav>',
    "nav_link": '<a rel="{rel}" href="{href}">{label}</a>',
    "heading": '<h{level} id="{anchor}">{number}{content}</h{level}>',
    "heading_number": '<span class="number">{number}</span> ',
    # Numbered chapter titles: "Chapter 3 The Wire", label from the book language
    "chapter_header": '<span class="number">{label} {number}</span> {title}',
    "hidden_heading": '<a id="{anchor}"></a>',
    "paragraph": "<p>{content}</p>",
    "list": "<{tag}{start}>\n{content}\n</{tag}>",
    "list_item": "<li>{content}</li>",
    "code": "<pre><code{language}>{content}</code></pre>",
    "image": '<figure id="{anchor}">\n<img src="{source}" alt="{alt}" />\n{caption}</figure>',
    "caption": "<figcaption>{number}{content}</figcaption>\n",
    "figure_number": '<span class="number">{label} {number}.</span> ',
    "table": "<table>\n{content}\n</table>",
    "table_row": "<tr>{content}</tr>",
    "table_cell": "<{tag}>{content}</{tag}>",
    "footnote": '<aside class="footnote" id="{anchor}"><span class="number">{number}</span> {content}</aside>',
    "footnote_ref": '<a class="footnote-ref" href="{href}"><sup>{number}</sup></a>',
    "xref": '<a class="xref" href="{href}">{content}</a>',
    "unresolved": '<span class="unresolved-ref" title="{title}">[{label}]</span>',
    "blockquote": "<blockquote>\n{content}\n</blockquote>",
    "rule": '<hr class="scene-break" />',
    "emphasis": "<em>{content}</em>",
    "strong": "<strong>{content}</strong>",
    "code_span": "<code>{content}</code>",
    "link": '<a href="{href}"{title}>{content}</a>',
    "line_break": "<br />",
}

HTML_CSS = """body { max-width: 40em; margin: 0 auto; padding: 1em; font-family: Georgia, serif; line-height: 1.5; }
.book-header { text-align: center; margin-bottom: 3em; }
h1, h2, h3 { font-weight: normal; }
.number { color: #555; }
figure { text-align: center; }
figure img { max-width: 100%; }
.footnote { font-size: 0.9em; border-top: 1px solid #ccc; padding-top: 0.25em; }
.unresolved-ref { color: #b00; }
hr.scene-break { border: none; text-align: center; }
hr.scene-break::after { content: "* * *"; }
.chapter-nav { display: flex; justify-content: space-between; margin: 1em 0; }
"""


# ── EPUB (XHTML) ───────────────────────────────────────────────────────

EPUB = dict(HTML)
EPUB.update({
    "chapter_page": """<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops" xml:lang="{lang}" lang="{lang}">
<head>
<meta charset="utf-8" />
<title>{title}</title>
<link rel="stylesheet" type="text/css" href="../style.css" />
</head>
<body>
<section class="chapter" epub:type="chapter">
{content}
</section>
</body>
</html>
""",
    "footnote": '<aside class="footnote" epub:type="footnote" id="{anchor}"><span class="number">{number}</span> {content}</aside>',
    "footnote_ref": '<a class="footnote-ref" epub:type="noteref" href="{href}"><sup>{number}</sup></a>',
})
for _key in ("page", "index", "chapter", "nav", "nav_link", "toc", "toc_list", "toc_entry"):
    del EPUB[_key]

EPUB_CSS = """body { font-family: serif; line-height: 1.4; }
h1, h2, h3 { font-weight: normal; page-break-after: avoid; }
h1 { page-break-before: always; }
figure { text-align: center; margin: 1em 0; }
figure img { max-width: 100%; }
.footnote { font-size: 0.85em; }
.unresolved-ref { color: #b00; }
hr.scene-break { border: none; margin: 1em 0; }
"""


# ── LaTeX ──────────────────────────────────────────────────────────────

LATEX = {
    "document": r"""\documentclass[11pt]{{{documentclass}}}
\usepackage{{fontspec}}
\usepackage{{polyglossia}}
\setdefaultlanguage{{{language}}}
\usepackage{{graphicx}}
\usepackage[hidelinks]{{hyperref}}
\hypersetup{{pdftitle={{{title}}}, pdfauthor={{{author}}}}}
\setcounter{{secnumdepth}}{{5}}
\setcounter{{tocdepth}}{{{tocdepth}}}
\providecommand{{\scenebreak}}{{\par\begin{{center}}*\quad*\quad*\end{{center}}\par}}

\title{{{title}}}
\author{{{author}}}
\date{{{date}}}

\begin{{document}}
\maketitle
\tableofcontents

{content}

\end{{document}}
""",
    "chapter": "{content}\n",
    "heading": r"\{command}{star}{{{content}}}\label{{{anchor}}}",
    "hidden_heading": r"\phantomsection\label{{{anchor}}}",
    "toc_line": r"\addcontentsline{{toc}}{{{command}}}{{{content}}}",
    "set_number": r"\setcounter{{{counter}}}{{{previous}}}",
    "paragraph": "{content}\n",
    "list": "\\begin{{{environment}}}{start}\n{content}\n\\end{{{environment}}}\n",
    # Empty group so an item starting with "[" is not read as an optional argument
    "list_item": r"\item{{}} {content}",
    "code": "\\begin{{verbatim}}\n{content}\n\\end{{verbatim}}\n",
    "image": "\\begin{{figure}}[htbp]\n\\centering\n\\includegraphics[width=\\linewidth,height=0.8\\textheight,keepaspectratio]{{{source}}}\n{caption}\\label{{{anchor}}}\n\\end{{figure}}\n",
    "caption": "\\caption{{{content}}}\n",
    "table": "\\begin{{center}}\n\\begin{{tabular}}{{{columns}}}\n\\hline\n{content}\n\\hline\n\\end{{tabular}}\n\\end{{center}}\n",
    "table_row": r"{content} \\",
    "table_header_rule": r"\hline",
    "blockquote": "\\begin{{quote}}\n{content}\n\\end{{quote}}\n",
    "rule": "\\scenebreak\n",
    "footnote": r"\footnote{{\label{{{anchor}}}{content}}}",
    "footnote_again": r"\textsuperscript{{\ref{{{anchor}}}}}",
    "xref": r"\hyperref[{anchor}]{{{content}}}",
    "unresolved": r"\textbf{{[{label}]}}",
    "emphasis": r"\emph{{{content}}}",
    "strong": r"\textbf{{{content}}}",
    "code_span": r"\texttt{{{content}}}",
    "link": r"\href{{{href}}}{{{content}}}",
    "line_break": "\\\\\n",
}


DEFAULTS = {
    "html": HTML,
    "epub": EPUB,
    "latex": LATEX,
}

STYLESHEETS = {
    "html": HTML_CSS,
    "epub": EPUB_CSS,
}


class TemplateSet:
    """
    Usage:
        templates = TemplateSet.load("html")
        templates.render("paragraph", content="Hello")

        templates = TemplateSet.load("html", "artifacts/html_templates.yaml")
    """

    def __init__(self, name, templates, defaults=None):
        self.name = name
        self._templates = dict(templates)
        self._allowed = {
            key: set(_placeholders(name, key, template))
            for key, template in (defaults if defaults is not None else templates).items()
        }
        self.check()

    @classmethod
    def load(cls, name, override_path=None):
        if name not in DEFAULTS:
            raise TemplateError(name, f"no default templates for format '{name}'")
        defaults = DEFAULTS[name]
        templates = dict(defaults)
        if override_path:
            templates.update(_read_overrides(name, override_path))
        return cls(name, templates, defaults)

    def check(self):
        """Reject unknown keys and placeholders up front."""
        for key, template in self._templates.items():
            if key not in self._allowed:
                raise TemplateError(f"{self.name}.{key}", "unknown template key")
            for field_name in _placeholders(self.name, key, template):
                if field_name not in self._allowed[key]:
                    raise TemplateError(f"{self.name}.{key}", f"unknown placeholder '{{{field_name}}}'")

    def __contains__(self, key):
        return key in self._templates

    def render(self, key, **fields):
        try:
            template = self._templates[key]
        except KeyError:
            raise TemplateError(f"{self.name}.{key}", "template not defined")
        return template.format_map(_Fields(f"{self.name}.{key}", fields))


class _Fields(dict):
    def __init__(self, where, fields):
        super().__init__(fields)
        self.where = where

    def __missing__(self, key):
        raise TemplateError(self.where, f"no value for placeholder '{{{key}}}'")


def _placeholders(name, key, template):
    """Named fields of a template; anything but plain names is an error."""
    if not isinstance(template, str):
        raise TemplateError(f"{name}.{key}", "template must be a string")
    try:
        parsed = list(string.Formatter().parse(template))
    except ValueError as e:
        raise TemplateError(f"{name}.{key}", f"malformed braces ({e})")
    fields = []
    for _literal, field_name, format_spec, conversion in parsed:
        if field_name is None:
            continue
        if not field_name.isidentifier():
            raise TemplateError(f"{name}.{key}", f"placeholder '{{{field_name}}}' must be a plain name")
        if format_spec or conversion:
            raise TemplateError(f"{name}.{key}", f"placeholder '{{{field_name}}}' must not carry a format")
        fields.append(field_name)
    return fields


def _read_overrides(name, path):
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise TemplateError(name, f"cannot read {path}: {e.strerror}")
    except yaml.YAMLError as e:
        raise TemplateError(name, f"{path} is not valid YAML: {e}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise TemplateError(name, f"{path} must map template keys to strings")
    return data


def stylesheet(name, override_path=None):
    """Default stylesheet for a format, or the contents of an override file."""
    if override_path:
        try:
            with open(override_path, encoding="utf-8") as f:
                return f.read()
        except OSError as e:
            raise TemplateError(name, f"cannot read stylesheet {override_path}: {e.strerror}")
    return STYLESHEETS.get(name, "")
