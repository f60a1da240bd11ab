#!/usr/bin/env python3
"""
bookweave command line.

One Markdown manuscript in, HTML / EPUB 3 / LaTeX / PDF out.

Usage:
    python build.py trench                     html + epub + tex
    python build.py trench --html-dir --epub   per-chapter site and an EPUB
    python build.py trench --pdf --keep-tex    typeset, leave the .tex behind
    python build.py manuscript/trench --strict stop on the first bad chapter
    python build.py validate trench            epubcheck an already built EPUB
    python build.py notes.md --html            one-file book, header as book.yaml

Needs PyYAML, Markdown and beautifulsoup4. xelatex is needed for --pdf,
and epubcheck (or java plus epubcheck.jar) for validation.
"""

import argparse
import logging
import os
import sys
import traceback

# bookweave lives next to this script
sys.path.insert(0, os.path.dirname(os.path.realpath(__file__)))

from bookweave.builders import BUILDERS, DEFAULT_FORMATS
from bookweave.config import MARKDOWN_SUFFIXES, BookConfig
from bookweave.epubcheck import validate_epub
from bookweave.errors import BookError, ConfigError
from bookweave.pipeline import BookPipeline
from bookweave.resolve import find_book_dir


# ── Resolve book ───────────────────────────────────────────────────────


def resolve_book(identifier):
    """Locate and load a book, or exit 1 with a hint."""
    project_root = os.getcwd()
    if os.path.isfile(identifier) and identifier.lower().endswith(MARKDOWN_SUFFIXES):
        # One-file book: the YAML header is its book.yaml
        book_dir = identifier
    else:
        book_dir = find_book_dir(identifier, project_root)

    if not book_dir:
        print(f"Error: Could not find book '{identifier}'")
        print(f"  Looked under {os.path.join(project_root, 'manuscript')} and {project_root}")
        print("  Pass the directory holding book.yaml, or run from the project root.")
        sys.exit(1)

    try:
        config = BookConfig.load(book_dir)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    return book_dir, config


def selected_formats(args):
    """Formats named on the command line, in BUILDERS order."""
    if args.all:
        return list(DEFAULT_FORMATS)
    formats = [fmt for fmt in BUILDERS if getattr(args, fmt.replace("-", "_"), False)]
    # Nothing chosen means the default set
    return formats or list(DEFAULT_FORMATS)


# ── Build command ──────────────────────────────────────────────────────


def cmd_build(args):
    """Render the selected formats and print the warning summary."""
    book_dir, config = resolve_book(args.book)
    formats = selected_formats(args)

    if args.strict:
        config.set("strict", True)

    config.summary()
    print(f"  Formats: {', '.join(formats)}")

    # Output directory
    project_root = os.getcwd()
    output_dir = args.output_dir or os.path.join(project_root, "output")
    os.makedirs(output_dir, exist_ok=True)
    print(f"  Output: {output_dir}")

    pipeline = BookPipeline(
        config,
        timeout=args.timeout,
        workers=args.workers,
        verbose=args.verbose,
        no_validate=args.no_validate,
        json_report=args.json_report,
        keep_tex=args.keep_tex,
    )

    try:
        result = pipeline.build(formats, output_dir)
    except BookError as e:
        print(f"\n{'─' * 60}")
        print(f"  ✗ Build failed: {e}")
        sys.exit(1)

    # Summary
    print(f"\n{'─' * 60}")
    if result.warnings:
        print(f"  {len(result.warnings)} warning(s):")
        for warning in result.warnings:
            print(f"    ⚠ {warning}")
    print(f"  Done. {len(formats)} format(s) built, {len(result.outputs)} output(s).")


# ── Validate command ───────────────────────────────────────────────────


def cmd_validate(args):
    """epubcheck the EPUB a previous build left in the output directory."""
    book_dir, config = resolve_book(args.book)

    project_root = os.getcwd()
    output_dir = args.output_dir or os.path.join(project_root, "output")
    epub_file = os.path.join(output_dir, f"{config.prefix}.epub")

    if not os.path.exists(epub_file):
        print(f"  ✗ No EPUB at {epub_file}; run a build with --epub first")
        sys.exit(1)

    print(f"\n{'─' * 60}")
    print(f"  Validating: {epub_file}")
    print(f"{'─' * 60}")

    try:
        report = validate_epub(
            epub_file,
            verbose=True,
            json_report=args.json_report,
            timeout=config.get("timeout"),
        )
    except BookError as e:
        print(f"  ✗ {e}")
        sys.exit(1)

    if report is None:
        print("  ✗ epubcheck not available")
        sys.exit(1)
    sys.exit(0 if report.valid else 1)


# ── Argument Parser ────────────────────────────────────────────────────


def build_parser():
    parser = argparse.ArgumentParser(
        description="Build a Markdown book as HTML, EPUB, LaTeX and PDF",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
examples:
  %(prog)s trench                    html, epub and tex
  %(prog)s trench --html --strict    single page, fail on parse errors
  %(prog)s trench --pdf --timeout 300
  %(prog)s 1 --html-dir --workers 8  book 1, one page per chapter
  %(prog)s validate trench --json-report
        """,
    )

    sub = parser.add_subparsers(dest="command")

    # ── build (implied when the subcommand is omitted) ─────
    build_p = sub.add_parser("build", help="Render the book (default command)")
    _add_book_arg(build_p)
    _add_build_args(build_p)

    # ── validate ───────────────────────────────────────────
    val_p = sub.add_parser("validate", help="epubcheck a previously built EPUB")
    _add_book_arg(val_p)
    val_p.add_argument("--output-dir", help="Where the EPUB was written (default: ./output)")
    val_p.add_argument("--json-report", nargs="?", const=True, default=None, metavar="PATH")
    val_p.add_argument("--verbose", "-v", action="store_true")

    return parser


def _add_book_arg(parser):
    parser.add_argument("book", help="Book directory, number prefix, or title keyword")


def _add_build_args(parser):
    """Format switches plus the knobs that tune one build."""
    fmt = parser.add_argument_group("formats")
    fmt.add_argument("--html", action="store_true", help="Build a single-page HTML book")
    fmt.add_argument("--html-dir", action="store_true", help="Build HTML, one page per chapter")
    fmt.add_argument("--epub", action="store_true", help="Build an EPUB 3 package")
    fmt.add_argument("--tex", action="store_true", help="Build LaTeX source")
    fmt.add_argument("--pdf", action="store_true", help="Typeset a PDF with xelatex")
    fmt.add_argument("--all", action="store_true", help="Build html + epub + tex")

    opts = parser.add_argument_group("build options")
    opts.add_argument("--output-dir", help="Output directory (default: ./output)")
    opts.add_argument("--verbose", "-v", action="store_true", help="Log each step")
    opts.add_argument(
        "--strict", action="store_true", help="Fail on the first chapter that cannot be parsed"
    )
    opts.add_argument("--timeout", type=float, help="Seconds allowed per read, render or tool run")
    opts.add_argument("--workers", type=int, help="Chapters parsed in parallel")
    opts.add_argument(
        "--no-validate", action="store_true", help="Do not run epubcheck on the EPUB"
    )
    opts.add_argument(
        "--json-report",
        nargs="?",
        const=True,
        default=None,
        metavar="PATH",
        help="Have epubcheck write a JSON report",
    )
    opts.add_argument(
        "--keep-tex",
        action="store_true",
        help="Leave the .tex next to the PDF",
    )


# ── Main ───────────────────────────────────────────────────────────────


def main():
    parser = build_parser()

    # "build.py trench --epub" means "build.py build trench --epub"
    commands = {"build", "validate"}
    if (
        len(sys.argv) > 1
        and sys.argv[1] not in commands
        and not sys.argv[1].startswith("-")
    ):
        args = parser.parse_args(["build"] + sys.argv[1:])
    else:
        args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING,
        format="  %(levelname)s %(name)s: %(message)s",
    )

    dispatch = {
        "build": cmd_build,
        "validate": cmd_validate,
    }

    handler = dispatch.get(args.command)
    if handler:
        handler(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nCancelled.")
        sys.exit(1)
    except Exception as e:
        log_path = os.path.abspath("build_error.log")
        with open(log_path, "w", encoding="utf-8") as f:
            traceback.print_exc(file=f)
        print(f"\nUnexpected error: {e}")
        print(f"Traceback saved to {log_path}")
        sys.exit(1)
