"""
LaTeX and PDF builders.

Pipeline:
    1. LatexRenderer turns the book into a .tex source (tex.template overrides)
    2. tex: the source is the output
    3. pdf: LatexCompiler runs the TeX engine (two passes for TOC/refs),
       then intermediate files are removed unless --keep-tex
"""

import os
import shutil
import subprocess

from bookweave.builders.base import BaseBuilder
from bookweave.errors import CompileError, IOTimeout
from bookweave.renderers.latex import LatexRenderer

INTERMEDIATE_EXTENSIONS = [".aux", ".log", ".toc", ".out"]


class LatexCompiler:
    """
    Narrow interface to the external TeX engine.

    Usage:
        pdf_path = LatexCompiler("xelatex", passes=2, timeout=120).compile("build/book.tex")

    Raises CompileError (with the engine's log) on failure, IOTimeout when a
    pass runs longer than `timeout` seconds.
    """

    def __init__(self, engine="xelatex", passes=2, timeout=None):
        self.engine = engine
        self.passes = max(1, passes)
        self.timeout = timeout

    def available(self):
        return shutil.which(self.engine) is not None

    def compile(self, source_path):
        workdir = os.path.dirname(os.path.abspath(source_path))
        jobname = os.path.splitext(os.path.basename(source_path))[0]
        cmd = [
            self.engine,
            "-interaction=nonstopmode",
            "-halt-on-error",
            f"-output-directory={workdir}",
            os.path.basename(source_path),
        ]

        for pass_num in range(1, self.passes + 1):
            try:
                result = subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                    cwd=workdir,
                )
            except FileNotFoundError:
                raise CompileError(f"{self.engine} not found")
            except subprocess.TimeoutExpired:
                raise IOTimeout(f"{self.engine} pass {pass_num}", self.timeout)
            if result.returncode != 0:
                log = _read_log(workdir, jobname) or result.stdout
                raise CompileError(f"{self.engine} pass {pass_num} failed (exit {result.returncode})", log)

        pdf = os.path.join(workdir, f"{jobname}.pdf")
        if not os.path.exists(pdf):
            raise CompileError(f"{self.engine} produced no PDF", _read_log(workdir, jobname))
        return pdf


def _read_log(workdir, jobname):
    log_file = os.path.join(workdir, f"{jobname}.log")
    if not os.path.exists(log_file):
        return ""
    with open(log_file, "r", errors="replace") as f:
        return f.read()


def tex_errors(log_content):
    """Useful lines from a TeX log: error lines, or the tail if there are none."""
    errors = [
        line
        for line in log_content.splitlines()
        if line.startswith("!") or "Error" in line
    ]
    return errors[:10] if errors else log_content.splitlines()[-20:]


class LatexBuilder(BaseBuilder):
    format_name = "LaTeX"
    extension = ".tex"

    def make_renderer(self):
        return LatexRenderer(
            self.book,
            templates=self.load_templates("tex", "latex"),
            output_dir=self.output_dir,
        )

    def write_source(self, result):
        written = self.write_files(result.files, self.output_dir)
        if result.errors:
            print(f"  Warning: {result.errors} block(s) could not be rendered")
        return written[0]

    def package(self, result):
        self.header()
        source = self.write_source(result)
        print(f"  ✓ {source}")
        return [source]


class PdfBuilder(LatexBuilder):
    format_name = "PDF"
    extension = ".pdf"

    def __init__(self, *args, compiler=None, **kwargs):
        super().__init__(*args, **kwargs)
        tex = self.book.option
        self.keep_tex = kwargs.get("keep_tex") or tex("tex", "keep_tex", False)
        self.compiler = compiler or LatexCompiler(
            engine=tex("tex", "engine", "xelatex"),
            passes=tex("tex", "passes", 2),
            timeout=self.timeout,
        )

    def package(self, result):
        self.header()
        engine = getattr(self.compiler, "engine", "TeX engine")

        # ── Check for the engine ──────────────────────────
        if hasattr(self.compiler, "available") and not self.compiler.available():
            print(f"  ✗ {engine} not found on PATH")
            print("  Install TeX Live or MacTeX:")
            print("    macOS:  brew install --cask mactex")
            print("    Ubuntu: sudo apt install texlive-xetex texlive-fonts-extra")
            raise CompileError(f"{engine} not found")

        # ── Step 1: LaTeX source ──────────────────────────
        source = self.write_source(result)
        self.log(f"  ✓ Generated {source}")

        # ── Step 2: compile ───────────────────────────────
        self.log(f"  {engine}: compiling...")
        try:
            pdf = self.compiler.compile(source)
        except CompileError as e:
            print(f"  ✗ {e}")
            if e.log:
                print("  From the TeX log:")
                for line in tex_errors(e.log):
                    print(f"    {line}")
            raise

        print(f"  ✓ {pdf}")
        self._cleanup(source)
        outputs = [pdf]
        if self.keep_tex:
            outputs.append(source)
        return outputs

    def _cleanup(self, source):
        """Remove intermediate files unless --keep-tex."""
        stem = os.path.splitext(source)[0]
        if self.keep_tex:
            self.log(f"  Kept intermediate: {source}")
            self.log(f"  Kept log: {stem}.log")
            return

        for ext in INTERMEDIATE_EXTENSIONS:
            path = f"{stem}{ext}"
            if os.path.exists(path):
                os.remove(path)
        if os.path.exists(source):
            os.remove(source)
        self.log("  Cleaned up intermediate files")
