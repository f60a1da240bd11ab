"""Tests for the LaTeX renderer, the compiler interface and the PDF builder."""

import os
import subprocess

import pytest

from bookweave.builders.latex import LatexCompiler, PdfBuilder, tex_errors
from bookweave.config import BookConfig
from bookweave.document import DocumentModelBuilder
from bookweave.errors import CompileError, IOTimeout, RenderError, SkippedImage
from bookweave.renderers import LatexRenderer
from bookweave.renderers.latex import escape

from conftest import FakeCompiler, make_book


def render(book, **kwargs):
    result = LatexRenderer(book, **kwargs).render()
    (source,) = result.files.values()
    return source, result


def test_escape_table():
    assert escape(r"50% of $5 & #1_a {b} ~ ^ \ ") == (
        r"50\% of \$5 \& \#1\_a \{b\} \textasciitilde{} \textasciicircum{} \textbackslash{} "
    )


class TestRenderer:
    def test_document_shell(self, tmp_path):
        source, _ = render(make_book(tmp_path, ["# A\n\ntext"], lang="fr-CA", author="R & D"))
        assert source.startswith(r"\documentclass[11pt]{book}")
        assert r"\setdefaultlanguage{french}" in source
        assert r"\author{R \& D}" in source
        assert r"\setcounter{tocdepth}{1}" in source

    def test_headings_and_labels(self, tmp_path):
        source, _ = render(make_book(tmp_path, ["# A\n\n## Sub\n\ntext", "# B\n\nref to [A]"]))
        assert r"\chapter{A}\label{sec-1}" in source
        assert r"\section*{Sub}\label{sec-2}" in source
        assert r"\addcontentsline{toc}{section}{Sub}" in source
        assert r"\hyperref[sec-1]{A}" in source

    def test_unnumbered_chapter_starred(self, tmp_path):
        source, _ = render(make_book(tmp_path, [{"text": "# Preface\n", "numbered": False}, "# A\n"]))
        assert r"\chapter*{Preface}\label{sec-1}" in source
        assert r"\addcontentsline{toc}{chapter}{Preface}" in source
        assert r"\chapter{A}\label{sec-2}" in source

    def test_explicit_number_sets_counter(self, tmp_path):
        source, _ = render(make_book(tmp_path, [{"text": "# Ten\n", "number": 10}]))
        assert r"\setcounter{chapter}{9}" in source

    def test_article_class(self, tmp_path):
        source, _ = render(make_book(tmp_path, ["# A\n"], tex={"class": "article"}))
        assert r"\section{A}\label{sec-1}" in source

    def test_footnote_at_first_reference(self, tmp_path):
        source, _ = render(make_book(tmp_path, ["# A\n\nOne.[^n] Two.[^n]\n\n[^n]: The note.\n"]))
        assert r"One.\footnote{\label{fn-2}The note.} Two.\textsuperscript{\ref{fn-2}}" in source
        assert source.count("The note.") == 1

    def test_special_characters_in_text(self, tmp_path):
        source, _ = render(make_book(tmp_path, ["# A\n\nCosts $5 & 10% of #total_sum\n"]))
        assert r"Costs \$5 \& 10\% of \#total\_sum" in source

    def test_code_and_lists(self, tmp_path):
        source, _ = render(make_book(tmp_path, ["# A\n\n```\nx = {1}\n```\n\n3. c\n4. d\n"]))
        assert "\\begin{verbatim}\nx = {1}\n\\end{verbatim}" in source
        assert r"\setcounter{enumi}{2}" in source
        assert r"\item{} c" in source

    def test_item_starting_with_bracket(self, tmp_path):
        source, _ = render(make_book(tmp_path, ["# A\n\n- \\[sic\\] as written\n"]))
        assert r"\item{} [sic] as written" in source

    def test_email_autolink(self, tmp_path):
        source, _ = render(make_book(tmp_path, ["# A\n\nWrite to <jane@example.com>.\n"]))
        assert r"\href{mailto:jane@example.com}{jane@example.com}" in source

    def test_single_file_book_is_an_article(self, tmp_path):
        (tmp_path / "notes.md").write_text("---\ntitle: Notes\n---\n# Intro\n\nText.\n", encoding="utf-8")
        book = DocumentModelBuilder(BookConfig.load(str(tmp_path / "notes.md"))).assemble()
        source, _ = render(book)
        assert source.startswith(r"\documentclass[11pt]{article}")
        assert r"\chapter" not in source
        assert "Text." in source

    def test_unrepresentable_code_skipped(self, tmp_path):
        book = make_book(tmp_path, ["# A\n\n```\n\\end{verbatim}\n```\n\nafter\n"])
        source, result = render(book)
        assert result.errors == 1
        assert isinstance(result.warnings[0], RenderError)
        assert "after" in source

    def test_image_path_relative_to_output(self, tmp_path):
        (tmp_path / "images").mkdir()
        (tmp_path / "images" / "map.png").write_bytes(b"png")
        out = tmp_path / "build"
        source, _ = render(make_book(tmp_path, ["# A\n\n![Map](images/map.png)\n"]), output_dir=str(out))
        assert r"\includegraphics[width=\linewidth,height=0.8\textheight,keepaspectratio]{../images/map.png}" in source
        assert r"\caption{Map}" in source
        assert r"\label{fig-2}" in source

    def test_remote_image_skipped(self, tmp_path):
        _, result = render(make_book(tmp_path, ["# A\n\n![x](http://example.com/x.png)\n"]))
        assert result.warnings == (
            SkippedImage("http://example.com/x.png", "chapter 1", "remote images cannot be typeset"),
        )

    def test_raw_latex_passed_through(self, tmp_path):
        source, _ = render(make_book(tmp_path, ["# A\n\n```{=latex}\n\\newpage\n```\n\n```{=html}\n<hr>\n```\n"]))
        assert "\\newpage\n" in source
        assert "<hr>" not in source


class TestCompiler:
    def test_missing_engine(self, tmp_path):
        compiler = LatexCompiler(engine="definitely-not-a-tex-engine")
        assert not compiler.available()
        source = tmp_path / "book.tex"
        source.write_text("x", encoding="utf-8")
        with pytest.raises(CompileError, match="not found"):
            compiler.compile(str(source))

    def test_timeout(self, tmp_path, monkeypatch):
        def slow(*args, **kwargs):
            raise subprocess.TimeoutExpired(args[0], kwargs.get("timeout"))

        monkeypatch.setattr(subprocess, "run", slow)
        source = tmp_path / "book.tex"
        source.write_text("x", encoding="utf-8")
        with pytest.raises(IOTimeout):
            LatexCompiler(timeout=1).compile(str(source))

    def test_failure_carries_log(self, tmp_path, monkeypatch):
        def failing(cmd, **kwargs):
            (tmp_path / "book.log").write_text("! Undefined control sequence.\n", encoding="utf-8")
            return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="")

        monkeypatch.setattr(subprocess, "run", failing)
        source = tmp_path / "book.tex"
        source.write_text("x", encoding="utf-8")
        with pytest.raises(CompileError) as info:
            LatexCompiler().compile(str(source))
        assert "Undefined control sequence" in info.value.log

    def test_tex_errors(self):
        log = "This is XeTeX\n! Undefined control sequence.\nl.12 \\oops\n"
        assert tex_errors(log) == ["! Undefined control sequence."]


class TestPdfBuilder:
    def test_compiles_and_cleans_up(self, tmp_path, fake_compiler):
        book = make_book(tmp_path, ["# A\n\ntext"])
        out = tmp_path / "out"
        builder = PdfBuilder(book, str(out), compiler=fake_compiler)
        outputs = builder.package(builder.make_renderer().render())
        assert outputs == [str(out / "t.pdf")]
        assert os.path.exists(out / "t.pdf")
        assert not os.path.exists(out / "t.tex")

    def test_keep_tex(self, tmp_path, fake_compiler):
        book = make_book(tmp_path, ["# A\n\ntext"])
        out = tmp_path / "out"
        builder = PdfBuilder(book, str(out), compiler=fake_compiler, keep_tex=True)
        outputs = builder.package(builder.make_renderer().render())
        assert outputs == [str(out / "t.pdf"), str(out / "t.tex")]
        assert os.path.exists(out / "t.tex")

    def test_compile_error_propagates(self, tmp_path, capsys):
        book = make_book(tmp_path, ["# A\n\ntext"])
        builder = PdfBuilder(book, str(tmp_path / "out"), compiler=FakeCompiler(fail=True))
        with pytest.raises(CompileError):
            builder.package(builder.make_renderer().render())
        assert "Undefined control sequence" in capsys.readouterr().out
