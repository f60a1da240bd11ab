"""End-to-end builds through BookPipeline."""

import os
import threading
import time
import zipfile

import pytest

from bookweave.config import BookConfig
from bookweave.errors import (
    BuildCancelled, CompileError, ConfigError, InvalidBookMetadata, IOTimeout, ParseError,
    TemplateError, UnresolvedReference,
)
from bookweave.pipeline import BookPipeline
from bookweave.renderers import HtmlRenderer, RenderState

from conftest import FakeCompiler, make_config


@pytest.fixture
def pipeline(book_dir, fake_compiler):
    return BookPipeline(BookConfig.load(str(book_dir)), compiler=fake_compiler, no_validate=True)


def test_build_all_formats(pipeline, tmp_path):
    out = tmp_path / "out"
    result = pipeline.build(["html", "html-dir", "epub", "tex", "pdf"], str(out))
    assert result.outputs == [
        str(out / "the_trench_mage.html"),
        str(out / "the_trench_mage"),
        str(out / "the_trench_mage.epub"),
        str(out / "the_trench_mage.tex"),
        str(out / "the_trench_mage.pdf"),
        str(out / "the_trench_mage.tex"),
    ]
    # The PDF step keeps the .tex when it was asked for
    assert os.path.exists(out / "the_trench_mage.tex")
    assert os.path.exists(out / "the_trench_mage" / "index.html")
    assert os.path.exists(out / "images" / "map.png")
    assert result.warnings == ()
    with zipfile.ZipFile(out / "the_trench_mage.epub") as zf:
        assert zf.namelist()[0] == "mimetype"


def test_warnings_deduplicated_across_renderers(tmp_path):
    config = make_config(tmp_path, ["# A\n\n[ghost]", "# B\n\ntext"])
    pipeline = BookPipeline(config, no_validate=True)
    result = pipeline.build(["html", "epub", "tex"], str(tmp_path / "out"))
    assert UnresolvedReference("ghost", "chapter 1") in result.warnings
    assert len([w for w in result.warnings if isinstance(w, UnresolvedReference)]) == 1


def test_parse_error_surfaces_as_warning(tmp_path, fake_parser):
    config = make_config(tmp_path, ["# A\n\ntext", "# B\nBROKEN", "# C\n"])
    result = BookPipeline(config, parser=fake_parser).build(["html"], str(tmp_path / "out"))
    assert result.warnings == (ParseError("chapter 2", 2, "broken on purpose"),)
    with open(result.outputs[0], encoding="utf-8") as f:
        page = f.read()
    assert " A</h1>" in page and " C</h1>" in page


def test_invalid_metadata_stops_before_output(tmp_path, fake_parser):
    config = make_config(tmp_path, ["# A"], title="")
    out = tmp_path / "out"
    with pytest.raises(InvalidBookMetadata):
        BookPipeline(config, parser=fake_parser).build(["html"], str(out))
    assert not out.exists()


def test_unknown_format(tmp_path, fake_parser):
    config = make_config(tmp_path, ["# A"])
    with pytest.raises(ConfigError, match="docx"):
        BookPipeline(config, parser=fake_parser).build(["docx"], str(tmp_path / "out"))


def test_missing_template_file(tmp_path, fake_parser):
    config = make_config(tmp_path, ["# A"], html={"template": "nowhere.yaml"})
    with pytest.raises(TemplateError):
        BookPipeline(config, parser=fake_parser).build(["html"], str(tmp_path / "out"))


def test_template_override_from_artifacts(tmp_path, fake_parser):
    (tmp_path / "artifacts").mkdir()
    (tmp_path / "artifacts" / "html.yaml").write_text('paragraph: "<p class=\\"prose\\">{content}</p>"\n')
    config = make_config(tmp_path, ["# A\nHello"], html={"template": "html.yaml"})
    result = BookPipeline(config, parser=fake_parser).build(["html"], str(tmp_path / "out"))
    with open(result.outputs[0], encoding="utf-8") as f:
        assert '<p class="prose">Hello</p>' in f.read()


def test_pdf_failure_is_fatal(tmp_path, fake_parser):
    config = make_config(tmp_path, ["# A"])
    pipeline = BookPipeline(config, parser=fake_parser, compiler=FakeCompiler(fail=True))
    with pytest.raises(CompileError):
        pipeline.build(["pdf"], str(tmp_path / "out"))


def test_cancelled_build(tmp_path, fake_parser):
    cancel = threading.Event()
    cancel.set()
    config = make_config(tmp_path, ["# A"])
    with pytest.raises(BuildCancelled):
        BookPipeline(config, parser=fake_parser, cancel=cancel).build(["html"], str(tmp_path / "out"))


def test_render_by_name(tmp_path, fake_parser):
    config = make_config(tmp_path, ["# A"])
    pipeline = BookPipeline(config, parser=fake_parser)
    book = pipeline.load()
    results = pipeline.render(book, ["html", "epub", "latex"])
    assert [r.format for r in results] == ["html", "epub", "latex"]
    assert all(r.state is RenderState.DONE for r in results)


class SlowRenderer(HtmlRenderer):
    def render_book(self):
        time.sleep(1)
        return super().render_book()


def test_slow_renderer_times_out(tmp_path, fake_parser):
    pipeline = BookPipeline(make_config(tmp_path, ["# A"]), parser=fake_parser, timeout=0.2)
    book = pipeline.load()
    with pytest.raises(IOTimeout) as info:
        pipeline.render(book, [SlowRenderer(book)])
    assert info.value.what == "rendering html"
