"""End-to-end tests for the preview pipeline."""

import pytest
from bs4 import BeautifulSoup

from texpreview.preview.layout import CharacterWidthMeasurer
from texpreview.preview.pipeline import PreviewPipeline, error_fragment, sanitize_and_render
from texpreview.preview.preamble import PreambleRewriter
from texpreview.preview.splice import tree_root
from texpreview.preview.typesetter import LatexTreeRenderer
from texpreview.utils.errors import PREVIEW_REASSURANCE, IntegrityError, RenderError, ValidationError
from texpreview.utils.metrics import get_metrics

PAPER = r"""\documentclass{article}
\usepackage{amsmath}
\title{Graph Search}
\author{Ada \and Bob}
\begin{document}
\maketitle
\section{Introduction}
We bound the cost $c(v)$ of every node \cite{knuth}.

\begin{tabular}{cc}
Method & Cost \\
Greedy & 3 \\
\end{tabular}

\begin{itemize}
\item Fast
\item Simple
\end{itemize}

\begin{thebibliography}{1}
\bibitem{knuth} D. Knuth. The Art of Computer Programming.
\end{thebibliography}
\end{document}
"""


class FailingRenderer:
    """Renderer that always raises."""

    def render(self, markup: str) -> BeautifulSoup:
        raise ValueError("parser exploded")


@pytest.fixture
def pipeline(test_settings) -> PreviewPipeline:
    return PreviewPipeline(test_settings)


class TestPreviewPipeline:
    """Tests for PreviewPipeline.render."""

    def test_paper_renders(self, pipeline: PreviewPipeline) -> None:
        """Test a complete paper produces a spliced preview tree."""
        rendered = pipeline.render(PAPER)
        html = rendered.html
        assert html.startswith('<div class="latex-preview">')
        assert '<h1 class="latex-title">Graph Search</h1>' in html
        assert "Introduction" in html
        assert 'class="table-wrapper"' in html
        assert "<math" in html
        assert "[1]" in html
        assert "usepackage" not in html

    def test_no_tokens_survive(self, pipeline: PreviewPipeline) -> None:
        """Test every placeholder is replaced in the final tree."""
        rendered = pipeline.render(PAPER)
        assert "LATEXPREVIEW" not in rendered.html
        assert len(rendered.extraction.blocks) >= 2

    def test_bibliography_section_last(self, pipeline: PreviewPipeline) -> None:
        """Test the bibliography is appended after the body."""
        rendered = pipeline.render(PAPER)
        assert rendered.has_bibliography is True
        root = rendered.tree.find("div")
        last = [child for child in root.children if getattr(child, "name", None)][-1]
        assert "bibliography-section" in str(last.get("class"))
        assert "D. Knuth" in last.get_text()

    def test_metadata(self, pipeline: PreviewPipeline) -> None:
        """Test front matter is reported."""
        rendered = pipeline.render(PAPER)
        assert rendered.metadata.title == "Graph Search"
        assert rendered.metadata.author == "Ada, Bob"

    def test_preamble_blocks_pruned(self, pipeline: PreviewPipeline) -> None:
        """Test fragments extracted from the preamble are dropped."""
        rendered = pipeline.render(r"\newcommand{\foo}{$y$}\begin{document}Hi $x$\end{document}")
        assert rendered.extraction.blocks.issued == 2
        assert len(rendered.extraction.blocks) == 1
        assert "LATEXPREVIEW" not in rendered.html

    def test_layout_pass_runs(self, test_settings) -> None:
        """Test overflowing tables are shrunk after splicing."""
        pipeline = PreviewPipeline(test_settings, measurer=CharacterWidthMeasurer(10, 1))
        rendered = pipeline.render(PAPER)
        assert rendered.layout.adjusted >= 1
        assert "transform: scale(" in rendered.html
        assert pipeline.surface.is_current(rendered.layout.ticket)

    def test_truncated_document_rejected(self, pipeline: PreviewPipeline) -> None:
        """Test unbalanced environments abort the render."""
        with pytest.raises(IntegrityError):
            pipeline.render(r"\begin{document}\begin{a}\begin{b}\begin{c} cut")

    def test_renderer_failure(self, test_settings) -> None:
        """Test renderer failures surface as render errors."""
        with pytest.raises(RenderError):
            PreviewPipeline(test_settings, renderer=FailingRenderer()).render("Hello")

    def test_unexpected_stage_failure_wrapped(self, pipeline: PreviewPipeline, monkeypatch) -> None:
        """Test unexpected exceptions from a stage become render errors."""

        def broken(raw: str) -> None:
            raise KeyError("missing")

        monkeypatch.setattr(pipeline._engine, "extract", broken)
        with pytest.raises(RenderError) as exc_info:
            pipeline.render("Hello")
        assert exc_info.value.message.startswith("Browser Render Error:")

    def test_document_size_limit(self, test_settings) -> None:
        """Test oversized documents are refused before any work."""
        settings = test_settings.model_copy(update={"max_document_chars": 10})
        with pytest.raises(ValidationError):
            PreviewPipeline(settings).render("x" * 11)

    def test_render_metrics(self, pipeline: PreviewPipeline) -> None:
        """Test renders are counted by outcome."""
        pipeline.render("Hello")
        with pytest.raises(IntegrityError):
            pipeline.render(r"\begin{a}\begin{b}\begin{c}")
        metrics = get_metrics()
        assert metrics.get_counter("preview_renders_total", {"status": "success"}) == 1
        assert metrics.get_counter("preview_renders_total", {"status": "error"}) == 1

    def test_stats(self, pipeline: PreviewPipeline) -> None:
        """Test render statistics combine every stage."""
        stats = pipeline.render(PAPER).stats()
        assert stats["has_bibliography"] is True
        assert stats["integrity"]["imbalance"] == 0
        assert stats["metadata"]["title"] == "Graph Search"
        assert "layout" in stats

    def test_plain_document_matches_direct_render(self, pipeline: PreviewPipeline) -> None:
        """Test a document with nothing to extract renders as the typesetter alone would."""
        document = (
            "\\begin{document}\n\\section{Intro}\nPlain \\textbf{bold} and \\emph{em} text.\n\n"
            "\\subsection{More}\nSecond paragraph.\n\\end{document}\n"
        )
        direct = LatexTreeRenderer().render(PreambleRewriter().rewrite(document)[0])
        rendered = pipeline.render(document)
        assert len(rendered.extraction.blocks) == 0
        assert rendered.html == str(tree_root(direct))

    def test_unterminated_picture_keeps_rest_of_document(self, pipeline: PreviewPipeline) -> None:
        """Test a picture missing its end marker does not swallow later content."""
        rendered = pipeline.render(
            "\\section{Before}\nIntro $x$.\n\n"
            "\\begin{tikzpicture}\\draw (0,0) -- (1,1);\n\n"
            "\\section{After}\nStill here."
        )
        html = rendered.html
        assert rendered.integrity.imbalance == 1
        assert "Before" in html
        assert "After" in html
        assert "Still here." in html
        assert 'class="tikz-wrapper"' not in html
        assert "LATEXPREVIEW" not in html


class TestSanitizeAndRender:
    """Tests for the never-raising entry point."""

    def test_success_outcome(self, pipeline: PreviewPipeline) -> None:
        """Test a good document yields html and no error."""
        outcome = sanitize_and_render(PAPER, pipeline)
        assert outcome.ok is True
        assert outcome.error is None
        assert outcome.html.startswith('<div class="latex-preview">')
        assert outcome.stats["blocks"] >= 2

    def test_integrity_error_outcome(self, pipeline: PreviewPipeline) -> None:
        """Test truncation produces an error panel with the reassurance hint."""
        outcome = sanitize_and_render(r"\begin{document}\begin{a}\begin{b}\begin{c} cut", pipeline)
        assert outcome.ok is False
        assert outcome.error["error"] == "CONTENT_INTEGRITY"
        assert outcome.error["message"].startswith("Content Integrity Error")
        assert outcome.error["details"]["hint"] == PREVIEW_REASSURANCE
        assert 'class="latex-preview-error"' in outcome.html
        assert "Your LaTeX source will still compile perfectly." in outcome.html

    def test_render_error_outcome(self, test_settings) -> None:
        """Test renderer failures are reported, not raised."""
        pipeline = PreviewPipeline(test_settings, renderer=FailingRenderer())
        outcome = sanitize_and_render("Hello", pipeline)
        assert outcome.error["error"] == "RENDER_ERROR"
        assert "parser exploded" in outcome.error["message"]

    def test_to_dict(self, pipeline: PreviewPipeline) -> None:
        """Test the outcome serializes every field."""
        data = sanitize_and_render("Hello", pipeline).to_dict()
        assert set(data) == {"html", "error", "warnings", "stats"}


class TestErrorFragment:
    """Tests for error_fragment."""

    def test_message_escaped(self) -> None:
        """Test error messages cannot inject markup."""
        fragment = error_fragment(RenderError("<script>x</script>"))
        assert "<script>" not in fragment
        assert "&lt;script&gt;" in fragment
