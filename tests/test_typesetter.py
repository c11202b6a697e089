"""Tests for the default document renderer."""

import pytest

from texpreview.preview.typesetter import LatexTreeRenderer


@pytest.fixture
def render():
    renderer = LatexTreeRenderer()
    return lambda markup: str(renderer.render(markup))


class TestLatexTreeRenderer:
    """Tests for LatexTreeRenderer.render."""

    def test_root(self, render) -> None:
        """Test output is wrapped in the preview root."""
        assert render("Hello") == '<div class="latex-preview"><p>Hello</p></div>'

    def test_paragraphs(self, render) -> None:
        """Test blank lines separate paragraphs."""
        assert render("a\n\nb") == '<div class="latex-preview"><p>a</p><p>b</p></div>'

    def test_section_numbering(self, render) -> None:
        """Test sections are numbered and starred sections are not."""
        html = render(r"\section{A}\subsection{B}\section*{C}\section{D}")
        assert '<h2><span class="section-number">1</span> A</h2>' in html
        assert '<h3><span class="section-number">1.1</span> B</h3>' in html
        assert "<h2>C</h2>" in html
        assert '<h2><span class="section-number">2</span> D</h2>' in html

    def test_inline_formatting(self, render) -> None:
        """Test font commands map to inline tags."""
        html = render(r"\textbf{bold} and \emph{em}")
        assert "<p><strong>bold</strong> and <em>em</em></p>" in html

    def test_escaped_specials(self, render) -> None:
        """Test escaped characters are shown literally."""
        assert "<p>Fish &amp; chips</p>" in render(r"Fish \& chips")

    def test_figure_caption(self, render) -> None:
        """Test figure captions are numbered."""
        html = render(r"\begin{figure}\caption{Plot}\end{figure}")
        assert (
            '<figure class="latex-figure"><figcaption class="latex-caption">'
            "<strong>Figure 1:</strong> Plot</figcaption></figure>"
        ) in html

    def test_title_block(self, render) -> None:
        """Test the title block uses metadata from the preamble."""
        html = render(r"\title{Paper}\author{Ada}\begin{document}\maketitle Body\end{document}")
        assert '<h1 class="latex-title">Paper</h1>' in html
        assert '<div class="latex-author">Ada</div>' in html
        assert "<p>Body</p>" in html
