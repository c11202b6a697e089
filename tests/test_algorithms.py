"""Tests for algorithm extraction."""

import pytest

from texpreview.preview.algorithms import AlgorithmExtractor, keyword
from texpreview.preview.blocks import find_tokens

GREEDY = r"""
\begin{algorithm}[H]
\caption{Greedy search}
\label{alg:greedy}
\begin{algorithmic}[1]
\Require list L
\State s = 0
\For{each item i in L}
\If{i > 0}
\State s = s + i \Comment{accumulate}
\EndIf
\EndFor
\State \Return s
\end{algorithmic}
\end{algorithm}
"""


@pytest.fixture
def extractor(blocks, formatter, test_settings):
    """Algorithm extractor over a fresh block table."""
    return AlgorithmExtractor(blocks, formatter, test_settings)


def render(extractor, blocks, markup: str) -> str:
    reduced = extractor.extract(markup)
    tokens = find_tokens(reduced)
    assert len(tokens) == 1
    assert blocks.tokens() == tokens
    return blocks.get(tokens[0])


class TestAlgorithmExtractor:
    """Tests for AlgorithmExtractor."""

    def test_float_caption_and_body(self, extractor, blocks) -> None:
        """Test the float is numbered and absorbs the pseudocode."""
        fragment = render(extractor, blocks, GREEDY)
        assert fragment.startswith(
            '<div class="algorithm-wrapper"><div class="algorithm-caption">'
            "<strong>Algorithm 1:</strong> Greedy search</div>"
        )
        assert '<ol class="latex-algorithmic">' in fragment
        assert "alg:greedy" not in fragment
        assert "[H]" not in fragment

    def test_indentation_follows_blocks(self, extractor, blocks) -> None:
        """Test openers indent and closers dedent."""
        fragment = render(extractor, blocks, GREEDY)
        assert (
            f'<li style="padding-left: 0em;">{keyword("for")} each item i in L {keyword("do")}</li>'
            in fragment
        )
        assert (
            f'<li style="padding-left: 1.5em;">{keyword("if")} i &gt; 0 {keyword("then")}</li>'
            in fragment
        )
        assert f'<li style="padding-left: 1.5em;">{keyword("end if")}</li>' in fragment
        assert f'<li style="padding-left: 0em;">{keyword("end for")}</li>' in fragment

    def test_comment_and_return(self, extractor, blocks) -> None:
        """Test comments are set off and State before Return is dropped."""
        fragment = render(extractor, blocks, GREEDY)
        assert (
            '<li style="padding-left: 3em;">s = s + i '
            '<span class="latex-alg-comment">&#9655; accumulate</span></li>'
        ) in fragment
        assert f'<li style="padding-left: 0em;">{keyword("return")} s</li>' in fragment
        assert f"{keyword('Require:')} list L" in fragment

    def test_uppercase_dialect(self, extractor, blocks) -> None:
        """Test the algorithmic package command spelling."""
        markup = r"\begin{algorithmic}\WHILE{x \AND y}\STATE step\ENDWHILE\end{algorithmic}"
        fragment = render(extractor, blocks, markup)
        assert f"{keyword('while')} x <strong>and</strong> y {keyword('do')}" in fragment
        assert '<li style="padding-left: 1.5em;">step</li>' in fragment
        assert keyword("end while") in fragment

    def test_statex_is_unnumbered(self, extractor, blocks) -> None:
        """Test continuation lines carry no number."""
        markup = r"\begin{algorithmic}\State a\Statex continued\end{algorithmic}"
        fragment = render(extractor, blocks, markup)
        assert '<li style="padding-left: 0em; list-style: none;">continued</li>' in fragment

    def test_procedure_header(self, extractor, blocks) -> None:
        """Test procedures show their name in small caps."""
        markup = r"\begin{algorithmic}\Procedure{Sum}{L}\State \Return 0\EndProcedure\end{algorithmic}"
        fragment = render(extractor, blocks, markup)
        assert (
            f'{keyword("procedure")} <span style="font-variant: small-caps;">Sum</span>(L)'
            in fragment
        )
        assert keyword("end procedure") in fragment

    def test_floats_numbered_in_order(self, extractor, blocks) -> None:
        """Test successive algorithm floats count up."""
        one = r"\begin{algorithm}\caption{A}\end{algorithm}"
        two = r"\begin{algorithm}\caption{B}\end{algorithm}"
        reduced = extractor.extract(one + two)
        fragments = [blocks.get(t) for t in find_tokens(reduced)]
        assert "<strong>Algorithm 1:</strong> A" in fragments[0]
        assert "<strong>Algorithm 2:</strong> B" in fragments[1]

    def test_unterminated_left_in_place(self, extractor, blocks) -> None:
        """Test an unclosed algorithmic environment is not extracted."""
        markup = r"\begin{algorithmic}\State a"
        assert extractor.extract(markup) == markup
        assert len(blocks) == 0
