"""Tests for the extraction engine."""

import pytest

from texpreview.preview.blocks import find_tokens
from texpreview.preview.extraction import ExtractionEngine, strip_commands

DOCUMENT = r"""\section{Intro}
We cite \cite{smith} and \cite{smith,nobody}.
\[ E = mc^2 \]
\begin{tabular}{cc}
$x$ & b \\
c & d \\
\end{tabular}
\begin{itemize}
\item First $y$
\end{itemize}
See \ref{tab:1}.\footnote{A note.}
\begin{thebibliography}{9}
\bibitem{smith} J. Smith, $\alpha$-paper.
\end{thebibliography}
"""


@pytest.fixture
def result(test_settings):
    return ExtractionEngine(test_settings).extract(DOCUMENT)


class TestExtractionEngine:
    """Tests for ExtractionEngine.extract."""

    def test_every_live_token_appears_once(self, result) -> None:
        """Test the block table matches the tokens left in the markup."""
        tokens = find_tokens(result.reduced)
        assert len(tokens) == len(set(tokens))
        assert sorted(tokens) == sorted(result.blocks.tokens())

    def test_nested_fragments_absorbed(self, result) -> None:
        """Test math inside tables, lists and the bibliography is folded into them."""
        assert result.blocks.kind_counts() == {"MATH": 1, "TABLE": 1, "LIST": 1}
        assert result.blocks.issued == 6

    def test_stats_per_construct(self, result) -> None:
        """Test each extractor reports what it replaced."""
        assert result.stats["math"] == 4
        assert result.stats["table"] == 1
        assert result.stats["list"] == 1
        assert result.stats["citation"] == 1
        assert result.stats["diagram"] == 0

    def test_citations_rewritten(self, result) -> None:
        """Test citations are numbered and unknown keys marked."""
        assert "We cite [1] and [1, ?]." in result.reduced
        assert "thebibliography" not in result.reduced
        assert "1 citation(s) could not be resolved" in result.warnings

    def test_bibliography_fragment(self, result) -> None:
        """Test the bibliography is rendered with its math inlined."""
        assert result.bibliography_html is not None
        assert '<span class="bib-label">[1]</span> J. Smith' in result.bibliography_html
        assert "LATEXPREVIEW" not in result.bibliography_html

    def test_commands_stripped(self, result) -> None:
        """Test references and footnotes are rewritten in the reduced markup."""
        assert "See [tab:1]. (A note.)" in result.reduced

    def test_block_tokens_in_own_paragraph(self, result) -> None:
        """Test block tokens are separated by blank lines."""
        table_token = next(t for t in result.blocks.tokens() if "TABLE" in t)
        assert f"\n\n{table_token}\n\n" in result.reduced

    def test_to_dict_omits_markup(self, result) -> None:
        """Test the summary carries counts rather than content."""
        data = result.to_dict()
        assert "reduced" not in data
        assert data["blocks"] == 3
        assert data["has_bibliography"] is True

    def test_unsafe_commands_warned(self, test_settings) -> None:
        """Test healer warnings are passed through."""
        result = ExtractionEngine(test_settings).extract(r"Text \input{other}")
        assert "\\input" not in result.reduced
        assert "Removed file input command" in result.warnings

    def test_math_right_after_row_break(self, test_settings) -> None:
        """Test inline math directly after a row break starts the next row."""
        result = ExtractionEngine(test_settings).extract(r"\begin{tabular}{cc}a & b\\$x$ & y\end{tabular}")
        (token,) = find_tokens(result.reduced)
        fragment = result.blocks.get(token)
        assert fragment.count("<tr>") == 2
        assert "<tr><td>a</td><td>b</td></tr>" in fragment
        assert 'class="math-inline"' in fragment
        assert "$" not in fragment

    def test_escaped_dollar_is_not_math(self, test_settings) -> None:
        """Test a backslash-escaped dollar does not open inline math."""
        result = ExtractionEngine(test_settings).extract(r"Costs \$5 and \$6.")
        assert find_tokens(result.reduced) == []

    def test_verbatim_keeps_backslash_n(self, test_settings) -> None:
        """Test code blocks reach the code extractor before any repair."""
        result = ExtractionEngine(test_settings).extract('\\begin{verbatim}printf("hi\\n");\\end{verbatim}')
        (token,) = find_tokens(result.reduced)
        assert "printf(&quot;hi\\n&quot;);" in result.blocks.get(token)

    def test_empty_document(self, test_settings) -> None:
        """Test an empty document extracts nothing."""
        result = ExtractionEngine(test_settings).extract("")
        assert result.reduced == ""
        assert len(result.blocks) == 0
        assert result.bibliography_html is None


class TestStripCommands:
    """Tests for strip_commands."""

    def test_references(self) -> None:
        """Test reference commands become bracketed keys."""
        assert strip_commands(r"\ref{a} \eqref{b} \autoref{c} \pageref{d}") == "[a] (b) [c] [d]"

    def test_labels_and_footnotes(self) -> None:
        """Test labels vanish and footnotes become parentheticals."""
        assert strip_commands(r"Claim\label{c}\footnote{Proved later.}") == "Claim (Proved later.)"

    def test_layout_commands_dropped(self) -> None:
        """Test page breaks and spacing are removed."""
        assert strip_commands(r"a\newpage\vspace{2em}\noindent b") == "a b"
