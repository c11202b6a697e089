"""Tests for the inline formatting normalizer."""

from texpreview.preview.formatting import InlineFormatter


class TestInlineFormatter:
    """Tests for InlineFormatter.format."""

    def test_html_is_escaped(self, formatter: InlineFormatter) -> None:
        """Test that raw HTML in the source is neutralized."""
        assert formatter.format("<script>alert(1)</script>") == "&lt;script&gt;alert(1)&lt;/script&gt;"

    def test_escaped_specials(self, formatter: InlineFormatter) -> None:
        """Test that escaped specials become literal characters."""
        assert formatter.format(r"50\% \& more \_x") == "50% &amp; more _x"

    def test_nested_formatting(self, formatter: InlineFormatter) -> None:
        """Test that nested macros are rendered at any depth."""
        out = formatter.format(r"\textbf{bold \emph{both \texttt{code}}}")
        assert out == "<strong>bold <em>both <code>code</code></em></strong>"

    def test_typography(self, formatter: InlineFormatter) -> None:
        """Test dashes and quotes."""
        assert formatter.format("a -- b --- ``c''") == "a &ndash; b &mdash; &ldquo;c&rdquo;"

    def test_references(self, formatter: InlineFormatter) -> None:
        """Test reference rewriting."""
        assert formatter.format(r"see \ref{fig:1} and \eqref{eq:2}") == "see [fig:1] and (eq:2)"

    def test_safe_link(self, formatter: InlineFormatter) -> None:
        """Test that http links become anchors."""
        out = formatter.format(r"\href{https://example.com}{site}")
        assert out == '<a href="https://example.com" target="_blank" rel="noopener noreferrer">site</a>'

    def test_unsafe_link_keeps_label_only(self, formatter: InlineFormatter) -> None:
        """Test that non-http schemes are not linked."""
        assert formatter.format(r"\href{javascript:alert(1)}{click}") == "click"

    def test_url_is_code(self, formatter: InlineFormatter) -> None:
        """Test that url arguments are shown verbatim."""
        assert formatter.format(r"\url{a_b}") == "<code>a_b</code>"

    def test_symbols(self, formatter: InlineFormatter) -> None:
        """Test symbol replacement."""
        assert formatter.format(r"3\times 4 \checkmark") == "3&times; 4 &#10003;"
        assert formatter.format(r"a\\b") == "a<br>b"

    def test_inline_math_is_protected(self, formatter: InlineFormatter) -> None:
        """Test that inline math is rendered and untouched by later steps."""
        out = formatter.format(r"value $a--b$ -- done")
        assert out.startswith('value <span class="math-inline">')
        assert out.endswith(" &ndash; done")

    def test_tokens_pass_through(self, formatter: InlineFormatter) -> None:
        """Test that placeholder tokens are left intact."""
        assert formatter.format("x LATEXPREVIEWMATH000001 y") == "x LATEXPREVIEWMATH000001 y"


class TestParagraphs:
    """Tests for InlineFormatter.paragraphs."""

    def test_blank_lines_split_paragraphs(self, formatter: InlineFormatter) -> None:
        """Test that each blank-line chunk becomes a paragraph."""
        assert formatter.paragraphs("one\n\ntwo") == "<p>one</p><p>two</p>"

    def test_token_chunk_is_bare(self, formatter: InlineFormatter) -> None:
        """Test that a chunk holding only a token is not wrapped."""
        out = formatter.paragraphs("intro\n\nLATEXPREVIEWLIST000003\n\noutro")
        assert out == "<p>intro</p>LATEXPREVIEWLIST000003<p>outro</p>"
