"""Tests for table extraction."""

import pytest

from texpreview.preview.blocks import BlockKind, BlockTable, find_tokens
from texpreview.preview.tables import PARSE_FAILED, TableExtractor, split_cells, split_rows


@pytest.fixture
def extractor(blocks, formatter, test_settings):
    """Table extractor over a fresh block table."""
    return TableExtractor(blocks, formatter, test_settings)


def only_fragment(blocks: BlockTable, reduced: str) -> str:
    tokens = find_tokens(reduced)
    assert len(tokens) == 1
    fragment = blocks.get(tokens[0])
    assert fragment is not None
    return fragment


class TestSplitting:
    """Tests for row and cell splitting."""

    def test_rows_at_depth_zero(self) -> None:
        """Test that row breaks inside braces are ignored."""
        assert split_rows(r"a & \textbf{x \\ y} \\ c & d") == [r"a & \textbf{x \\ y} ", " c & d"]

    def test_row_spacing_argument_dropped(self) -> None:
        """Test that a spacing argument after a row break is skipped."""
        assert split_rows(r"a & b \\[2pt] c & d") == ["a & b ", " c & d"]

    def test_double_escaped_command_normalized(self) -> None:
        """Test that a doubled backslash before a symbol is a single escape."""
        assert split_rows(r"R\\&D & 10\\%") == [r"R\&D & 10\%"]

    def test_row_break_before_digit_or_command(self) -> None:
        """Test that a row break directly followed by a cell is still a break."""
        assert split_rows(r"1 & 2\\3 & 4") == ["1 & 2", "3 & 4"]
        assert split_rows(r"a & b\\\textbf{c} & d") == ["a & b", r"\textbf{c} & d"]

    def test_cells_respect_braces_and_escapes(self) -> None:
        """Test that escaped and braced ampersands do not split cells."""
        assert split_cells(r"A\&B & {x & y} & c") == [r"A\&B", "{x & y}", "c"]


class TestTableExtractor:
    """Tests for TableExtractor."""

    def test_double_escape_scenario(self, extractor, blocks) -> None:
        """Test a generated table with double-escaped specials."""
        markup = "\\begin{tabular}{|l|r|}\n\\hline\nR\\\\&D & 10\\\\% \\\\\n\\hline\n\\end{tabular}"
        reduced = extractor.extract(markup)
        fragment = only_fragment(blocks, reduced)
        assert fragment == (
            '<div class="table-wrapper"><table><tbody>'
            "<tr><td>R&amp;D</td><td>10%</td></tr>"
            "</tbody></table></div>"
        )

    def test_float_with_caption(self, extractor, blocks) -> None:
        """Test float tables keep their caption."""
        markup = (
            "\\begin{table}[h]\n\\centering\n\\caption{Results \\textbf{bold}}\n"
            "\\begin{tabular}{ll}\na & b \\\\\n\\end{tabular}\n\\end{table}"
        )
        fragment = only_fragment(blocks, extractor.extract(markup))
        assert fragment.startswith(
            '<div class="table-wrapper"><div class="table-caption">Results <strong>bold</strong></div>'
        )
        assert "<tr><td>a</td><td>b</td></tr>" in fragment

    def test_multicolumn(self, extractor, blocks) -> None:
        """Test multicolumn cells get a colspan."""
        markup = "\\begin{tabular}{cc}\\multicolumn{2}{c}{Total} \\\\ 1 & 2\\end{tabular}"
        fragment = only_fragment(blocks, extractor.extract(markup))
        assert '<td colspan="2">Total</td>' in fragment
        assert "<tr><td>1</td><td>2</td></tr>" in fragment

    def test_tabularx_width_skipped(self, extractor, blocks) -> None:
        """Test the tabularx width argument is not read as a cell."""
        markup = "\\begin{tabularx}{\\textwidth}{XX}a & b\\end{tabularx}"
        fragment = only_fragment(blocks, extractor.extract(markup))
        assert "<tr><td>a</td><td>b</td></tr>" in fragment
        assert "textwidth" not in fragment

    def test_unterminated_table_fails_visibly(self, extractor, blocks) -> None:
        """Test an unclosed tabular becomes a parse-failed fragment."""
        reduced = extractor.extract("\\begin{tabular}{ll} a & b")
        assert only_fragment(blocks, reduced) == PARSE_FAILED
        assert "\\begin{tabular}" not in reduced

    def test_embedded_tokens_absorbed(self, extractor, blocks) -> None:
        """Test math tokens in cells are folded into the table fragment."""
        math = blocks.register(BlockKind.MATH, '<span class="math-inline">x</span>')
        markup = f"\\begin{{tabular}}{{ll}}{math} & b\\end{{tabular}}"
        reduced = extractor.extract(markup)
        fragment = only_fragment(blocks, reduced)
        assert '<td><span class="math-inline">x</span></td>' in fragment
        assert blocks.tokens() == find_tokens(reduced)

    def test_block_token_spacing(self, extractor) -> None:
        """Test the table token stands alone in its own paragraph."""
        reduced = extractor.extract("before\\begin{tabular}{l}a\\end{tabular}after")
        assert reduced.startswith("before\n\nLATEXPREVIEWTABLE")
        assert reduced.endswith("\n\nafter")
        assert extractor.extracted == 1
