"""Tests for placeholder tokens and the block table."""

import pytest

from texpreview.preview.blocks import (
    TOKEN_PATTERN,
    BlockKind,
    BlockTable,
    PlaceholderCounter,
    find_tokens,
    token_kind,
)


class TestPlaceholderCounter:
    """Tests for token generation."""

    def test_tokens_are_fixed_width(self) -> None:
        """Test that tokens carry a zero-padded six digit sequence."""
        counter = PlaceholderCounter()
        assert counter.next_token(BlockKind.MATH) == "LATEXPREVIEWMATH000001"
        assert counter.next_token(BlockKind.TABLE) == "LATEXPREVIEWTABLE000002"
        assert counter.issued == 2

    def test_token_followed_by_digits_is_unambiguous(self) -> None:
        """Test that trailing source digits are not read as part of a token."""
        text = "LATEXPREVIEWMATH0000012024"
        assert find_tokens(text) == ["LATEXPREVIEWMATH000001"]

    def test_token_kind(self) -> None:
        """Test decoding the kind from a token."""
        assert token_kind("LATEXPREVIEWTIKZ000007") is BlockKind.TIKZ
        with pytest.raises(ValueError):
            token_kind("not a token")

    def test_counters_are_per_instance(self) -> None:
        """Test that separate counters never share state."""
        first, second = PlaceholderCounter(), PlaceholderCounter()
        first.next_token(BlockKind.LIST)
        assert second.next_token(BlockKind.LIST).endswith("000001")


class TestBlockTable:
    """Tests for BlockTable."""

    def test_register_and_get(self, blocks: BlockTable) -> None:
        """Test storing and retrieving a fragment."""
        token = blocks.register(BlockKind.BLOCK, "<div>x</div>")
        assert TOKEN_PATTERN.fullmatch(token)
        assert blocks.get(token) == "<div>x</div>"
        assert token in blocks
        assert len(blocks) == 1

    def test_register_absorbs_embedded_tokens(self, blocks: BlockTable) -> None:
        """Test that inner tokens are resolved into the outer fragment."""
        inner = blocks.register(BlockKind.MATH, "<span>m</span>")
        outer = blocks.register(BlockKind.TABLE, f"<td>{inner}</td>")
        assert blocks.get(outer) == "<td><span>m</span></td>"
        assert inner not in blocks
        assert blocks.tokens() == [outer]
        assert blocks.issued == 2

    def test_absorb_leaves_unknown_tokens(self, blocks: BlockTable) -> None:
        """Test that tokens without entries are kept verbatim."""
        assert blocks.absorb("LATEXPREVIEWMATH999999") == "LATEXPREVIEWMATH999999"

    def test_prune_drops_missing_tokens(self, blocks: BlockTable) -> None:
        """Test pruning entries whose token left the markup."""
        kept = blocks.register(BlockKind.LIST, "<ul></ul>")
        gone = blocks.register(BlockKind.BOX, "<span></span>")
        dropped = blocks.prune(f"text {kept} more")
        assert dropped == [gone]
        assert blocks.tokens() == [kept]

    def test_kind_counts(self, blocks: BlockTable) -> None:
        """Test counting live fragments by kind."""
        blocks.register(BlockKind.MATH, "a")
        blocks.register(BlockKind.MATH, "b")
        blocks.register(BlockKind.LIST, "c")
        assert blocks.kind_counts() == {"MATH": 2, "LIST": 1}
