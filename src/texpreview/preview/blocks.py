"""Placeholder tokens and the per-document block table.

A token is ``LATEXPREVIEW<KIND><NNNNNN>``: letters and digits only, so it
survives HTML escaping, inline formatting and the typesetter untouched, and
the fixed-width sequence number means a token followed by more digits in the
source is never ambiguous.

When a fragment is registered, any tokens it embeds (math inside a table
cell, a nested list) are resolved into it and dropped from the table. Each
remaining entry therefore corresponds to exactly one token in the reduced
markup.
"""

import re
from collections import Counter
from collections.abc import Iterator
from enum import Enum

TOKEN_PREFIX = "LATEXPREVIEW"
TOKEN_PATTERN = re.compile(TOKEN_PREFIX + r"([A-Z]+)(\d{6})")


class BlockKind(str, Enum):
    """Kinds of extracted fragments."""

    BLOCK = "BLOCK"
    MATH = "MATH"
    TIKZ = "TIKZ"
    VERBATIM = "VERBATIM"
    TABLE = "TABLE"
    LIST = "LIST"
    ALGO = "ALGO"
    ENV = "ENV"
    BOX = "BOX"
    IMAGE = "IMAGE"


class PlaceholderCounter:
    """Monotonic token generator owned by a single sanitize call."""

    def __init__(self) -> None:
        self._value = 0

    def next_token(self, kind: BlockKind) -> str:
        """Return a fresh token for ``kind``."""
        self._value += 1
        return f"{TOKEN_PREFIX}{kind.value}{self._value:06d}"

    @property
    def issued(self) -> int:
        """Number of tokens issued so far."""
        return self._value


def find_tokens(text: str) -> list[str]:
    """All placeholder tokens in ``text``, in order of appearance."""
    return [m.group(0) for m in TOKEN_PATTERN.finditer(text)]


def token_kind(token: str) -> BlockKind:
    """Kind encoded in a token."""
    match = TOKEN_PATTERN.fullmatch(token)
    if match is None:
        raise ValueError(f"Not a placeholder token: {token!r}")
    return BlockKind(match.group(1))


class BlockTable:
    """Mapping of placeholder token to rendered HTML fragment."""

    def __init__(self) -> None:
        self._counter = PlaceholderCounter()
        self._fragments: dict[str, str] = {}

    def register(self, kind: BlockKind, html: str) -> str:
        """Store a fragment and return the token that stands for it.

        Tokens already embedded in ``html`` are absorbed first.
        """
        token = self._counter.next_token(kind)
        self._fragments[token] = self.absorb(html)
        return token

    def absorb(self, text: str) -> str:
        """Inline the fragments of any tokens in ``text`` and forget them."""

        def _inline(match: re.Match[str]) -> str:
            token = match.group(0)
            fragment = self._fragments.pop(token, None)
            return token if fragment is None else fragment

        return TOKEN_PATTERN.sub(_inline, text)

    def prune(self, text: str) -> list[str]:
        """Drop entries whose token no longer occurs in ``text``.

        Returns:
            The dropped tokens
        """
        present = set(find_tokens(text))
        dropped = [t for t in self._fragments if t not in present]
        for token in dropped:
            del self._fragments[token]
        return dropped

    def get(self, token: str) -> str | None:
        """Fragment for ``token``, or None if unknown."""
        return self._fragments.get(token)

    def tokens(self) -> list[str]:
        """Registered tokens in registration order."""
        return list(self._fragments)

    def kind_counts(self) -> dict[str, int]:
        """Number of live fragments per kind."""
        return dict(Counter(token_kind(t).value for t in self._fragments))

    @property
    def issued(self) -> int:
        """Tokens issued, including those later absorbed."""
        return self._counter.issued

    def __contains__(self, token: object) -> bool:
        return token in self._fragments

    def __len__(self) -> int:
        return len(self._fragments)

    def __iter__(self) -> Iterator[str]:
        return iter(self._fragments)
