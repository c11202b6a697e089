r"""List extraction (itemize, enumerate, description).

Lists are extracted leaf-first: each round renders the first list whose body
contains no other list, so nested lists are already tokens by the time
their parent is rendered and the parent simply absorbs them.
"""

import re

from texpreview.preview.base import BaseExtractor
from texpreview.preview.blocks import BlockKind
from texpreview.preview.scanner import (
    UnterminatedGroupError,
    bounded,
    find_leaf_environment,
    read_group,
)

LIST_ENVIRONMENTS = ("itemize", "enumerate", "description")

_ITEM_RE = re.compile(r"\\item(?![A-Za-z])")


def split_items(body: str) -> list[tuple[str | None, str]]:
    """Split a list body into (optional label, text) pairs."""
    starts = [m for m in _ITEM_RE.finditer(body)]
    items: list[tuple[str | None, str]] = []
    for i, match in enumerate(starts):
        end = starts[i + 1].start() if i + 1 < len(starts) else len(body)
        pos = match.end()
        label: str | None = None
        try:
            group = read_group(body, pos, "[")
        except UnterminatedGroupError:
            group = None
        if group is not None and group.end <= end:
            label = group.content.strip()
            pos = group.end
        items.append((label, body[pos:end].strip()))
    return items


class ListExtractor(BaseExtractor):
    """Replace list environments with placeholder tokens."""

    construct = "list"

    def extract(self, markup: str) -> str:
        """Render every list, innermost first."""
        for _ in bounded(self._settings.list_iteration_cap, "list"):
            leaf = find_leaf_environment(markup, LIST_ENVIRONMENTS)
            if leaf is None:
                break
            fragment = self._render(leaf.name, leaf.body(markup))
            markup = markup[: leaf.start] + self._register(BlockKind.LIST, fragment) + markup[leaf.end :]
        return markup

    def _render(self, name: str, body: str) -> str:
        # Options such as [label=(\alph*)] are dropped
        try:
            options = read_group(body, 0, "[")
        except UnterminatedGroupError:
            options = None
        if options is not None:
            body = body[options.end :]

        items = split_items(body)
        if name == "description":
            entries = "".join(
                f"<dt>{self._formatter.format(label or '')}</dt>"
                f"<dd>{self._formatter.format(text)}</dd>"
                for label, text in items
            )
            return f'<dl class="latex-description">{entries}</dl>'

        tag = "ol" if name == "enumerate" else "ul"
        parts: list[str] = []
        for label, text in items:
            content = self._formatter.format(text)
            if label is not None:
                parts.append(
                    '<li style="list-style: none;">'
                    f'<span class="item-label">{self._formatter.format(label)}</span> {content}</li>'
                )
            else:
                parts.append(f"<li>{content}</li>")
        return f'<{tag} class="latex-{name}">{"".join(parts)}</{tag}>'
