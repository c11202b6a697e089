"""Typeset-and-splice renderer.

The reduced markup is typeset first; every text node of the resulting tree
that contains placeholder tokens is then cut at the tokens and the stored
fragments are spliced in.

Two substitution rules:
- Node surgery: a token that is the only content of an element whose only
  child is that text node replaces the element itself, so a block fragment
  never ends up wrapped in a ``<p>``. The tree root is never replaced.
- Inline: otherwise the text node is split and the fragment inserted
  between the pieces.
"""

from typing import Any

from bs4 import BeautifulSoup, NavigableString, Tag

from texpreview.preview.blocks import TOKEN_PATTERN, BlockKind, BlockTable, token_kind
from texpreview.preview.templating import render_template
from texpreview.preview.typesetter import DocumentRenderer, LatexTreeRenderer
from texpreview.utils.errors import RenderError
from texpreview.utils.logging import get_logger

logger = get_logger(__name__)

DIAGRAM_HOST_TEMPLATE = "diagram_host.html"


def parse_fragment(fragment: str) -> list[Any]:
    """Parse an HTML fragment into detached top-level nodes."""
    return list(BeautifulSoup(fragment, "html.parser").contents)


def tree_root(tree: BeautifulSoup) -> Tag:
    """The first element of a rendered tree."""
    root = tree.find(True)
    if root is None:
        raise RenderError("Browser Render Error: renderer produced an empty tree")
    return root


class SpliceRenderer:
    """Typeset reduced markup and splice extracted fragments back in."""

    def __init__(self, renderer: DocumentRenderer | None = None) -> None:
        self._renderer = renderer or LatexTreeRenderer()

    def render(
        self,
        reduced: str,
        blocks: BlockTable,
        bibliography_html: str | None = None,
    ) -> BeautifulSoup:
        """Produce the final tree.

        Args:
            reduced: Reduced markup wrapped in the safe preamble
            blocks: Block table for the tokens in ``reduced``
            bibliography_html: Bibliography fragment to append, if any

        Returns:
            The rendered tree with every known token replaced

        Raises:
            RenderError: If the renderer fails
        """
        try:
            tree = self._renderer.render(reduced)
        except Exception as e:
            logger.error("Document renderer failed", error=str(e), renderer=type(self._renderer).__name__)
            raise RenderError(
                f"Browser Render Error: {e}",
                details={"renderer": type(self._renderer).__name__},
            ) from e

        root = tree_root(tree)
        # Adjacent strings would otherwise hide tokens split across them
        tree.smooth()

        spliced: list[str] = []
        for text in list(root.find_all(string=TOKEN_PATTERN)):
            spliced.extend(self._splice(text, blocks, root))

        missing = [t for t in blocks if t not in spliced]
        if missing:
            logger.warning("Tokens not found in rendered tree", count=len(missing), tokens=missing[:5])

        if bibliography_html:
            section = tree.new_tag("div", attrs={"class": "bibliography-section"})
            for node in parse_fragment(bibliography_html):
                section.append(node)
            root.append(section)

        if any(token_kind(t) is BlockKind.TIKZ for t in spliced):
            for node in parse_fragment(render_template(DIAGRAM_HOST_TEMPLATE)):
                root.append(node)

        logger.debug("Splice complete", spliced=len(spliced), missing=len(missing))
        return tree

    def _splice(self, text: NavigableString, blocks: BlockTable, root: Tag) -> list[str]:
        """Replace the tokens in one text node; return the tokens spliced."""
        value = str(text)
        matches = list(TOKEN_PATTERN.finditer(value))
        parent = text.parent

        if len(matches) == 1:
            token = matches[0].group(0)
            fragment = blocks.get(token)
            prefix, suffix = value[: matches[0].start()], value[matches[0].end() :]
            if (
                fragment is not None
                and parent is not None
                and parent is not root
                and len(parent.contents) == 1
                and not prefix.strip()
                and not suffix.strip()
            ):
                parent.replace_with(*parse_fragment(fragment))
                return [token]

        replacements: list[Any] = []
        spliced: list[str] = []
        pos = 0
        for match in matches:
            if match.start() > pos:
                replacements.append(NavigableString(value[pos : match.start()]))
            token = match.group(0)
            fragment = blocks.get(token)
            if fragment is None:
                logger.warning("Unknown token left in place", token=token)
                replacements.append(NavigableString(token))
            else:
                replacements.extend(parse_fragment(fragment))
                spliced.append(token)
            pos = match.end()
        if pos < len(value):
            replacements.append(NavigableString(value[pos:]))

        text.replace_with(*replacements)
        return spliced
