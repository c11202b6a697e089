r"""Document renderer adapter.

The splice step only needs *some* typesetter that turns the reduced markup
into an HTML tree; :class:`DocumentRenderer` is that seam. The default,
:class:`LatexTreeRenderer`, parses with pylatexenc's tolerant
``LatexWalker`` and emits a BeautifulSoup tree rooted at
``<div class="latex-preview">``.

It deliberately understands only what survives extraction: sectioning,
paragraphs, inline formatting, title blocks, figures and captions. Unknown
macros fall back to pylatexenc's plain-text conversion and unknown
environments render their content.
"""

import html
import re
from typing import Any, Protocol

from bs4 import BeautifulSoup
from pylatexenc.latex2text import LatexNodes2Text
from pylatexenc.latexwalker import (
    LatexCharsNode,
    LatexCommentNode,
    LatexEnvironmentNode,
    LatexGroupNode,
    LatexMacroNode,
    LatexMathNode,
    LatexSpecialsNode,
    LatexWalker,
)

from texpreview.utils.logging import get_logger

logger = get_logger(__name__)

ROOT_CLASS = "latex-preview"

_PARAGRAPH_BREAK_RE = re.compile(r"\n[ \t]*\n\s*")

SECTION_TAGS = {
    "part": "h2",
    "chapter": "h2",
    "section": "h2",
    "subsection": "h3",
    "subsubsection": "h4",
}
RUN_IN_HEADINGS = ("paragraph", "subparagraph")

INLINE_TAGS = {
    "textbf": ("<strong>", "</strong>"),
    "textit": ("<em>", "</em>"),
    "textsl": ("<em>", "</em>"),
    "emph": ("<em>", "</em>"),
    "underline": ("<u>", "</u>"),
    "texttt": ("<code>", "</code>"),
    "textsc": ('<span style="font-variant: small-caps;">', "</span>"),
    "textsuperscript": ("<sup>", "</sup>"),
    "textsubscript": ("<sub>", "</sub>"),
    "textrm": ("", ""),
    "textsf": ("", ""),
    "textup": ("", ""),
    "textnormal": ("", ""),
    "text": ("", ""),
    "mbox": ("", ""),
}

SYMBOL_MACROS = {
    "\\": "<br>",
    "newline": "<br>",
    "linebreak": "<br>",
    ",": "&thinsp;",
    " ": " ",
    "quad": "&emsp;",
    "qquad": "&emsp;&emsp;",
    "ldots": "&hellip;",
    "dots": "&hellip;",
    "LaTeX": "LaTeX",
    "TeX": "TeX",
    "textbackslash": "\\",
    "textendash": "&ndash;",
    "textemdash": "&mdash;",
    "bullet": "&#8226;",
    "checkmark": "&#10003;",
    "times": "&times;",
}

SPECIALS = {
    "~": "&nbsp;",
    "--": "&ndash;",
    "---": "&mdash;",
    "``": "&ldquo;",
    "''": "&rdquo;",
}

IGNORED_MACROS = {
    "documentclass",
    "usepackage",
    "label",
    "appendix",
    "centering",
    "hfill",
    "par",
    "small",
    "footnotesize",
    "large",
    "Large",
    "normalsize",
}

# Mandatory argument counts, used when the parser did not attach arguments
ARITY = {
    **{name: 1 for name in SECTION_TAGS},
    **{name: 1 for name in RUN_IN_HEADINGS},
    **{name: 1 for name in INLINE_TAGS},
    "title": 1,
    "author": 1,
    "date": 1,
    "caption": 1,
    "footnote": 1,
    "url": 1,
    "href": 2,
    "label": 1,
    "documentclass": 1,
    "usepackage": 1,
    "textcolor": 2,
}


class DocumentRenderer(Protocol):
    """Anything that turns reduced markup into an HTML tree."""

    def render(self, markup: str) -> BeautifulSoup:
        """Typeset ``markup`` into a tree whose first element is the root."""
        ...


class _Blocks:
    """Paragraph accumulator: inline runs become ``<p>``, blocks pass through."""

    def __init__(self) -> None:
        self.out: list[str] = []
        self._inline: list[str] = []

    def inline(self, fragment: str) -> None:
        self._inline.append(fragment)

    def paragraph_break(self) -> None:
        content = "".join(self._inline).strip()
        if content:
            self.out.append(f"<p>{content}</p>")
        self._inline = []

    def block(self, fragment: str) -> None:
        self.paragraph_break()
        self.out.append(fragment)

    def html(self) -> str:
        self.paragraph_break()
        return "".join(self.out)


class LatexTreeRenderer:
    """Typeset reduced markup with pylatexenc into a BeautifulSoup tree."""

    def __init__(self) -> None:
        self._text = LatexNodes2Text()

    def render(self, markup: str) -> BeautifulSoup:
        """Parse and render a whole document.

        Args:
            markup: Reduced markup wrapped in the safe preamble

        Returns:
            BeautifulSoup tree with a single ``div.latex-preview`` root
        """
        walker = LatexWalker(markup, tolerant_parsing=True)
        nodes, _pos, _length = walker.get_latex_nodes(pos=0)

        state = _RenderState()
        # Metadata commands can sit in the preamble, outside the document body
        self._collect_metadata(nodes, state)

        document = next(
            (
                n
                for n in nodes
                if isinstance(n, LatexEnvironmentNode) and n.environmentname == "document"
            ),
            None,
        )
        body_nodes = document.nodelist if document is not None else nodes

        blocks = _Blocks()
        self._render_blocks(body_nodes, blocks, state)
        return BeautifulSoup(f'<div class="{ROOT_CLASS}">{blocks.html()}</div>', "html.parser")

    # =========================================================================
    # Block Context
    # =========================================================================

    def _render_blocks(self, nodes: list[Any], blocks: _Blocks, state: "_RenderState") -> None:
        i = 0
        while i < len(nodes):
            node = nodes[i]
            if isinstance(node, LatexCharsNode):
                parts = _PARAGRAPH_BREAK_RE.split(node.chars)
                for index, part in enumerate(parts):
                    if index:
                        blocks.paragraph_break()
                    blocks.inline(html.escape(part, quote=False))
            elif isinstance(node, LatexMacroNode):
                args, i = self._arguments(nodes, i, node)
                self._render_block_macro(node, args, blocks, state)
            elif isinstance(node, LatexEnvironmentNode):
                blocks.block(self._render_environment(node, state))
            elif isinstance(node, LatexGroupNode):
                self._render_blocks(node.nodelist or [], blocks, state)
            else:
                blocks.inline(self._render_inline([node], state))
            i += 1

    def _render_block_macro(
        self,
        node: LatexMacroNode,
        args: list[Any],
        blocks: _Blocks,
        state: "_RenderState",
    ) -> None:
        name = node.macroname
        if name in SECTION_TAGS:
            starred = _is_starred(node)
            title = self._arg_html(args, 0, state)
            number = "" if starred else f'<span class="section-number">{state.next_section(name)}</span> '
            tag = SECTION_TAGS[name]
            blocks.block(f"<{tag}>{number}{title}</{tag}>")
        elif name in RUN_IN_HEADINGS:
            blocks.paragraph_break()
            blocks.inline(f'<strong class="latex-{name}">{self._arg_html(args, 0, state)}</strong> ')
        elif name == "maketitle":
            blocks.block(state.title_block())
        elif name == "caption":
            state.figures += 1
            blocks.block(
                f'<figcaption class="latex-caption"><strong>Figure {state.figures}:</strong> '
                f"{self._arg_html(args, 0, state)}</figcaption>"
            )
        elif name == "par":
            blocks.paragraph_break()
        elif name in ("title", "author", "date"):
            return
        else:
            blocks.inline(self._render_macro(node, args, state))

    def _render_environment(self, node: LatexEnvironmentNode, state: "_RenderState") -> str:
        name = node.environmentname
        inner = _Blocks()
        self._render_blocks(node.nodelist or [], inner, state)
        if name in ("figure", "figure*", "wrapfigure"):
            return f'<figure class="latex-figure">{inner.html()}</figure>'
        css = re.sub(r"[^A-Za-z0-9_-]", "", name)
        return f'<div class="latex-env latex-{css}">{inner.html()}</div>'

    # =========================================================================
    # Inline Context
    # =========================================================================

    def _render_inline(self, nodes: list[Any], state: "_RenderState") -> str:
        out: list[str] = []
        i = 0
        while i < len(nodes):
            node = nodes[i]
            if isinstance(node, LatexCharsNode):
                out.append(html.escape(node.chars, quote=False))
            elif isinstance(node, LatexMacroNode):
                args, i = self._arguments(nodes, i, node)
                out.append(self._render_macro(node, args, state))
            elif isinstance(node, LatexGroupNode):
                out.append(self._render_inline(node.nodelist or [], state))
            elif isinstance(node, LatexSpecialsNode):
                out.append(SPECIALS.get(node.specials_chars, html.escape(node.specials_chars)))
            elif isinstance(node, LatexMathNode):
                # Math was extracted earlier; anything left is a stray delimiter
                out.append(html.escape(node.latex_verbatim(), quote=False))
            elif isinstance(node, LatexEnvironmentNode):
                out.append(self._render_environment(node, state))
            elif isinstance(node, LatexCommentNode):
                pass
            i += 1
        return "".join(out)

    def _render_macro(self, node: LatexMacroNode, args: list[Any], state: "_RenderState") -> str:
        name = node.macroname
        if name in INLINE_TAGS:
            open_tag, close_tag = INLINE_TAGS[name]
            return f"{open_tag}{self._arg_html(args, 0, state)}{close_tag}"
        if name in SYMBOL_MACROS:
            return SYMBOL_MACROS[name]
        if name in ("-", "/", "@"):
            return ""
        if len(name) == 1 and not name.isalpha() and name not in "'`^\"~=.":
            # Escaped special such as \& or \%
            return html.escape(name)
        if name in IGNORED_MACROS:
            return ""
        if name == "footnote":
            return f" ({self._arg_html(args, 0, state)})"
        if name == "textcolor":
            return self._arg_html(args, 1, state)
        if name == "url":
            url = _plain(args[0]) if args else ""
            return _link(url, html.escape(url))
        if name == "href":
            url = _plain(args[0]) if args else ""
            return _link(url, self._arg_html(args, 1, state))
        if name in SECTION_TAGS or name in RUN_IN_HEADINGS:
            return f"<strong>{self._arg_html(args, 0, state)}</strong>"
        if name in ("title", "author", "date", "maketitle", "caption"):
            return ""

        try:
            text = self._text.nodelist_to_text([node])
        except Exception as e:
            logger.debug("Plain-text fallback failed", macro=name, error=str(e))
            text = ""
        if not text:
            logger.debug("Dropping unknown macro", macro=name)
        return html.escape(text, quote=False)

    # =========================================================================
    # Arguments and Metadata
    # =========================================================================

    def _arguments(self, nodes: list[Any], index: int, node: LatexMacroNode) -> tuple[list[Any], int]:
        """Mandatory arguments of ``node``, borrowing following groups if needed.

        Returns:
            Tuple of (argument nodes, index of the last consumed node)
        """
        args = [
            arg
            for arg in (node.nodeargd.argnlist if node.nodeargd is not None else [])
            if arg is not None and not _is_star(arg) and not _is_optional(arg)
        ]
        needed = ARITY.get(node.macroname, 0)
        while len(args) < needed:
            lookahead = index + 1
            while (
                lookahead < len(nodes)
                and isinstance(nodes[lookahead], LatexCharsNode)
                and not nodes[lookahead].chars.strip()
            ):
                lookahead += 1
            if lookahead < len(nodes) and isinstance(nodes[lookahead], LatexGroupNode):
                args.append(nodes[lookahead])
                index = lookahead
            else:
                break
        return args, index

    def _arg_html(self, args: list[Any], position: int, state: "_RenderState") -> str:
        if position >= len(args):
            return ""
        arg = args[position]
        nodes = arg.nodelist if isinstance(arg, LatexGroupNode) else [arg]
        return self._render_inline(nodes or [], state).strip()

    def _collect_metadata(self, nodes: list[Any], state: "_RenderState") -> None:
        for i, node in enumerate(nodes):
            if isinstance(node, LatexMacroNode) and node.macroname in ("title", "author", "date"):
                args, _ = self._arguments(nodes, i, node)
                setattr(state, node.macroname, self._arg_html(args, 0, state))


class _RenderState:
    """Per-render counters and metadata."""

    def __init__(self) -> None:
        self.title = ""
        self.author = ""
        self.date = ""
        self.figures = 0
        self._sections = [0, 0, 0]

    def next_section(self, name: str) -> str:
        level = {"subsection": 1, "subsubsection": 2}.get(name, 0)
        self._sections[level] += 1
        for deeper in range(level + 1, len(self._sections)):
            self._sections[deeper] = 0
        return ".".join(str(n) for n in self._sections[: level + 1])

    def title_block(self) -> str:
        parts = [f'<h1 class="latex-title">{self.title}</h1>'] if self.title else []
        if self.author:
            parts.append(f'<div class="latex-author">{self.author}</div>')
        if self.date:
            parts.append(f'<div class="latex-date">{self.date}</div>')
        return f'<div class="latex-titleblock">{"".join(parts)}</div>' if parts else ""


def _is_star(node: Any) -> bool:
    return isinstance(node, LatexCharsNode) and node.chars == "*"


def _is_optional(node: Any) -> bool:
    return isinstance(node, LatexGroupNode) and tuple(node.delimiters or ()) == ("[", "]")


def _is_starred(node: LatexMacroNode) -> bool:
    argnlist = node.nodeargd.argnlist if node.nodeargd is not None else []
    return any(_is_star(arg) for arg in argnlist if arg is not None)


def _plain(node: Any) -> str:
    if isinstance(node, LatexGroupNode):
        return "".join(n.latex_verbatim() for n in node.nodelist or []).strip()
    return node.latex_verbatim().strip()


def _link(url: str, label: str) -> str:
    if not url.startswith(("http://", "https://", "mailto:")):
        return label
    href = html.escape(url, quote=True)
    return f'<a href="{href}" target="_blank" rel="noopener noreferrer">{label}</a>'
