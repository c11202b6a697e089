r"""Algorithm extraction.

Both pseudocode dialects are understood: the ``algorithmic`` package
(``\STATE``, ``\IF{..}``, ``\ENDIF``) and ``algpseudocode`` (``\State``,
``\If{..}``, ``\EndIf``). Each command starts a new line; block openers
indent the lines that follow and their closers dedent again.

``algorithmic`` bodies are extracted first. ``algorithm`` floats are
extracted afterwards, keep their caption and absorb the inner tokens.
"""

import re
from collections.abc import Callable
from typing import Any

from texpreview.preview.base import BaseExtractor
from texpreview.preview.blocks import BlockKind
from texpreview.preview.scanner import (
    UnterminatedGroupError,
    bounded,
    find_environment,
    read_arguments,
    read_group,
)

ALGORITHMIC_ENVIRONMENTS = ("algorithmic",)
ALGORITHM_FLOATS = ("algorithm", "algorithm*")

INDENT_EM = 1.5

# Command (lowercased) -> number of brace arguments
_COMMAND_ARGS: dict[str, int] = {
    "state": 0,
    "statex": 0,
    "require": 0,
    "ensure": 0,
    "return": 0,
    "print": 0,
    "if": 1,
    "elsif": 1,
    "else": 0,
    "endif": 0,
    "for": 1,
    "forall": 1,
    "endfor": 0,
    "while": 1,
    "endwhile": 0,
    "repeat": 0,
    "until": 1,
    "loop": 0,
    "endloop": 0,
    "function": 2,
    "procedure": 2,
    "endfunction": 0,
    "endprocedure": 0,
}

_COMMAND_RE = re.compile(
    r"\\(" + "|".join(sorted(_COMMAND_ARGS, key=len, reverse=True)) + r")(?![A-Za-z])",
    re.IGNORECASE,
)
_COMMENT_RE = re.compile(r"\\(?:Comment|COMMENT)(?![A-Za-z])")
_STATE_RETURN_RE = re.compile(r"\\state\s*(?=\\return(?![A-Za-z]))", re.IGNORECASE)
_INLINE_WORDS = {
    "to": "to",
    "and": "and",
    "or": "or",
    "not": "not",
    "true": "true",
    "false": "false",
    "downto": "downto",
}
_INLINE_WORD_RE = re.compile(
    r"\\(" + "|".join(_INLINE_WORDS) + r")(?![A-Za-z])\s*", re.IGNORECASE
)

_OPENERS = {"if", "for", "forall", "while", "repeat", "loop", "function", "procedure"}
_CLOSERS = {"endif", "endfor", "endwhile", "until", "endloop", "endfunction", "endprocedure"}


def keyword(word: str) -> str:
    """Keyword span used for pseudocode keywords."""
    return f'<span class="latex-alg-keyword">{word}</span>'


class AlgorithmExtractor(BaseExtractor):
    """Replace algorithm environments with placeholder tokens."""

    construct = "algorithm"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._float_count = 0

    def extract(self, markup: str) -> str:
        """Render ``algorithmic`` bodies, then wrap ``algorithm`` floats."""
        markup = self._extract(markup, ALGORITHMIC_ENVIRONMENTS, self._render_algorithmic)
        return self._extract(markup, ALGORITHM_FLOATS, self._render_float)

    def _extract(self, markup: str, names: tuple[str, ...], render: Callable[[str], str]) -> str:
        for name in names:
            for _ in bounded(self._settings.environment_iteration_cap, name):
                try:
                    env = find_environment(markup, name)
                except UnterminatedGroupError:
                    self._logger.warning("Unterminated algorithm environment left in place", environment=name)
                    break
                if env is None:
                    break
                fragment = render(env.body(markup))
                markup = markup[: env.start] + self._register(BlockKind.ALGO, fragment) + markup[env.end :]
        return markup

    # =========================================================================
    # Floats
    # =========================================================================

    def _render_float(self, body: str) -> str:
        caption_html = ""
        caption = re.search(r"\\caption\*?(?![A-Za-z])", body)
        if caption is not None:
            try:
                parsed = read_arguments(body, caption.end(), 1, optional=True)
            except UnterminatedGroupError:
                parsed = None
            if parsed is not None:
                args, _opt, end = parsed
                self._float_count += 1
                caption_html = (
                    f'<div class="algorithm-caption"><strong>Algorithm {self._float_count}:</strong> '
                    f"{self._formatter.format(args[0].strip())}</div>"
                )
                body = body[: caption.start()] + body[end:]

        body = re.sub(r"\\label\s*\{[^}]*\}", "", body)
        # Placement options such as [H] or [htbp]
        try:
            placement = read_group(body, 0, "[")
        except UnterminatedGroupError:
            placement = None
        if placement is not None:
            body = body[placement.end :]

        return f'<div class="algorithm-wrapper">{caption_html}{self._formatter.paragraphs(body)}</div>'

    # =========================================================================
    # Pseudocode
    # =========================================================================

    def _render_algorithmic(self, body: str) -> str:
        # Line-numbering option such as [1]
        try:
            numbering = read_group(body, 0, "[")
        except UnterminatedGroupError:
            numbering = None
        if numbering is not None:
            body = body[numbering.end :]
        body = _STATE_RETURN_RE.sub("", body)

        lines: list[tuple[int, str, bool]] = []
        indent = 0
        match = _COMMAND_RE.search(body)
        while match is not None:
            name = match.group(1).lower()
            args, after = self._read_args(body, match.end(), _COMMAND_ARGS[name])
            following = _COMMAND_RE.search(body, after)
            text = body[after : following.start() if following else len(body)]

            if name in _CLOSERS or name in ("elsif", "else"):
                indent = max(0, indent - 1)
            lines.append((indent, self._render_line(name, args, text), name != "statex"))
            if name in _OPENERS or name in ("elsif", "else"):
                indent += 1
            match = following

        items = "".join(
            f'<li style="padding-left: {level * INDENT_EM:g}em;'
            f'{"" if numbered else " list-style: none;"}">{content}</li>'
            for level, content, numbered in lines
        )
        return f'<ol class="latex-algorithmic">{items}</ol>'

    def _read_args(self, body: str, pos: int, count: int) -> tuple[list[str], int]:
        args: list[str] = []
        for _ in range(count):
            try:
                group = read_group(body, pos)
            except UnterminatedGroupError:
                group = None
            if group is None:
                break
            args.append(group.content)
            pos = group.end
        return args, pos

    def _render_line(self, name: str, args: list[str], text: str) -> str:
        text, comment = self._split_comment(text)
        rest = self._format(text.strip())
        cond = self._format(args[0].strip()) if args else ""

        if name in ("state", "statex"):
            line = rest
        elif name == "require":
            line = f"{keyword('Require:')} {rest}"
        elif name == "ensure":
            line = f"{keyword('Ensure:')} {rest}"
        elif name in ("return", "print"):
            line = f"{keyword(name)} {rest}"
        elif name == "if":
            line = f"{keyword('if')} {cond} {keyword('then')}"
        elif name == "elsif":
            line = f"{keyword('else if')} {cond} {keyword('then')}"
        elif name == "else":
            line = keyword("else")
        elif name in ("for", "forall"):
            word = "for all" if name == "forall" else "for"
            line = f"{keyword(word)} {cond} {keyword('do')}"
        elif name == "while":
            line = f"{keyword('while')} {cond} {keyword('do')}"
        elif name == "until":
            line = f"{keyword('until')} {cond}"
        elif name in ("repeat", "loop"):
            line = keyword(name)
        elif name in ("function", "procedure"):
            params = self._format(args[1].strip()) if len(args) > 1 else ""
            title = f'<span style="font-variant: small-caps;">{cond}</span>'
            line = f"{keyword(name)} {title}({params})"
        else:
            # endif, endfor, endwhile, endloop, endfunction, endprocedure
            line = keyword("end " + name[3:])

        if name not in ("state", "statex", "require", "ensure", "return", "print") and rest:
            line = f"{line} {rest}"
        if comment is not None:
            line = f'{line} <span class="latex-alg-comment">&#9655; {self._format(comment)}</span>'
        return line.strip()

    def _split_comment(self, text: str) -> tuple[str, str | None]:
        match = _COMMENT_RE.search(text)
        if match is None:
            return text, None
        try:
            group = read_group(text, match.end())
        except UnterminatedGroupError:
            group = None
        if group is None:
            return text, None
        return text[: match.start()] + text[group.end :], group.content.strip()

    def _format(self, text: str) -> str:
        text = _INLINE_WORD_RE.sub(
            lambda m: "\\textbf{" + _INLINE_WORDS[m.group(1).lower()] + "} ", text
        )
        text = re.sub(
            r"\\(?:Call|CALL)\s*\{([^}]*)\}\s*\{([^}]*)\}",
            r"\\textsc{\1}(\2)",
            text,
        )
        return self._formatter.format(text.strip())
