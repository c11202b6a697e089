r"""Inline formatting normalizer.

Turns the restricted inline markup found inside extracted fragments (table
cells, list items, captions, algorithm lines) into safe HTML:

1. Inline math (``$..$``, ``\(..\)``) is rendered first and stashed so no
   later step can touch it.
2. Escaped specials (``\% \& \# \_ \{ \} \$``) are protected.
3. Remaining text is HTML-escaped.
4. Typography (dashes, quotes) and formatting macros are rewritten. Macro
   arguments are read by balanced scan, so nesting depth is unlimited.
5. Symbols are replaced, then stashed pieces and specials restored.

Placeholder tokens are plain letters and digits and pass through unchanged.
"""

import html
import re
from collections.abc import Callable

from texpreview.preview.blocks import TOKEN_PATTERN
from texpreview.preview.math import MathRenderer
from texpreview.preview.scanner import replace_command

_STASH_OPEN = "\ue000"
_STASH_CLOSE = "\ue001"
_STASH_RE = re.compile(_STASH_OPEN + r"(\d+)" + _STASH_CLOSE)

_SPECIALS = {
    "%": "\ue010",
    "&": "\ue011",
    "#": "\ue012",
    "_": "\ue013",
    "{": "\ue014",
    "}": "\ue015",
    "$": "\ue016",
}
_SPECIAL_RE = re.compile(r"\\([%&#_{}$])")
_RESTORE_SPECIALS = {v: html.escape(k, quote=False) for k, v in _SPECIALS.items()}

_INLINE_MATH_RE = re.compile(r"(?<!\\)\$([^$]+?)(?<!\\)\$|\\\((.+?)\\\)", re.DOTALL)

SAFE_URL_SCHEMES = ("http://", "https://", "mailto:")

_SYMBOLS: list[tuple[str, str]] = [
    (r"\\\\(?:\[[^\]]*\])?", "<br>"),
    (r"\\bullet(?![A-Za-z])\s*", "&#8226; "),
    (r"\\times(?![A-Za-z])", "&times;"),
    (r"\\checkmark(?![A-Za-z])", "&#10003;"),
    (r"\\approx(?![A-Za-z])", "&#8776;"),
    (r"\\(?:ldots|dots)(?![A-Za-z])", "&hellip;"),
    (r"\\(?:LaTeX|TeX)(?![A-Za-z])\s?", "LaTeX"),
    (r"\\,", "&thinsp;"),
    (r"\\:", ":"),
    (r"\\/", "/"),
    (r"\{:\}", ":"),
    (r"\{,\}", ","),
    (r"~", "&nbsp;"),
]


class InlineFormatter:
    """Convert restricted inline markup to safe HTML."""

    def __init__(self, math: MathRenderer | None = None) -> None:
        self._math = math or MathRenderer()

    def format(self, text: str) -> str:
        """Format one inline fragment.

        Args:
            text: Inline markup (no block environments)

        Returns:
            HTML string safe to insert into the output tree
        """
        stash: list[str] = []

        def _stash(fragment: str) -> str:
            stash.append(fragment)
            return f"{_STASH_OPEN}{len(stash) - 1}{_STASH_CLOSE}"

        # 1. Protect inline math
        text = _INLINE_MATH_RE.sub(
            lambda m: _stash(self._math.render(m.group(1) or m.group(2), display_mode=False)),
            text,
        )

        # 2. Protect escaped specials
        text = _SPECIAL_RE.sub(lambda m: _SPECIALS[m.group(1)], text)

        # 3. Escape HTML before typography so entities are not double-escaped
        text = html.escape(text, quote=False)

        # 4. Typography and macros
        text = (
            text.replace("---", "&mdash;")
            .replace("--", "&ndash;")
            .replace("``", "&ldquo;")
            .replace("''", "&rdquo;")
        )
        text = self._apply_macros(text, _stash)

        # 5. Symbols, then restore
        for pattern, replacement in _SYMBOLS:
            text = re.sub(pattern, replacement, text)
        for marker, literal in _RESTORE_SPECIALS.items():
            text = text.replace(marker, literal)
        while _STASH_RE.search(text):
            text = _STASH_RE.sub(lambda m: stash[int(m.group(1))], text)
        return text

    def paragraphs(self, text: str) -> str:
        """Format a multi-paragraph body, one ``<p>`` per blank-line chunk.

        A chunk that is only a placeholder token is emitted bare so block
        fragments are never nested inside a paragraph.
        """
        out: list[str] = []
        for chunk in re.split(r"\n\s*\n", text.strip()):
            chunk = chunk.strip()
            if not chunk:
                continue
            if TOKEN_PATTERN.fullmatch(chunk):
                out.append(chunk)
            else:
                out.append(f"<p>{self.format(chunk)}</p>")
        return "".join(out)

    def _apply_macros(self, text: str, stash: Callable[[str], str]) -> str:
        """Rewrite formatting and reference macros."""

        def wrap(open_tag: str, close_tag: str) -> Callable[[list[str], str | None], str]:
            return lambda args, _opt: open_tag + self._apply_macros(args[0], stash) + close_tag

        def link(args: list[str], _opt: str | None) -> str:
            url, label = args[0].strip(), self._apply_macros(args[1], stash)
            if not url.startswith(SAFE_URL_SCHEMES):
                return label
            href = url.replace('"', "%22")
            return stash(f'<a href="{href}" target="_blank" rel="noopener noreferrer">{label}</a>')

        text = replace_command(text, "textcircled", 1, lambda a, _o: f"({a[0]})")
        text = replace_command(text, "eqref", 1, lambda a, _o: f"({a[0].strip()})")
        text = replace_command(text, "ref", 1, lambda a, _o: f"[{a[0].strip()}]")
        for cite in ("cite", "citep", "citet"):
            text = replace_command(text, cite, 1, lambda a, _o: f"[{a[0].strip()}]", optional=True)
        text = replace_command(text, "label", 1, lambda _a, _o: "")
        text = replace_command(text, "url", 1, lambda a, _o: stash(f"<code>{a[0]}</code>"))
        text = replace_command(text, "href", 2, link)
        text = replace_command(
            text, "footnote", 1, lambda a, _o: f" ({self._apply_macros(a[0], stash)})"
        )
        text = replace_command(text, "textbf", 1, wrap("<strong>", "</strong>"))
        text = replace_command(text, "textit", 1, wrap("<em>", "</em>"))
        text = replace_command(text, "emph", 1, wrap("<em>", "</em>"))
        text = replace_command(text, "underline", 1, wrap("<u>", "</u>"))
        text = replace_command(text, "texttt", 1, wrap("<code>", "</code>"))
        text = replace_command(
            text,
            "textsc",
            1,
            wrap('<span style="font-variant: small-caps;">', "</span>"),
        )
        return text


def format_inline(text: str) -> str:
    """Format with a default formatter."""
    return InlineFormatter().format(text)
