r"""Math renderer adapter.

Wraps latex2mathml behind a single ``render(expr, display_mode)`` call that
never raises: conversion failures produce a visible inline error fragment so
one bad formula cannot take down the whole preview.

Long single-line display formulas are wrapped in an auto-scale container
sized from a character-count width estimate. Multi-line and structured
environments grow vertically and are never scaled.
"""

import html
import re

from bs4 import BeautifulSoup, NavigableString
from latex2mathml.converter import convert

from texpreview.config import Settings, get_settings
from texpreview.utils.logging import get_logger

logger = get_logger(__name__)

STRUCTURED_ENVIRONMENTS = ("equation", "align", "gather", "multline")

_STRUCTURED_RE = re.compile(
    r"\\begin\{(" + "|".join(STRUCTURED_ENVIRONMENTS) + r")(\*?)\}(.*?)\\end\{\1\2\}",
    re.DOTALL,
)
_WRAPPER_RE = re.compile(r"\\(?:mathrm|text|textbf)\{([^}]+)\}")
_SIZER_RE = re.compile(r"\\(?:left|right|big|Big|bigg|Bigg)[lrv]?")
_MACRO_RE = re.compile(r"\\[a-zA-Z]+")
_UNESCAPED_DOLLAR_RE = re.compile(r"(?<!\\)\$")

MATHML_TAGS = frozenset({
    "math", "semantics", "annotation", "annotation-xml", "maction",
    "mi", "mn", "mo", "ms", "mtext", "mspace", "mglyph",
    "mrow", "mfrac", "msqrt", "mroot", "mstyle", "merror", "mpadded", "mphantom",
    "mfenced", "menclose", "msub", "msup", "msubsup", "munder", "mover",
    "munderover", "mmultiscripts", "mprescripts", "none",
    "mtable", "mtr", "mtd", "mlabeledtr",
})
_URL_ATTRIBUTES = frozenset({"href", "xlink:href", "src", "xmlns:xlink"})


def estimate_width_em(expr: str, char_width_em: float) -> float:
    """Rough rendered width of a single-line formula, in em.

    Text wrappers are unwrapped, delimiter sizers dropped and every other
    macro name counted as one glyph.
    """
    rough = _WRAPPER_RE.sub(r"\1", expr)
    rough = _SIZER_RE.sub("", rough)
    rough = _MACRO_RE.sub("C", rough)
    return len(rough) * char_width_em


def _clean_expression(expr: str) -> str:
    """Drop labels/tags and stray dollars that latex2mathml cannot handle."""
    expr = _UNESCAPED_DOLLAR_RE.sub("", expr)
    expr = re.sub(r"\\label\{[^}]*\}", "", expr)
    expr = re.sub(r"\\tag\*?\{[^}]*\}", "", expr)
    expr = re.sub(r"\\(?:nonumber|notag)\b", "", expr)
    expr = re.sub(r"\\eqref\{([^}]*)\}", r"\\text{(\1)}", expr)
    expr = re.sub(r"\\ref\{([^}]*)\}", r"\\text{[\1]}", expr)
    return expr.strip()


def sanitize_mathml(mathml: str) -> str:
    r"""Turn any non-MathML markup in converter output back into text.

    latex2mathml unescapes its serialized tree, so ``<`` typed inside
    ``\text{}`` comes back as a live tag. Foreign elements are re-emitted
    as escaped text and event handler or URL attributes are dropped.
    Clean output is returned untouched.
    """
    soup = BeautifulSoup(mathml, "html.parser")
    changed = False
    for tag in soup.find_all(True):
        if tag.name not in MATHML_TAGS:
            tag.replace_with(NavigableString(str(tag)))
            changed = True
            continue
        for attr in list(tag.attrs):
            if attr.lower().startswith("on") or attr.lower() in _URL_ATTRIBUTES:
                del tag[attr]
                changed = True
    return str(soup) if changed else mathml


def _unwrap_structured(expr: str) -> tuple[str, bool]:
    """Turn a structured environment into something latex2mathml accepts.

    Returns:
        Tuple of (expression, whether a structured environment was found)
    """
    match = _STRUCTURED_RE.fullmatch(expr.strip())
    if match is None:
        return expr, False
    env, body = match.group(1), match.group(3)
    if env == "equation":
        return body, True
    return "\\begin{aligned}" + body + "\\end{aligned}", True


class MathRenderer:
    """Render math expressions to HTML fragments via latex2mathml."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    def render(self, expr: str, display_mode: bool) -> str:
        """Render ``expr`` as inline or display math.

        Args:
            expr: Math source, either a bare expression or a full
                equation/align/gather/multline environment
            display_mode: Render as a display block instead of inline

        Returns:
            HTML fragment; an inline error fragment if conversion fails
        """
        body, structured = _unwrap_structured(expr)
        body = _clean_expression(body)
        try:
            mathml = sanitize_mathml(convert(body, display="block" if display_mode else "inline"))
        except Exception as e:
            logger.warning(
                "Math conversion failed",
                error=str(e),
                expression=body[:80],
                display=display_mode,
            )
            return (
                '<span class="math-error" style="color:red;" '
                f'title="{html.escape(str(e), quote=True)}">Math Error</span>'
            )

        if not display_mode:
            return f'<span class="math-inline">{mathml}</span>'

        fragment = f'<div class="math-display">{mathml}</div>'
        if structured or "\\\\" in body:
            return fragment
        return self._autoscale(body, fragment)

    def _autoscale(self, body: str, fragment: str) -> str:
        """Wrap an over-wide single-line display formula in a scaled container."""
        max_em = self._settings.math_max_width_em
        estimate = estimate_width_em(body, self._settings.math_char_width_em)
        if estimate <= max_em:
            return fragment
        scale = max(self._settings.shrink_floor, max_em / estimate)
        return (
            f'<div class="math-autoscale" style="transform: scale({scale:.2f}); '
            f'transform-origin: left center; width: {100 / scale:.1f}%;">{fragment}</div>'
        )


def render_math(expr: str, display_mode: bool) -> str:
    """Render with a renderer built from the current settings."""
    return MathRenderer().render(expr, display_mode)
