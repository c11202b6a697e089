r"""Extractors for the remaining block constructs.

Components:
- DiagramExtractor: ``tikzpicture`` sandboxes, ``forest`` / ``tikzcd``
  placeholders
- ImageExtractor: ``\includegraphics`` placeholders
- CodeExtractor: ``verbatim``, ``lstlisting``, ``minted`` and inline
  ``\verb``
- AbstractExtractor: ``abstract`` and keywords
- BoxExtractor: ``\parbox``, ``\fbox``, ``\framebox``, text-mode
  ``\boxed``, ``minipage``, ``mdframed``, ``tcolorbox``
- BlockEnvironmentExtractor: quotes, alignment environments, theorem-like
  environments and proofs
"""

import html
import posixpath
import re
from collections.abc import Callable
from typing import Any

from texpreview.preview.base import BaseExtractor
from texpreview.preview.blocks import BlockKind
from texpreview.preview.diagrams import layout_diagram
from texpreview.preview.scanner import (
    UnterminatedGroupError,
    bounded,
    find_environment,
    find_leaf_environment,
    read_arguments,
    read_group,
    read_optional_groups,
)

BOX_PARSE_FAILED = '<div class="latex-placeholder-box error">[Box - Parse Failed]</div>'

_TIKZ_BEGIN_RE = re.compile(r"\\begin\s*\{tikzpicture\}")
_TIKZ_END_RE = re.compile(r"\\end\s*\{tikzpicture\}")


def css_width(spec: str) -> str:
    r"""CSS width for a LaTeX length such as ``0.45\textwidth`` or ``5cm``."""
    spec = spec.strip()
    relative = re.fullmatch(r"(\d*\.?\d+)?\s*\\(?:textwidth|linewidth|columnwidth|hsize)", spec)
    if relative is not None:
        factor = float(relative.group(1)) if relative.group(1) else 1.0
        return f"{min(factor, 1.0) * 100:g}%"
    absolute = re.fullmatch(r"(\d*\.?\d+)\s*(cm|mm|in|pt|em|ex|px)", spec)
    if absolute is not None:
        return f"{absolute.group(1)}{absolute.group(2)}"
    return "100%"


def _key_value(options: str, key: str) -> str | None:
    """Value of ``key=...`` in a ``key=value`` option list, braces stripped."""
    match = re.search(r"(?:^|,)\s*" + re.escape(key) + r"\s*=\s*(\{[^}]*\}|[^,]*)", options)
    if match is None:
        return None
    value = match.group(1).strip()
    if value.startswith("{") and value.endswith("}"):
        value = value[1:-1]
    return value.strip() or None


# =============================================================================
# Diagrams and Images
# =============================================================================


class DiagramExtractor(BaseExtractor):
    """Sandbox TikZ pictures and stand in for unsupported diagram packages."""

    construct = "diagram"

    PLACEHOLDERS = {
        "forest": "[Tree Diagram]",
        "tikzcd": "[Commutative Diagram]",
    }

    def extract(self, markup: str) -> str:
        """Extract pictures, then unsupported diagram environments."""
        markup = self._extract_pictures(markup)
        for name, label in self.PLACEHOLDERS.items():
            markup = self._extract_placeholder(markup, name, label)
        return markup

    def _extract_pictures(self, markup: str) -> str:
        sequence = 0
        for _ in bounded(self._settings.diagram_iteration_cap, "tikzpicture"):
            begin = _TIKZ_BEGIN_RE.search(markup)
            if begin is None:
                break
            try:
                options = read_group(markup, begin.end(), "[", quote_opaque=True)
            except UnterminatedGroupError:
                options = None
            body_start = options.end if options is not None else begin.end()
            end = _TIKZ_END_RE.search(markup, body_start)
            if end is None:
                self._logger.warning("Unterminated diagram left in place", position=begin.start())
                break
            sequence += 1
            fragment = layout_diagram(
                markup[body_start : end.start()],
                options.content if options is not None else "",
                self._settings,
                sequence,
            )
            markup = markup[: begin.start()] + self._register(BlockKind.TIKZ, fragment) + markup[end.end() :]
        return markup

    def _extract_placeholder(self, markup: str, name: str, label: str) -> str:
        fragment = f'<div class="latex-placeholder-box">{label}</div>'
        for _ in bounded(self._settings.environment_iteration_cap, name):
            try:
                env = find_environment(markup, name)
            except UnterminatedGroupError:
                self._logger.warning("Unterminated diagram left in place", environment=name)
                break
            if env is None:
                break
            markup = markup[: env.start] + self._register(BlockKind.BLOCK, fragment) + markup[env.end :]
        return markup


class ImageExtractor(BaseExtractor):
    """Replace ``\\includegraphics`` with a labelled placeholder box."""

    construct = "image"

    _PATTERN = re.compile(r"\\includegraphics\*?(?![A-Za-z])")

    def extract(self, markup: str) -> str:
        out: list[str] = []
        pos = 0
        for match in self._PATTERN.finditer(markup):
            if match.start() < pos:
                continue
            try:
                parsed = read_arguments(markup, match.end(), 1, optional=True)
            except UnterminatedGroupError:
                parsed = None
            if parsed is None:
                continue
            args, _opt, end = parsed
            name = posixpath.basename(args[0].strip()) or "figure"
            fragment = f'<div class="latex-placeholder-box image">[Image: {html.escape(name)}]</div>'
            out.append(markup[pos : match.start()])
            out.append(self._register(BlockKind.IMAGE, fragment))
            pos = end
        out.append(markup[pos:])
        return "".join(out)


# =============================================================================
# Code
# =============================================================================


class CodeExtractor(BaseExtractor):
    """Replace verbatim code with escaped ``<pre>``/``<code>`` fragments.

    Runs before math so that dollar signs inside code stay literal.
    """

    construct = "code"

    _BEGIN_RE = re.compile(r"\\begin\s*\{(verbatim\*?|Verbatim|lstlisting|minted)\}")
    # Same-line options only; a bracket on the next line is code
    _SAME_LINE_OPTIONS_RE = re.compile(r"[ \t]*\[([^\]\n]*)\]")
    _LANGUAGE_RE = re.compile(r"[ \t]*\{([^}\n]*)\}")
    _VERB_RE = re.compile(r"\\verb\*?([^A-Za-z\s*])(.*?)\1")
    _LSTINLINE_RE = re.compile(r"\\lstinline(?:\[[^\]]*\])?(?:\{([^}]*)\}|([^A-Za-z\s{\[])(.*?)\2)")
    _MINTINLINE_RE = re.compile(r"\\mintinline\s*\{[^}]*\}\s*\{([^}]*)\}")

    def extract(self, markup: str) -> str:
        """Extract code environments, then inline code."""
        markup = self._extract_environments(markup)
        return self._extract_inline(markup)

    def _extract_environments(self, markup: str) -> str:
        for _ in bounded(self._settings.environment_iteration_cap, "verbatim"):
            begin = self._BEGIN_RE.search(markup)
            if begin is None:
                break
            name = begin.group(1)
            pos = begin.end()
            language: str | None = None

            options = self._SAME_LINE_OPTIONS_RE.match(markup, pos)
            if options is not None:
                language = _key_value(options.group(1), "language")
                pos = options.end()
            if name == "minted":
                lang = self._LANGUAGE_RE.match(markup, pos)
                if lang is not None:
                    language = lang.group(1).strip()
                    pos = lang.end()

            end = re.compile(r"\\end\s*\{" + re.escape(name) + r"\}").search(markup, pos)
            if end is None:
                self._logger.warning("Unterminated code block left in place", environment=name)
                break

            code = markup[pos : end.start()]
            code = re.sub(r"^[ \t]*\r?\n", "", code).rstrip()
            lang_class = f' class="language-{html.escape(language.lower())}"' if language else ""
            fragment = f'<pre class="latex-verbatim"><code{lang_class}>{html.escape(code)}</code></pre>'
            markup = markup[: begin.start()] + self._register(BlockKind.VERBATIM, fragment) + markup[end.end() :]
        return markup

    def _extract_inline(self, markup: str) -> str:
        def _code(code: str) -> str:
            fragment = f'<code class="latex-verb">{html.escape(code)}</code>'
            return self._register(BlockKind.VERBATIM, fragment, block=False)

        markup = self._VERB_RE.sub(lambda m: _code(m.group(2)), markup)
        markup = self._LSTINLINE_RE.sub(
            lambda m: _code(m.group(1) if m.group(1) is not None else m.group(3)), markup
        )
        return self._MINTINLINE_RE.sub(lambda m: _code(m.group(1)), markup)


# =============================================================================
# Abstract and Keywords
# =============================================================================


class AbstractExtractor(BaseExtractor):
    """Render the abstract and keyword lists as front-matter blocks."""

    construct = "abstract"

    KEYWORD_ENVIRONMENTS = ("keywords", "IEEEkeywords")

    def extract(self, markup: str) -> str:
        markup = self._extract_environment(markup, "abstract", self._render_abstract)
        for name in self.KEYWORD_ENVIRONMENTS:
            markup = self._extract_environment(markup, name, self._render_keywords)
        return self._extract_keyword_commands(markup)

    def _extract_environment(self, markup: str, name: str, render: Callable[[str], str]) -> str:
        for _ in bounded(self._settings.environment_iteration_cap, name):
            try:
                env = find_environment(markup, name)
            except UnterminatedGroupError:
                self._logger.warning("Unterminated environment left in place", environment=name)
                break
            if env is None:
                break
            fragment = render(env.body(markup))
            markup = markup[: env.start] + self._register(BlockKind.ENV, fragment) + markup[env.end :]
        return markup

    def _extract_keyword_commands(self, markup: str) -> str:
        pattern = re.compile(r"\\keywords(?![A-Za-z])")
        out: list[str] = []
        pos = 0
        for match in pattern.finditer(markup):
            if match.start() < pos:
                continue
            try:
                group = read_group(markup, match.end())
            except UnterminatedGroupError:
                group = None
            if group is None:
                continue
            out.append(markup[pos : match.start()])
            out.append(self._register(BlockKind.ENV, self._render_keywords(group.content)))
            pos = group.end
        out.append(markup[pos:])
        return "".join(out)

    def _render_abstract(self, body: str) -> str:
        return (
            '<div class="abstract"><div class="abstract-title">Abstract</div>'
            f"{self._formatter.paragraphs(body)}</div>"
        )

    def _render_keywords(self, body: str) -> str:
        text = " ".join(body.split())
        return f'<div class="keywords"><strong>Keywords:</strong> {self._formatter.format(text)}</div>'


# =============================================================================
# Boxes
# =============================================================================


class BoxExtractor(BaseExtractor):
    """Render box commands and framed environments."""

    construct = "box"

    BOX_ENVIRONMENTS = ("minipage", "mdframed", "tcolorbox")
    INLINE_BOX_STYLE = "border: 1px solid currentColor; padding: 2px 4px; display: inline-block;"
    FRAMED_STYLE = "border: 1px solid #999; border-radius: 4px; padding: 0.75em 1em; margin: 1em 0;"

    _COMMAND_RE = re.compile(r"\\(parbox|fbox|framebox|boxed)(?![A-Za-z])")

    def extract(self, markup: str) -> str:
        """Extract box commands innermost-last first, then box environments."""
        markup = self._extract_commands(markup)
        return self._extract_environments(markup)

    def _extract_commands(self, markup: str) -> str:
        for _ in bounded(self._settings.environment_iteration_cap, "box"):
            matches = list(self._COMMAND_RE.finditer(markup))
            if not matches:
                break
            # The last occurrence cannot contain another one
            match = matches[-1]
            try:
                rendered = self._render_command(match.group(1), markup, match.end())
            except UnterminatedGroupError:
                rendered = None
            if rendered is None:
                self._logger.warning("Box arguments could not be read", command=match.group(1))
                replacement = self._register(BlockKind.BOX, BOX_PARSE_FAILED, block=False)
                markup = markup[: match.start()] + replacement + markup[match.end() :]
                continue
            fragment, end = rendered
            markup = markup[: match.start()] + self._register(BlockKind.BOX, fragment, block=False) + markup[end:]
        return markup

    def _render_command(self, name: str, markup: str, pos: int) -> tuple[str, int] | None:
        if name == "parbox":
            _positions, pos = read_optional_groups(markup, pos, 3)
            parsed = read_arguments(markup, pos, 2)
            if parsed is None:
                return None
            (width, content), _opt, end = parsed
            fragment = (
                f'<div class="parbox" style="display: inline-block; vertical-align: top; '
                f'width: {css_width(width)};">{self._formatter.paragraphs(content)}</div>'
            )
            return fragment, end

        if name == "framebox":
            _sizes, pos = read_optional_groups(markup, pos, 2)
        group = read_group(markup, pos)
        if group is None:
            return None
        fragment = (
            f'<span class="latex-{name}" style="{self.INLINE_BOX_STYLE}">'
            f"{self._formatter.format(group.content.strip())}</span>"
        )
        return fragment, group.end

    def _extract_environments(self, markup: str) -> str:
        for _ in bounded(self._settings.environment_iteration_cap, "box environment"):
            leaf = find_leaf_environment(markup, self.BOX_ENVIRONMENTS)
            if leaf is None:
                break
            try:
                fragment, inline = self._render_environment(leaf.name, leaf.body(markup))
            except UnterminatedGroupError:
                self._logger.warning("Box options could not be read", environment=leaf.name)
                fragment, inline = BOX_PARSE_FAILED, False
            replacement = self._register(BlockKind.BOX, fragment, block=not inline)
            markup = markup[: leaf.start] + replacement + markup[leaf.end :]
        return self._fail_unterminated(markup)

    def _fail_unterminated(self, markup: str) -> str:
        """Replace begin markers of boxes that never close."""
        begin_re = re.compile(r"\\begin\s*\{(" + "|".join(self.BOX_ENVIRONMENTS) + r")\}")
        pos = 0
        while True:
            begin = begin_re.search(markup, pos)
            if begin is None:
                return markup
            try:
                find_environment(markup, begin.group(1), begin.start())
            except UnterminatedGroupError:
                self._logger.warning("Unterminated box environment", environment=begin.group(1))
                replacement = self._register(BlockKind.BOX, BOX_PARSE_FAILED)
                markup = markup[: begin.start()] + replacement + markup[begin.end() :]
                pos = begin.start() + len(replacement)
                continue
            pos = begin.end()

    def _render_environment(self, name: str, body: str) -> tuple[str, bool]:
        """Return the fragment and whether it flows inline."""
        if name == "minipage":
            _positions, pos = read_optional_groups(body, 0, 3)
            width = read_group(body, pos)
            if width is not None:
                pos = width.end
            css = css_width(width.content) if width is not None else "100%"
            return (
                f'<div class="minipage" style="display: inline-block; vertical-align: top; width: {css};">'
                f"{self._formatter.paragraphs(body[pos:])}</div>",
                True,
            )

        title: str | None = None
        options = read_group(body, 0, "[")
        if options is not None:
            title = _key_value(options.content, "frametitle") or _key_value(options.content, "title")
            body = body[options.end :]
        title_html = (
            f'<div class="latex-framed-title"><strong>{self._formatter.format(title)}</strong></div>'
            if title
            else ""
        )
        return (
            f'<div class="latex-framed" style="{self.FRAMED_STYLE}">{title_html}'
            f"{self._formatter.paragraphs(body)}</div>",
            False,
        )


# =============================================================================
# Quotes, Alignment and Theorems
# =============================================================================


THEOREM_TITLES = {
    "theorem": "Theorem",
    "lemma": "Lemma",
    "definition": "Definition",
    "corollary": "Corollary",
    "proposition": "Proposition",
    "remark": "Remark",
    "example": "Example",
}
QUOTE_ENVIRONMENTS = ("quote", "quotation", "verse")
ALIGN_ENVIRONMENTS = {"center": "center", "flushleft": "left", "flushright": "right"}

_NEWTHEOREM_RE = re.compile(r"\\newtheorem(\*?)\s*\{([^}]+)\}\s*(?:\[[^\]]*\]\s*)?\{([^}]+)\}")


class BlockEnvironmentExtractor(BaseExtractor):
    """Render quoted, aligned and theorem-like environments, innermost first.

    Theorem kinds declared with ``\\newtheorem`` in the document are picked
    up in addition to the built-in ones. Numbered kinds count separately.
    """

    construct = "environment"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._counters: dict[str, int] = {}

    def extract(self, markup: str) -> str:
        theorems = dict(THEOREM_TITLES)
        for _star, name, title in _NEWTHEOREM_RE.findall(markup):
            theorems[name.strip()] = title.strip()

        names = [*QUOTE_ENVIRONMENTS, *ALIGN_ENVIRONMENTS, "proof"]
        for name in theorems:
            names.extend((name, f"{name}*"))

        for _ in bounded(self._settings.environment_iteration_cap, "environment"):
            leaf = find_leaf_environment(markup, names)
            if leaf is None:
                break
            fragment = self._render(leaf.name, leaf.body(markup), theorems)
            markup = markup[: leaf.start] + self._register(BlockKind.ENV, fragment) + markup[leaf.end :]
        return markup

    def _render(self, name: str, body: str, theorems: dict[str, str]) -> str:
        if name in QUOTE_ENVIRONMENTS:
            return f'<blockquote class="latex-{name}">{self._formatter.paragraphs(body)}</blockquote>'
        if name in ALIGN_ENVIRONMENTS:
            return (
                f'<div class="latex-{name}" style="text-align: {ALIGN_ENVIRONMENTS[name]};">'
                f"{self._formatter.paragraphs(body)}</div>"
            )

        title, body = self._take_title(body)
        if name == "proof":
            head = f"<em>{self._formatter.format(title) if title else 'Proof'}.</em> "
            content = self._prepend(head, self._formatter.paragraphs(body))
            qed = '<span class="qed" style="float: right;">&#8718;</span>'
            if content.endswith("</p>"):
                content = content[:-4] + qed + "</p>"
            else:
                content += qed
            return f'<div class="latex-proof">{content}</div>'

        base = name.rstrip("*")
        label = html.escape(theorems.get(base, base.capitalize()))
        if not name.endswith("*"):
            self._counters[base] = self._counters.get(base, 0) + 1
            label = f"{label} {self._counters[base]}"
        suffix = f" ({self._formatter.format(title)})" if title else ""
        head = f'<strong class="theorem-head">{label}</strong>{suffix}. '
        return (
            f'<div class="latex-theorem latex-{re.sub(r"[^A-Za-z0-9_-]", "", base)}">'
            f"{self._prepend(head, self._formatter.paragraphs(body))}</div>"
        )

    def _take_title(self, body: str) -> tuple[str | None, str]:
        try:
            title = read_group(body, 0, "[")
        except UnterminatedGroupError:
            title = None
        if title is None:
            return None, body
        return title.content.strip(), body[title.end :]

    @staticmethod
    def _prepend(head: str, content: str) -> str:
        """Put ``head`` at the start of the first paragraph."""
        if content.startswith("<p>"):
            return "<p>" + head + content[3:]
        return f"<p>{head}</p>{content}"
