r"""Table extraction.

Handles ``table``/``table*`` floats (caption plus inner tabular) and
standalone ``tabular``, ``tabularx`` and ``longtable`` environments.

Row and cell splitting happen at brace depth 0 only. Generated markup often
double-escapes commands inside cells (``\\&`` meaning a literal ampersand),
so a ``\\`` only counts as a row break when followed by whitespace, ``[``,
another backslash or the end of the body; any other ``\\x`` is normalized
to the single-escaped ``\x``.
"""

import html
import re

from texpreview.preview.base import BaseExtractor
from texpreview.preview.blocks import BlockKind
from texpreview.preview.scanner import (
    UnterminatedGroupError,
    bounded,
    find_environment,
    first_environment,
    read_arguments,
    read_group,
)


TABULAR_ENVIRONMENTS = ("tabular", "tabularx", "longtable")
FLOAT_ENVIRONMENTS = ("table", "table*")

PARSE_FAILED = '<div class="table-wrapper table-error">[Table Body - Parse Failed]</div>'

_RULE_RE = re.compile(
    r"\\(?:hline|toprule|midrule|bottomrule)(?![A-Za-z])"
    r"|\\cline\s*\{[^}]*\}"
    r"|\\cmidrule\s*(?:\([^)]*\))?\s*\{[^}]*\}"
)
_DOUBLE_ESCAPED = "&%#_"


# =============================================================================
# Row and Cell Splitting
# =============================================================================


def split_rows(body: str) -> list[str]:
    """Split a tabular body into rows."""
    rows: list[str] = []
    current: list[str] = []
    depth = 0
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\":
            nxt = body[i + 1] if i + 1 < len(body) else ""
            if nxt == "\\":
                after = body[i + 2] if i + 2 < len(body) else ""
                if after and after in _DOUBLE_ESCAPED:
                    # Double-escaped special: \\& -> \&
                    current.append("\\")
                    i += 2
                    continue
                if depth == 0:
                    rows.append("".join(current))
                    current = []
                    i += 2
                    # Drop a spacing argument such as \\[2pt]
                    spacing = re.match(r"\s*\[[^\]]*\]", body[i:])
                    if spacing:
                        i += spacing.end()
                    continue
            current.append(body[i : i + 2])
            i += 2
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        current.append(ch)
        i += 1
    rows.append("".join(current))
    return rows


def split_cells(row: str) -> list[str]:
    """Split a row into cells at depth-0 ampersands."""
    row = row.replace("\\\\&", "\\&")
    cells: list[str] = []
    current: list[str] = []
    depth = 0
    i = 0
    while i < len(row):
        ch = row[i]
        if ch == "\\":
            current.append(row[i : i + 2])
            i += 2
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        if ch == "&" and depth == 0:
            cells.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
        i += 1
    cells.append("".join(current).strip())
    return cells


# =============================================================================
# Extractor
# =============================================================================


class TableExtractor(BaseExtractor):
    """Replace tables with placeholder tokens."""

    construct = "table"

    def extract(self, markup: str) -> str:
        """Extract float tables first, then standalone tabulars."""
        markup = self._extract_floats(markup)
        return self._extract_tabulars(markup)

    @property
    def _cap(self) -> int:
        return self._settings.environment_iteration_cap

    def _extract_floats(self, markup: str) -> str:
        for _ in bounded(self._cap, "table"):
            name = first_environment(markup, FLOAT_ENVIRONMENTS)
            if name is None:
                break
            try:
                env = find_environment(markup, name)
            except UnterminatedGroupError:
                markup = self._fail_unterminated(markup, name)
                continue
            if env is None:
                break
            fragment = self._render_float(env.body(markup))
            markup = markup[: env.start] + self._register(BlockKind.TABLE, fragment) + markup[env.end :]
        return markup

    def _extract_tabulars(self, markup: str) -> str:
        for _ in bounded(self._cap, "tabular"):
            name = first_environment(markup, TABULAR_ENVIRONMENTS)
            if name is None:
                break
            try:
                env = find_environment(markup, name)
            except UnterminatedGroupError:
                markup = self._fail_unterminated(markup, name)
                continue
            if env is None:
                break
            fragment = self._render_tabular(name, env.body(markup))
            if fragment is None:
                fragment = PARSE_FAILED
            else:
                fragment = f'<div class="table-wrapper">{fragment}</div>'
            markup = markup[: env.start] + self._register(BlockKind.TABLE, fragment) + markup[env.end :]
        return markup

    def _fail_unterminated(self, markup: str, name: str) -> str:
        """Replace an unclosed begin marker with a failure fragment."""
        self._logger.warning("Unterminated table environment", environment=name)
        marker = re.search(r"\\begin\s*\{" + re.escape(name) + r"\}", markup)
        if marker is None:
            return markup
        return markup[: marker.start()] + self._register(BlockKind.TABLE, PARSE_FAILED) + markup[marker.end() :]

    def _render_float(self, body: str) -> str:
        caption_html = ""
        caption = re.search(r"\\caption\*?(?![A-Za-z])", body)
        if caption is not None:
            try:
                parsed = read_arguments(body, caption.end(), 1, optional=True)
            except UnterminatedGroupError:
                parsed = None
            if parsed is not None:
                text = parsed[0][0].strip()
                caption_html = f'<div class="table-caption">{self._formatter.format(text)}</div>'

        name = first_environment(body, TABULAR_ENVIRONMENTS)
        table_html: str | None = None
        if name is not None:
            try:
                inner = find_environment(body, name)
            except UnterminatedGroupError:
                inner = None
            if inner is not None:
                table_html = self._render_tabular(name, inner.body(body))

        if table_html is None:
            self._logger.warning("Table float without a parsable tabular")
            table_html = '<div class="table-error">[Table Body - Parse Failed]</div>'
        return f'<div class="table-wrapper">{caption_html}{table_html}</div>'

    def _render_tabular(self, name: str, body: str) -> str | None:
        """Render a tabular body (column spec still attached) as a table."""
        try:
            pos = 0
            position = read_group(body, pos, "[")
            if position is not None:
                pos = position.end
            if name == "tabularx":
                width = read_group(body, pos)
                if width is not None:
                    pos = width.end
            spec = read_group(body, pos)
            if spec is not None:
                pos = spec.end
            rows_html = self._render_rows(body[pos:])
        except Exception as e:
            self._logger.warning("Table parse failed", environment=name, error=str(e))
            return None
        return f"<table><tbody>{rows_html}</tbody></table>"

    def _render_rows(self, body: str) -> str:
        out: list[str] = []
        for row in split_rows(body):
            cleaned = _RULE_RE.sub("", row)
            cleaned = re.sub(r"\\(?:endhead|endfirsthead|endfoot|endlastfoot)(?![A-Za-z])", "", cleaned)
            if not cleaned.strip():
                continue
            cells = "".join(self._render_cell(cell) for cell in split_cells(cleaned))
            out.append(f"<tr>{cells}</tr>")
        return "".join(out)

    def _render_cell(self, cell: str) -> str:
        multicol = re.match(r"\\multicolumn(?![A-Za-z])", cell)
        if multicol is not None:
            parsed = read_arguments(cell, multicol.end(), 3)
            if parsed is not None:
                (span, _spec, content), _opt, _end = parsed
                span_attr = html.escape(span.strip(), quote=True)
                return f'<td colspan="{span_attr}">{self._formatter.format(content.strip())}</td>'
        multirow = re.match(r"\\multirow(?![A-Za-z])", cell)
        if multirow is not None:
            parsed = read_arguments(cell, multirow.end(), 3)
            if parsed is not None:
                (_rows, _width, content), _opt, _end = parsed
                return f"<td>{self._formatter.format(content.strip())}</td>"
        return f"<td>{self._formatter.format(cell)}</td>"
