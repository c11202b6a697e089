r"""Preamble rewriter.

Generated documents load arbitrary packages and define macros the browser
typesetter does not know. The rewriter keeps only the document metadata and
body and wraps them in a minimal, known-good preamble rendered from
``templates/preamble.tex``.
"""

import re
from dataclasses import dataclass
from datetime import date
from typing import Any

from texpreview.preview.scanner import UnterminatedGroupError, command_pattern, find_group_end, read_group
from texpreview.preview.templating import render_template
from texpreview.utils.logging import get_logger

logger = get_logger(__name__)

PREAMBLE_TEMPLATE = "preamble.tex"

# Commands removed together with all of their arguments when a document has
# no explicit body
PREAMBLE_COMMANDS = (
    "documentclass",
    "usepackage",
    "RequirePackage",
    "usetikzlibrary",
    "usepgfplotslibrary",
    "pgfplotsset",
    "tikzset",
    "title",
    "author",
    "date",
    "newcommand",
    "renewcommand",
    "providecommand",
    "DeclareMathOperator",
    "newtheorem",
    "theoremstyle",
    "newenvironment",
    "renewenvironment",
    "newcolumntype",
    "setlength",
    "geometry",
    "hypersetup",
    "graphicspath",
    "bibliographystyle",
)

_BEGIN_DOCUMENT_RE = re.compile(r"\\begin\s*\{document\}")
_END_DOCUMENT_RE = re.compile(r"\\end\s*\{document\}")
_MAKETITLE_RE = re.compile(r"\\maketitle(?![A-Za-z])")


@dataclass(frozen=True)
class DocumentMetadata:
    """Front matter read from the preamble."""

    title: str = ""
    author: str = ""
    date: str = ""

    @property
    def has_title(self) -> bool:
        return bool(self.title)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"title": self.title, "author": self.author, "date": self.date}


def format_today(today: date | None = None) -> str:
    """Long-form date as printed by ``\\today`` (``October 19, 2026``)."""
    today = today or date.today()
    return f"{today:%B} {today.day}, {today.year}"


def remove_command(text: str, name: str) -> str:
    """Remove ``\\name`` with every ``[..]``/``{..}`` argument that follows it.

    Arguments are read by balanced scan; an unterminated argument ends the
    removal at the command name.
    """
    pattern = re.compile(r"\\" + re.escape(name) + r"\*?(?![A-Za-z])")
    out: list[str] = []
    pos = 0
    for match in pattern.finditer(text):
        if match.start() < pos:
            continue
        end = match.end()
        # \newcommand{\foo} and \newcommand\foo both name the macro first
        bare = re.match(r"\s*\\[A-Za-z@]+", text[end:])
        if bare is not None and name in ("newcommand", "renewcommand", "providecommand", "DeclareMathOperator"):
            end += bare.end()
        while True:
            lookahead = end
            while lookahead < len(text) and text[lookahead] in " \t":
                lookahead += 1
            if lookahead >= len(text) or text[lookahead] not in "[{":
                break
            try:
                end = find_group_end(text, lookahead)
            except UnterminatedGroupError:
                break
        out.append(text[pos : match.start()])
        pos = end
    out.append(text[pos:])
    return "".join(out)


class PreambleRewriter:
    """Replace the document preamble with a minimal one."""

    def __init__(self, today: date | None = None) -> None:
        self._today = today

    def rewrite(self, markup: str) -> tuple[str, DocumentMetadata]:
        """Split off metadata and rewrap the body.

        Args:
            markup: Reduced markup (tokens in place)

        Returns:
            Tuple of (markup with the safe preamble, metadata)
        """
        metadata = DocumentMetadata(
            title=self._metadata_value(markup, "title"),
            author=self._metadata_value(markup, "author"),
            date=self._metadata_value(markup, "date"),
        )

        begin = _BEGIN_DOCUMENT_RE.search(markup)
        if begin is not None:
            body = markup[begin.end() :]
            end = _END_DOCUMENT_RE.search(body)
            if end is not None:
                body = body[: end.start()]
            else:
                logger.info("Document has no end marker, treating rest as body")
        else:
            body = markup
            for name in PREAMBLE_COMMANDS:
                body = remove_command(body, name)
            body = _END_DOCUMENT_RE.sub("", body)

        for name in ("title", "author", "date"):
            body = remove_command(body, name)
        body = _MAKETITLE_RE.sub("", body)

        rewritten = render_template(
            PREAMBLE_TEMPLATE,
            title=metadata.title,
            author=metadata.author,
            date=metadata.date,
            has_title=metadata.has_title,
            body=body.strip(),
        )
        return rewritten, metadata

    def _metadata_value(self, markup: str, name: str) -> str:
        r"""Read ``\name{..}`` by balanced scan and normalize it."""
        match = command_pattern(name).search(markup)
        if match is None:
            return ""
        pos = match.end()
        try:
            # Short title in \title[short]{long}
            short = read_group(markup, pos, "[")
            if short is not None:
                pos = short.end
            group = read_group(markup, pos)
        except UnterminatedGroupError:
            logger.warning("Unterminated metadata command", command=name)
            return ""
        if group is None:
            return ""

        value = remove_command(group.content, "thanks")
        value = re.sub(r"\\today(?![A-Za-z])", format_today(self._today), value)
        value = re.sub(r"\s*\\and(?![A-Za-z])\s*", ", ", value)
        return " ".join(value.split())
