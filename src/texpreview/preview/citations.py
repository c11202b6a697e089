r"""Two-pass citation resolver.

Pass 1 collects every ``\bibitem`` across all bibliography environments and
numbers the keys in first-seen order, building the bibliography fragment.
Pass 2 rewrites citation commands into bracketed numeric labels. Because
numbering is finished before any citation is rewritten, a citation that
appears before its bibliography entry still resolves.
"""

import html
import re
from dataclasses import dataclass, field

from texpreview.preview.blocks import BlockTable
from texpreview.preview.formatting import InlineFormatter
from texpreview.preview.scanner import UnterminatedGroupError, find_environment
from texpreview.utils.logging import get_logger

logger = get_logger(__name__)

UNKNOWN_CITATION = "?"

_BIBITEM_RE = re.compile(r"\\bibitem\s*(?:\[[^\]]*\])?\s*\{([^}]*)\}")
_CITE_RE = re.compile(
    r"\\(?:cite|citep|citet|citealp|citealt|citeauthor|citeyear|parencite|textcite|autocite)"
    r"\*?\s*(?:\[[^\]]*\]\s*){0,2}\{([^}]*)\}"
)
_REF_HALLUCINATION_RE = re.compile(r"\(\s*(ref\\?_?\d+(?:\s*,\s*ref\\?_?\d+)*)\s*\)", re.IGNORECASE)
_BIB_COMMANDS_RE = re.compile(r"\\(?:bibliography|bibliographystyle|nocite)\s*\{[^}]*\}")


def normalize_key(key: str) -> str:
    """Canonical form of a citation key."""
    return key.strip().replace("\\_", "_")


@dataclass
class CitationResult:
    """Output of citation resolution."""

    markup: str
    bibliography_html: str | None
    citation_map: dict[str, int] = field(default_factory=dict)
    unresolved: list[str] = field(default_factory=list)


class CitationResolver:
    """Resolve citations against the document's own bibliography."""

    def __init__(self, formatter: InlineFormatter | None = None) -> None:
        self._formatter = formatter or InlineFormatter()

    def resolve(self, markup: str, blocks: BlockTable | None = None) -> CitationResult:
        """Number bibliography entries and rewrite citations.

        Args:
            markup: Document markup (math already extracted)
            blocks: Block table whose tokens should be absorbed into the
                bibliography fragment

        Returns:
            CitationResult with rewritten markup and the bibliography
            fragment (None when the document has no bibliography)
        """
        citation_map: dict[str, int] = {}
        entries: list[tuple[int, str]] = []

        # Pass 1: collect bibliography entries
        remaining = markup
        while True:
            try:
                env = find_environment(remaining, "thebibliography")
            except UnterminatedGroupError:
                logger.warning("Unterminated bibliography environment left in place")
                break
            if env is None:
                break
            body = env.body(remaining)
            for key, text in self._split_items(body):
                if key in citation_map:
                    continue
                citation_map[key] = len(citation_map) + 1
                entries.append((citation_map[key], text))
            remaining = remaining[: env.start] + remaining[env.end :]

        remaining = _BIB_COMMANDS_RE.sub("", remaining)

        # Pass 2: rewrite citations
        unresolved: list[str] = []

        def _label(keys: list[str]) -> str:
            numbers: list[int] = []
            unknown = 0
            for raw in keys:
                key = normalize_key(raw)
                if not key:
                    continue
                if key in citation_map:
                    numbers.append(citation_map[key])
                else:
                    unknown += 1
                    unresolved.append(key)
            parts = [str(n) for n in sorted(set(numbers))] + [UNKNOWN_CITATION] * unknown
            return "[" + ", ".join(parts or [UNKNOWN_CITATION]) + "]"

        remaining = _CITE_RE.sub(lambda m: _label(m.group(1).split(",")), remaining)
        remaining = _REF_HALLUCINATION_RE.sub(lambda m: _label(m.group(1).split(",")), remaining)
        remaining = re.sub(
            r"\\ref\s*\{(ref_\d+)\}", lambda m: _label([m.group(1)]), remaining, flags=re.IGNORECASE
        )

        if unresolved:
            logger.info("Unresolved citations", count=len(unresolved), keys=unresolved[:10])

        bibliography_html = None
        if entries:
            items = "".join(
                f'<li><span class="bib-label">[{number}]</span> {text}</li>'
                for number, text in entries
            )
            bibliography_html = (
                '<div class="bibliography"><h2>References</h2>'
                f'<ul class="bib-list">{items}</ul></div>'
            )
            if blocks is not None:
                bibliography_html = blocks.absorb(bibliography_html)

        return CitationResult(
            markup=remaining,
            bibliography_html=bibliography_html,
            citation_map=citation_map,
            unresolved=unresolved,
        )

    def _split_items(self, body: str) -> list[tuple[str, str]]:
        """Split a bibliography body into (key, formatted text) pairs."""
        matches = list(_BIBITEM_RE.finditer(body))
        items: list[tuple[str, str]] = []
        for i, match in enumerate(matches):
            end = matches[i + 1].start() if i + 1 < len(matches) else len(body)
            text = body[match.end() : end]
            text = re.sub(r"\\newblock\b", " ", text)
            text = " ".join(text.split())
            key = normalize_key(match.group(1))
            items.append((key, self._formatter.format(text) if text else html.escape(key)))
        return items


def resolve_citations(markup: str) -> tuple[str, str | None]:
    """Resolve citations with a default resolver."""
    result = CitationResolver().resolve(markup)
    return result.markup, result.bibliography_html
