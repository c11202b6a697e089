r"""Extraction engine.

Runs the extractors in a fixed order over a healed document and returns the
reduced markup together with the block table. The order matters because
later extractors assume earlier ones have already removed constructs that
would confuse them:

1. Heal the raw document (fences, literal newlines, fragmented math).
2. Diagrams, because picture bodies contain characters a math scanner
   would misread.
3. Images.
4. Code, so dollar signs and braces inside listings stay literal.
5. Math, before citations and tables, so formulas inside bibliography
   entries and table cells are already tokens when those are split.
6. Citations and the bibliography.
7. Abstract and keywords.
8. Tables.
9. Lists, innermost first.
10. Algorithms.
11. Boxes.
12. Quoted, aligned and theorem-like environments.
13. Command stripping (references, footnotes, spacing and page breaks).
"""

import re
import time
from dataclasses import dataclass, field
from typing import Any

from texpreview.config import Settings, get_settings
from texpreview.preview.algorithms import AlgorithmExtractor
from texpreview.preview.base import BaseExtractor
from texpreview.preview.blocks import BlockKind, BlockTable
from texpreview.preview.citations import CitationResolver
from texpreview.preview.environments import (
    AbstractExtractor,
    BlockEnvironmentExtractor,
    BoxExtractor,
    CodeExtractor,
    DiagramExtractor,
    ImageExtractor,
)
from texpreview.preview.formatting import InlineFormatter
from texpreview.preview.healer import DocumentHealer
from texpreview.preview.lists import ListExtractor
from texpreview.preview.math import STRUCTURED_ENVIRONMENTS, MathRenderer
from texpreview.preview.scanner import (
    UnterminatedGroupError,
    bounded,
    find_environment,
    replace_command,
)
from texpreview.preview.tables import TableExtractor
from texpreview.utils.logging import get_logger
from texpreview.utils.metrics import record_extraction

logger = get_logger(__name__)


@dataclass
class ExtractionResult:
    """Reduced markup plus everything extracted from it."""

    reduced: str
    blocks: BlockTable
    bibliography_html: str | None = None
    stats: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (without the markup itself)."""
        return {
            "blocks": len(self.blocks),
            "tokens_issued": self.blocks.issued,
            "kinds": self.blocks.kind_counts(),
            "has_bibliography": self.bibliography_html is not None,
            "stats": dict(self.stats),
            "warnings": list(self.warnings),
            "duration_ms": round(self.duration_ms, 2),
        }


# =============================================================================
# Math
# =============================================================================

# Openers may follow an even run of backslashes (a row break such as \\$x$)
_OPEN = r"(?<!\\)((?:\\\\)*)"
_DISPLAY_BRACKET_RE = re.compile(_OPEN + r"\\\[(.+?)(?<!\\)\\\]", re.DOTALL)
_INLINE_PAREN_RE = re.compile(_OPEN + r"\\\((.+?)(?<!\\)\\\)", re.DOTALL)
_DOUBLE_DOLLAR_RE = re.compile(_OPEN + r"\$\$((?:\\.|[^\\])+?)\$\$", re.DOTALL)
_SINGLE_DOLLAR_RE = re.compile(r"(?<![\\$])((?:\\\\)*)\$((?:\\.|[^$\\])+?)\$")


class MathExtractor(BaseExtractor):
    """Render math and replace it with tokens.

    Display math becomes a block token, inline math a bare token so the
    surrounding sentence stays in one paragraph.
    """

    construct = "math"

    def __init__(self, *args: Any, math: MathRenderer, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._math = math

    def extract(self, markup: str) -> str:
        markup = self._extract_structured(markup)
        markup = _DISPLAY_BRACKET_RE.sub(lambda m: m.group(1) + self._display(m.group(2)), markup)
        markup = _INLINE_PAREN_RE.sub(lambda m: m.group(1) + self._inline(m.group(2)), markup)
        markup = _DOUBLE_DOLLAR_RE.sub(lambda m: m.group(1) + self._display(m.group(2)), markup)
        return _SINGLE_DOLLAR_RE.sub(lambda m: m.group(1) + self._inline(m.group(2)), markup)

    def _extract_structured(self, markup: str) -> str:
        for base in STRUCTURED_ENVIRONMENTS:
            for name in (base, f"{base}*"):
                for _ in bounded(self._settings.environment_iteration_cap, name):
                    try:
                        env = find_environment(markup, name)
                    except UnterminatedGroupError:
                        self._logger.warning("Unterminated math environment left in place", environment=name)
                        break
                    if env is None:
                        break
                    fragment = self._math.render(markup[env.start : env.end], display_mode=True)
                    markup = markup[: env.start] + self._register(BlockKind.MATH, fragment) + markup[env.end :]
        return markup

    def _display(self, expr: str) -> str:
        return self._register(BlockKind.MATH, self._math.render(expr, display_mode=True))

    def _inline(self, expr: str) -> str:
        return self._register(BlockKind.MATH, self._math.render(expr, display_mode=False), block=False)


# =============================================================================
# Command Stripping
# =============================================================================

_DROPPED_COMMANDS_RE = re.compile(
    r"\\(?:tableofcontents|listoffigures|listoftables|newpage|clearpage|pagebreak"
    r"|noindent|centering|medskip|bigskip|smallskip|FloatBarrier)(?![A-Za-z])"
)
_SPACING_RE = re.compile(r"\\[vh]space\*?\s*\{[^}]*\}")


def strip_commands(markup: str) -> str:
    """Rewrite references and footnotes and drop layout-only commands."""
    markup = _DROPPED_COMMANDS_RE.sub("", markup)
    markup = _SPACING_RE.sub("", markup)
    markup = replace_command(markup, "label", 1, lambda _a, _o: "")
    markup = replace_command(markup, "eqref", 1, lambda a, _o: f"({a[0].strip()})")
    markup = replace_command(markup, "ref", 1, lambda a, _o: f"[{a[0].strip()}]")
    markup = replace_command(markup, "pageref", 1, lambda a, _o: f"[{a[0].strip()}]")
    markup = replace_command(markup, "autoref", 1, lambda a, _o: f"[{a[0].strip()}]")
    return replace_command(markup, "footnote", 1, lambda a, _o: f" ({a[0].strip()})")


# =============================================================================
# Engine
# =============================================================================


class ExtractionEngine:
    """Reduce a raw document to typesetter-safe markup plus a block table."""

    def __init__(
        self,
        settings: Settings | None = None,
        math: MathRenderer | None = None,
        healer: DocumentHealer | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._math = math or MathRenderer(self._settings)
        self._formatter = InlineFormatter(self._math)
        self._healer = healer or DocumentHealer()

    def extract(self, raw: str) -> ExtractionResult:
        """Run every extractor over ``raw`` in order.

        Args:
            raw: Untrusted document markup

        Returns:
            ExtractionResult whose block table holds exactly the tokens left
            in the reduced markup
        """
        start = time.perf_counter()
        blocks = BlockTable()
        healed = self._healer.heal(raw)
        markup = healed.content

        def make(cls: type[BaseExtractor], **kwargs: Any) -> BaseExtractor:
            return cls(blocks, self._formatter, self._settings, **kwargs)

        stats: dict[str, int] = {}

        def run(extractor: BaseExtractor) -> None:
            nonlocal markup
            markup = extractor.extract(markup)
            stats[extractor.construct] = extractor.extracted
            if extractor.extracted:
                record_extraction(extractor.construct, extractor.extracted)

        run(make(DiagramExtractor))
        run(make(ImageExtractor))
        run(make(CodeExtractor))
        run(make(MathExtractor, math=self._math))

        citations = CitationResolver(self._formatter).resolve(markup, blocks)
        markup = citations.markup
        stats["citation"] = len(citations.citation_map)

        run(make(AbstractExtractor))
        run(make(TableExtractor))
        run(make(ListExtractor))
        run(make(AlgorithmExtractor))
        run(make(BoxExtractor))
        run(make(BlockEnvironmentExtractor))

        markup = strip_commands(markup)

        warnings = list(healed.warnings)
        if citations.unresolved:
            warnings.append(f"{len(citations.unresolved)} citation(s) could not be resolved")

        result = ExtractionResult(
            reduced=markup,
            blocks=blocks,
            bibliography_html=citations.bibliography_html,
            stats=stats,
            warnings=warnings,
            duration_ms=(time.perf_counter() - start) * 1000,
        )
        logger.info(
            "Extraction complete",
            blocks=len(blocks),
            tokens_issued=blocks.issued,
            has_bibliography=result.bibliography_html is not None,
            duration_ms=round(result.duration_ms, 2),
        )
        return result


def extract(raw: str) -> ExtractionResult:
    """Extract with an engine built from the current settings."""
    return ExtractionEngine().extract(raw)
