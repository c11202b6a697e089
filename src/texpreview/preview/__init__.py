"""Preview sanitizer and renderer for generated LaTeX-like papers.

Turns untrusted markup into a safe HTML preview tree.

Components:
- healer: Pre-parse repairs for generated markup
- extraction: Extractor orchestration (math, tables, lists, diagrams, ...)
- citations: Two-pass citation resolver
- diagrams: Diagram layout heuristic and sandbox builder
- preamble: Metadata extraction and safe preamble
- gatekeeper: Environment balance check
- splice: Typeset-and-splice renderer
- layout: Post-layout shrink pass
- pipeline: End-to-end entry points
"""

from texpreview.preview.blocks import (
    TOKEN_PATTERN,
    BlockKind,
    BlockTable,
    PlaceholderCounter,
    find_tokens,
    token_kind,
)
from texpreview.preview.citations import CitationResolver, CitationResult, resolve_citations
from texpreview.preview.diagrams import (
    DiagramLayout,
    DiagramSignals,
    LayoutIntent,
    layout_diagram,
    plan_layout,
)
from texpreview.preview.extraction import ExtractionEngine, ExtractionResult, extract
from texpreview.preview.formatting import InlineFormatter, format_inline
from texpreview.preview.gatekeeper import IntegrityGatekeeper, IntegrityReport
from texpreview.preview.healer import DocumentHealer, HealResult, heal
from texpreview.preview.layout import (
    CharacterWidthMeasurer,
    LayoutReport,
    LayoutTicket,
    PreviewSurface,
    WidthMeasurer,
)
from texpreview.preview.math import MathRenderer, render_math
from texpreview.preview.pipeline import (
    PreviewOutcome,
    PreviewPipeline,
    RenderedPreview,
    sanitize_and_render,
)
from texpreview.preview.preamble import DocumentMetadata, PreambleRewriter
from texpreview.preview.splice import SpliceRenderer
from texpreview.preview.typesetter import DocumentRenderer, LatexTreeRenderer

__all__ = [
    # Tokens
    "TOKEN_PATTERN",
    "BlockKind",
    "BlockTable",
    "PlaceholderCounter",
    "find_tokens",
    "token_kind",
    # Healing and extraction
    "DocumentHealer",
    "HealResult",
    "heal",
    "ExtractionEngine",
    "ExtractionResult",
    "extract",
    "InlineFormatter",
    "format_inline",
    "MathRenderer",
    "render_math",
    "CitationResolver",
    "CitationResult",
    "resolve_citations",
    # Diagrams
    "DiagramLayout",
    "DiagramSignals",
    "LayoutIntent",
    "layout_diagram",
    "plan_layout",
    # Rendering
    "DocumentMetadata",
    "PreambleRewriter",
    "IntegrityGatekeeper",
    "IntegrityReport",
    "DocumentRenderer",
    "LatexTreeRenderer",
    "SpliceRenderer",
    "CharacterWidthMeasurer",
    "LayoutReport",
    "LayoutTicket",
    "PreviewSurface",
    "WidthMeasurer",
    # Pipeline
    "PreviewOutcome",
    "PreviewPipeline",
    "RenderedPreview",
    "sanitize_and_render",
]
