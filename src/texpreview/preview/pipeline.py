"""Preview pipeline.

Wires the stages together:

    raw markup
      -> ExtractionEngine     (heal, tokenize, render fragments)
      -> PreambleRewriter     (metadata + safe preamble)
      -> IntegrityGatekeeper  (reject truncated documents)
      -> SpliceRenderer       (typeset, splice fragments back)
      -> PreviewSurface       (attach, post-layout shrink pass)

:class:`PreviewPipeline` raises :class:`~texpreview.utils.errors.PreviewError`
subclasses for document-level failures; :func:`sanitize_and_render` is the
never-raising entry point that turns them into an error outcome.
"""

import html
import time
from dataclasses import dataclass, field
from typing import Any

from bs4 import BeautifulSoup

from texpreview.config import Settings, get_settings
from texpreview.preview.extraction import ExtractionEngine, ExtractionResult
from texpreview.preview.gatekeeper import IntegrityGatekeeper, IntegrityReport
from texpreview.preview.layout import LayoutReport, PreviewSurface, WidthMeasurer
from texpreview.preview.preamble import DocumentMetadata, PreambleRewriter
from texpreview.preview.splice import SpliceRenderer, tree_root
from texpreview.preview.typesetter import DocumentRenderer
from texpreview.utils.errors import (
    PREVIEW_REASSURANCE,
    RenderError,
    TexPreviewError,
    ValidationError,
)
from texpreview.utils.logging import get_logger
from texpreview.utils.metrics import record_preview_render

logger = get_logger(__name__)


@dataclass
class RenderedPreview:
    """A successful render with everything that went into it."""

    tree: BeautifulSoup
    metadata: DocumentMetadata
    extraction: ExtractionResult
    integrity: IntegrityReport
    layout: LayoutReport
    duration_ms: float = 0.0

    @property
    def html(self) -> str:
        return str(tree_root(self.tree))

    @property
    def has_bibliography(self) -> bool:
        return self.extraction.bibliography_html is not None

    def stats(self) -> dict[str, Any]:
        """Render statistics for logs and API responses."""
        return {
            **self.extraction.to_dict(),
            "integrity": self.integrity.to_dict(),
            "layout": self.layout.to_dict(),
            "metadata": self.metadata.to_dict(),
            "duration_ms": round(self.duration_ms, 2),
        }


@dataclass
class PreviewOutcome:
    """Never-raising result of :func:`sanitize_and_render`."""

    html: str
    error: dict[str, Any] | None = None
    warnings: list[str] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "html": self.html,
            "error": self.error,
            "warnings": list(self.warnings),
            "stats": dict(self.stats),
        }


class PreviewPipeline:
    """Render untrusted markup into a safe preview tree."""

    def __init__(
        self,
        settings: Settings | None = None,
        renderer: DocumentRenderer | None = None,
        measurer: WidthMeasurer | None = None,
        surface: PreviewSurface | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._engine = ExtractionEngine(self._settings)
        self._preamble = PreambleRewriter()
        self._gatekeeper = IntegrityGatekeeper(self._settings.gatekeeper_tolerance)
        self._splice = SpliceRenderer(renderer)
        self.surface = surface or PreviewSurface(measurer, self._settings)

    def render(self, raw: str) -> RenderedPreview:
        """Run every stage on ``raw``.

        Args:
            raw: Untrusted document markup

        Returns:
            RenderedPreview whose tree is attached to this pipeline's surface

        Raises:
            ValidationError: If the document exceeds the configured size
            IntegrityError: If environments are badly unbalanced
            RenderError: If the document renderer fails
        """
        start = time.perf_counter()
        if len(raw) > self._settings.max_document_chars:
            raise ValidationError(
                f"Document too large ({len(raw)} characters)",
                details={"max_document_chars": self._settings.max_document_chars},
            )

        try:
            extraction = self._engine.extract(raw)
            reduced, metadata = self._preamble.rewrite(extraction.reduced)

            dropped = extraction.blocks.prune(reduced)
            if dropped:
                logger.info("Dropped blocks outside the document body", count=len(dropped))

            integrity = self._gatekeeper.check(reduced)
            tree = self._splice.render(reduced, extraction.blocks, extraction.bibliography_html)
            ticket = self.surface.attach(tree)
            layout = self.surface.run_layout(ticket)
        except TexPreviewError:
            record_preview_render("error", (time.perf_counter() - start) * 1000)
            raise
        except Exception as e:
            record_preview_render("error", (time.perf_counter() - start) * 1000)
            logger.error("Preview stage failed", error=str(e), exc_info=True)
            raise RenderError(f"Browser Render Error: {e}") from e

        duration_ms = (time.perf_counter() - start) * 1000
        record_preview_render("success", duration_ms, blocks=extraction.blocks.issued)
        logger.info(
            "Preview rendered",
            blocks=extraction.blocks.issued,
            has_bibliography=extraction.bibliography_html is not None,
            shrunk=layout.adjusted,
            duration_ms=round(duration_ms, 2),
        )
        return RenderedPreview(
            tree=tree,
            metadata=metadata,
            extraction=extraction,
            integrity=integrity,
            layout=layout,
            duration_ms=duration_ms,
        )


def error_fragment(error: TexPreviewError) -> str:
    """Inline error panel shown in place of the preview."""
    hint = error.details.get("hint", PREVIEW_REASSURANCE)
    return (
        '<div class="latex-preview-error" style="color: #b00020; padding: 1em;">'
        "<strong>Preview Error</strong>"
        f"<p>{html.escape(error.message)}</p>"
        f'<p class="hint">{html.escape(str(hint))}</p></div>'
    )


def sanitize_and_render(raw: str, pipeline: PreviewPipeline | None = None) -> PreviewOutcome:
    """Render ``raw`` without raising.

    Document-level failures produce an outcome whose ``error`` carries the
    message and the reassurance hint; its ``html`` is an error panel.
    """
    pipeline = pipeline or PreviewPipeline()
    try:
        rendered = pipeline.render(raw)
    except TexPreviewError as e:
        logger.warning("Preview failed", error=e.error_code, message=e.message)
        return PreviewOutcome(html=error_fragment(e), error=e.to_dict())
    except Exception as e:
        logger.error("Unexpected preview failure", error=str(e), exc_info=True)
        wrapped = RenderError(f"Browser Render Error: {e}")
        return PreviewOutcome(html=error_fragment(wrapped), error=wrapped.to_dict())

    return PreviewOutcome(
        html=rendered.html,
        warnings=list(rendered.extraction.warnings),
        stats=rendered.stats(),
    )
