"""Utility modules for the preview service.

Components:
- logging: Structured logging with contextvars
- errors: Custom exception classes
- metrics: Prometheus-compatible metrics
"""

from texpreview.utils.errors import (
    PREVIEW_REASSURANCE,
    ConfigurationError,
    IntegrityError,
    PreviewError,
    RateLimitError,
    RenderError,
    TexPreviewError,
    ValidationError,
)
from texpreview.utils.logging import bind_context, clear_context, get_logger, setup_logging
from texpreview.utils.metrics import (
    MetricsMiddleware,
    MetricsRegistry,
    get_metrics,
    record_extraction,
    record_layout_shrink,
    record_preview_render,
    record_request,
)

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    # Errors
    "PREVIEW_REASSURANCE",
    "TexPreviewError",
    "ValidationError",
    "ConfigurationError",
    "RateLimitError",
    "PreviewError",
    "IntegrityError",
    "RenderError",
    # Metrics
    "MetricsRegistry",
    "MetricsMiddleware",
    "get_metrics",
    "record_request",
    "record_preview_render",
    "record_extraction",
    "record_layout_shrink",
]
