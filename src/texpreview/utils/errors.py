"""Custom exception classes.

Every error carries a machine-readable code, an HTTP status and optional
details so API handlers can serialize it with ``to_dict()``.
"""

from typing import Any

PREVIEW_REASSURANCE = (
    "The preview uses a simplified browser renderer. "
    "Your LaTeX source will still compile perfectly."
)


class TexPreviewError(Exception):
    """Base exception for the preview service."""

    error_code: str = "TEXPREVIEW_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for an API error response."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(TexPreviewError):
    """Invalid request input."""

    error_code = "VALIDATION_ERROR"
    status_code = 400


class ConfigurationError(TexPreviewError):
    """Invalid or missing configuration."""

    error_code = "CONFIGURATION_ERROR"
    status_code = 500


class RateLimitError(TexPreviewError):
    """Client exceeded the request rate limit."""

    error_code = "RATE_LIMIT_EXCEEDED"
    status_code = 429


class PreviewError(TexPreviewError):
    """Document-level failure that aborts a preview render.

    The reassurance hint is always attached so the caller can show that the
    compiled document is unaffected.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        details = dict(details or {})
        details.setdefault("hint", PREVIEW_REASSURANCE)
        super().__init__(message, details)


class IntegrityError(PreviewError):
    """Reduced markup has unbalanced environments (likely truncated input)."""

    error_code = "CONTENT_INTEGRITY"
    status_code = 422


class RenderError(PreviewError):
    """The document renderer rejected the reduced markup."""

    error_code = "RENDER_ERROR"
    status_code = 502
