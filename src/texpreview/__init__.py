"""Safe browser preview for AI-generated LaTeX papers."""

__version__ = "0.1.0"
