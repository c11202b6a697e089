"""Base class for construct extractors.

Provides common functionality including:
- Access to the per-document block table and inline formatter
- Token registration with block or inline spacing
- Extraction counts for metrics
- Logging
"""

from abc import ABC, abstractmethod

from texpreview.config import Settings, get_settings
from texpreview.preview.blocks import BlockKind, BlockTable
from texpreview.preview.formatting import InlineFormatter
from texpreview.utils.logging import get_logger


class BaseExtractor(ABC):
    """Abstract base class for all extractors.

    Subclasses must implement:
    - extract(): Replace constructs in the markup with tokens
    - construct: Short name used in logs and metrics
    """

    construct: str = "block"

    def __init__(
        self,
        blocks: BlockTable,
        formatter: InlineFormatter,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the extractor.

        Args:
            blocks: Block table owned by the current sanitize call
            formatter: Inline formatter for text inside fragments
            settings: Settings to use (default: cached settings)
        """
        self._blocks = blocks
        self._formatter = formatter
        self._settings = settings or get_settings()
        self._logger = get_logger(self.__class__.__name__)
        self.extracted = 0

    @abstractmethod
    def extract(self, markup: str) -> str:
        """Return ``markup`` with this extractor's constructs tokenized."""

    def _register(self, kind: BlockKind, fragment: str, block: bool = True) -> str:
        """Store a fragment and return the text that replaces the construct.

        Block fragments are surrounded by blank lines so they end up alone in
        their own paragraph.
        """
        self.extracted += 1
        token = self._blocks.register(kind, fragment)
        return f"\n\n{token}\n\n" if block else token
