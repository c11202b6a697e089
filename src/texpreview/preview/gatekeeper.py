r"""Content integrity gatekeeper.

Truncated documents (a generator that stopped mid-table, say) leave
``\begin`` markers without their ``\end``. The typesetter would either fail
obscurely or render half a document, so unbalanced input is rejected up
front with an explicit error. A small tolerance absorbs stray markers in
otherwise healthy documents.
"""

import re
from dataclasses import dataclass
from typing import Any

from texpreview.config import get_settings
from texpreview.utils.errors import IntegrityError
from texpreview.utils.logging import get_logger

logger = get_logger(__name__)

_BEGIN_RE = re.compile(r"\\begin\s*\{")
_END_RE = re.compile(r"\\end\s*\{")


@dataclass(frozen=True)
class IntegrityReport:
    """Environment marker counts for a checked document."""

    begins: int
    ends: int

    @property
    def imbalance(self) -> int:
        return abs(self.begins - self.ends)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"begins": self.begins, "ends": self.ends, "imbalance": self.imbalance}


class IntegrityGatekeeper:
    """Reject reduced markup whose environments are badly unbalanced."""

    def __init__(self, tolerance: int | None = None) -> None:
        self.tolerance = get_settings().gatekeeper_tolerance if tolerance is None else tolerance

    def count(self, reduced: str) -> IntegrityReport:
        """Count environment markers without judging them."""
        return IntegrityReport(
            begins=len(_BEGIN_RE.findall(reduced)),
            ends=len(_END_RE.findall(reduced)),
        )

    def check(self, reduced: str) -> IntegrityReport:
        """Check marker balance.

        Raises:
            IntegrityError: If the imbalance exceeds the tolerance
        """
        report = self.count(reduced)
        if report.imbalance > self.tolerance:
            logger.warning(
                "Unbalanced environments",
                begins=report.begins,
                ends=report.ends,
                tolerance=self.tolerance,
            )
            raise IntegrityError(
                "Content Integrity Error: Unbalanced LaTeX environments detected "
                f"(Begin: {report.begins}, End: {report.ends}). "
                "This usually indicates content truncation.",
                details=report.to_dict(),
            )
        return report
