"""Post-layout shrink pass.

Display math and tables can overflow the preview column. Once the final
tree is attached to a :class:`PreviewSurface`, a deferred pass measures
each candidate and scales the overflowing ones down:

    s = max(shrink_floor, client_width / scroll_width * safety_margin)

Every ``attach`` bumps a generation counter and hands back a
:class:`LayoutTicket`. A pass for an older ticket is a no-op, so when a new
document replaces the old one before the deferred pass runs, the pass
never touches the new tree with stale measurements.
"""

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Protocol

from bs4 import BeautifulSoup, Tag

from texpreview.config import Settings, get_settings
from texpreview.utils.logging import get_logger
from texpreview.utils.metrics import record_layout_shrink

logger = get_logger(__name__)

SHRINK_TARGETS = {
    "math-display": "left center",
    "table-wrapper": "left top",
}
AUTOSCALED_CLASS = "math-autoscale"
CELL_PADDING_PX = 16.0


class WidthMeasurer(Protocol):
    """Measures rendered widths of tree elements."""

    def client_width(self, element: Tag) -> float:
        """Width available to the element."""
        ...

    def scroll_width(self, element: Tag) -> float:
        """Width the element's content needs."""
        ...


class CharacterWidthMeasurer:
    """Estimate widths from character counts against a fixed container."""

    def __init__(self, container_width_px: float, char_width_px: float) -> None:
        self.container_width_px = container_width_px
        self.char_width_px = char_width_px

    def client_width(self, element: Tag) -> float:
        return self.container_width_px

    def scroll_width(self, element: Tag) -> float:
        rows = element.find_all("tr")
        if rows:
            return max(
                sum(
                    len(cell.get_text(" ", strip=True)) * self.char_width_px + CELL_PADDING_PX
                    for cell in row.find_all(["td", "th"])
                )
                for row in rows
            )
        return len(element.get_text("", strip=True)) * self.char_width_px


@dataclass(frozen=True)
class LayoutTicket:
    """Identifies one attached tree."""

    generation: int


@dataclass(frozen=True)
class LayoutReport:
    """Outcome of one layout pass."""

    ticket: LayoutTicket
    adjusted: int = 0
    stale: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"generation": self.ticket.generation, "adjusted": self.adjusted, "stale": self.stale}


def set_style(element: Tag, **properties: str) -> None:
    """Merge CSS properties (underscores become dashes) into ``style``."""
    declarations: dict[str, str] = {}
    for part in str(element.get("style", "")).split(";"):
        name, sep, value = part.partition(":")
        if sep and name.strip():
            declarations[name.strip()] = value.strip()
    for name, value in properties.items():
        declarations[name.replace("_", "-")] = value
    element["style"] = " ".join(f"{k}: {v};" for k, v in declarations.items())


class PreviewSurface:
    """Holds the current tree and runs layout passes against it."""

    def __init__(self, measurer: WidthMeasurer | None = None, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._measurer = measurer or CharacterWidthMeasurer(
            self._settings.container_width_px,
            self._settings.char_width_px,
        )
        self._generation = 0
        self._tree: BeautifulSoup | None = None

    @property
    def tree(self) -> BeautifulSoup | None:
        return self._tree

    @property
    def generation(self) -> int:
        return self._generation

    def attach(self, tree: BeautifulSoup) -> LayoutTicket:
        """Make ``tree`` the current tree and invalidate earlier tickets."""
        self._generation += 1
        self._tree = tree
        return LayoutTicket(generation=self._generation)

    def is_current(self, ticket: LayoutTicket) -> bool:
        return ticket.generation == self._generation and self._tree is not None

    def run_layout(self, ticket: LayoutTicket) -> LayoutReport:
        """Shrink overflowing elements of the tree ``ticket`` was issued for."""
        if not self.is_current(ticket):
            logger.debug("Skipping stale layout pass", ticket=ticket.generation, current=self._generation)
            return LayoutReport(ticket=ticket, stale=True)

        tree = self._tree
        adjusted = 0
        selector = ", ".join(f".{name}" for name in SHRINK_TARGETS)
        for element in tree.select(selector):
            if element.find_parent(class_=AUTOSCALED_CLASS) is not None:
                continue
            client = self._measurer.client_width(element)
            scroll = self._measurer.scroll_width(element)
            if scroll <= 0 or scroll <= client:
                continue
            scale = max(
                self._settings.shrink_floor,
                client / scroll * self._settings.shrink_safety_margin,
            )
            target = self._target_of(element)
            set_style(
                element,
                transform=f"scale({scale:.3f})",
                transform_origin=SHRINK_TARGETS[target],
                width=f"{100 / scale:.1f}%",
                overflow_x="hidden",
            )
            record_layout_shrink(target, scale)
            adjusted += 1

        if adjusted:
            logger.debug("Layout pass shrank elements", adjusted=adjusted, generation=ticket.generation)
        return LayoutReport(ticket=ticket, adjusted=adjusted)

    def schedule_layout(self, ticket: LayoutTicket) -> asyncio.Handle:
        """Defer ``run_layout`` to the next turn of the running event loop.

        Raises:
            RuntimeError: If no event loop is running
        """
        loop = asyncio.get_running_loop()
        return loop.call_soon(self.run_layout, ticket)

    @staticmethod
    def _target_of(element: Tag) -> str:
        classes = element.get("class") or []
        if isinstance(classes, str):
            classes = re.split(r"\s+", classes)
        return next(name for name in SHRINK_TARGETS if name in classes)
