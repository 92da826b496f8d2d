"""
Content locator interface.

A locator maps a viewport coordinate to a logical text unit (a paragraph
or text block) of the active document. Three independent strategies exist:
generic widget/DOM trees, paginated documents and slide-style overlays.
One is chosen per document by runtime inspection, and several may be
chained in dispatch order.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Any, Callable, List, Dict

from utils.geometry import Rect

logger = logging.getLogger(__name__)

# Forgives sub-pixel rect measurement error during hit tests
HIT_TOLERANCE = 2.0


class SourceKind(Enum):
    """Document representation a text unit came from."""
    DOM = "dom"
    PAGINATED = "paginated"
    OVERLAY = "overlay"


@dataclass(eq=False)
class TextUnit:
    """
    Logical paragraph-level text block.

    `id` is stable across repeated lookups of the same underlying unit within
    one document session. `rect` is viewport-relative at the time of lookup.
    """
    id: str
    text: str
    rect: Rect
    source_kind: SourceKind
    page: Optional[int] = None  # 1-based page for decoded placeholders
    parsed: bool = True  # False while the text still needs decoding
    measure: Optional[Callable[[], Optional[Rect]]] = field(default=None, repr=False)
    element: Any = field(default=None, repr=False)  # backing widget/element for dom units


class ContentLocator(ABC):
    """Strategy interface implemented by every locator variant."""

    source_kind: SourceKind = SourceKind.DOM
    priority: int = 100  # lower runs first

    @abstractmethod
    async def find_unit_at(self, x: float, y: float) -> Optional[TextUnit]:
        """Return the unit under the viewport point, or None."""

    @abstractmethod
    async def unit_text(self, unit: TextUnit) -> str:
        """Return the unit's text; may decode on demand."""

    def selected_text(self) -> str:
        """Best-effort current user selection; empty string when none."""
        return ""

    @property
    def available(self) -> bool:
        """False when the locator's backing capability is missing."""
        return True


class LocatorChain:
    """
    Ordered set of locators for one document.

    Structured locators (paginated, then overlay) are tried before the
    generic dom locator, which only answers when neither returns a hit.
    """

    def __init__(self, locators: Optional[List[ContentLocator]] = None):
        self.locators: List[ContentLocator] = []
        for locator in locators or []:
            self.add(locator)

    def add(self, locator: ContentLocator):
        self.locators.append(locator)
        self.locators.sort(key=lambda loc: loc.priority)
        logger.debug(f"Locator added: {locator.__class__.__name__} "
                     f"(order: {[loc.source_kind.value for loc in self.locators]})")

    def _owner(self, unit: TextUnit) -> Optional[ContentLocator]:
        for locator in self.locators:
            if locator.source_kind == unit.source_kind:
                return locator
        return None

    async def find_unit_at(self, x: float, y: float) -> Optional[TextUnit]:
        """
        Query locators in dispatch order.

        Args:
            x: Viewport X coordinate
            y: Viewport Y coordinate

        Returns:
            First unit found, or None
        """
        for locator in self.locators:
            try:
                unit = await locator.find_unit_at(x, y)
            except Exception as e:
                logger.error(f"{locator.__class__.__name__} lookup failed at ({x:.0f}, {y:.0f}): {e}")
                continue
            if unit is not None:
                return unit
        return None

    async def unit_text(self, unit: TextUnit) -> str:
        """Extract text through the locator that produced the unit; empty on failure."""
        locator = self._owner(unit)
        if locator is None:
            return unit.text or ""
        try:
            return await locator.unit_text(unit) or ""
        except Exception as e:
            logger.error(f"Text extraction failed for unit {unit.id}: {e}")
            return ""

    def selected_text(self) -> str:
        for locator in self.locators:
            try:
                text = locator.selected_text()
            except Exception as e:
                logger.warning(f"{locator.__class__.__name__} selection lookup failed: {e}")
                continue
            if text:
                return text
        return ""

    def describe(self) -> Dict[str, Any]:
        return {
            'order': [loc.source_kind.value for loc in self.locators],
            'available': {loc.source_kind.value: loc.available for loc in self.locators},
        }
