"""
Shared viewport geometry.

Rectangles and the viewport description used by the signal conditioner,
the content locators and the popup placement engine. All coordinates are
viewport-relative CSS-style pixels unless stated otherwise.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class Rect:
    """Axis-aligned rectangle {left, top, right, bottom}."""
    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 and self.height <= 0

    def contains(self, x: float, y: float, tolerance: float = 0.0) -> bool:
        """Point-in-rect test, widened by tolerance on every side."""
        return (self.left - tolerance <= x <= self.right + tolerance and
                self.top - tolerance <= y <= self.bottom + tolerance)

    def overlaps(self, other: 'Rect') -> bool:
        """True when the two rectangles overlap on both axes (touching edges count)."""
        overlap_x = not (self.right < other.left or self.left > other.right)
        overlap_y = not (self.bottom < other.top or self.top > other.bottom)
        return overlap_x and overlap_y

    def union(self, other: 'Rect') -> 'Rect':
        return Rect(min(self.left, other.left), min(self.top, other.top),
                    max(self.right, other.right), max(self.bottom, other.bottom))

    def translated(self, dx: float, dy: float) -> 'Rect':
        return Rect(self.left + dx, self.top + dy, self.right + dx, self.bottom + dy)

    def copy(self) -> 'Rect':
        return Rect(self.left, self.top, self.right, self.bottom)

    def to_dict(self) -> Dict[str, float]:
        return {'left': self.left, 'top': self.top, 'right': self.right, 'bottom': self.bottom}

    @classmethod
    def from_point(cls, x: float, y: float) -> 'Rect':
        """Expand a point into a degenerate rectangle."""
        return cls(x, y, x, y)

    @classmethod
    def from_size(cls, left: float, top: float, width: float, height: float) -> 'Rect':
        return cls(left, top, left + width, top + height)

    @classmethod
    def from_mapping(cls, data: Any) -> Optional['Rect']:
        if not isinstance(data, dict):
            return None
        try:
            return cls(float(data['left']), float(data['top']),
                       float(data['right']), float(data['bottom']))
        except (KeyError, TypeError, ValueError):
            return None


@dataclass
class Viewport:
    """Visible area of the document.

    Mutable: the host updates it on scroll and resize, and every component
    of one session reads the same instance.
    """
    width: float
    height: float
    scroll_x: float = 0.0
    scroll_y: float = 0.0
    device_pixel_ratio: float = 1.0

    def resize(self, width: float, height: float):
        self.width = width
        self.height = height

    def scroll_to(self, scroll_x: float, scroll_y: float):
        self.scroll_x = scroll_x
        self.scroll_y = scroll_y

    def document_to_viewport(self, rect: Rect) -> Rect:
        """Convert a document-space rectangle to viewport coordinates."""
        return rect.translated(-self.scroll_x, -self.scroll_y)

    @property
    def rect(self) -> Rect:
        return Rect(0.0, 0.0, self.width, self.height)
