"""
Popup placement engine.

Pure geometry: positions a floating panel next to an anchor rectangle
without covering an avoid-rectangle (usually the active selection) and
without leaving the viewport. Pinned popups reuse stored coordinates,
re-clamped to the current viewport.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any

from utils.geometry import Rect, Viewport
from utils.validation import ValidationUtils

logger = logging.getLogger(__name__)


@dataclass
class PopupSize:
    width: float
    height: float


@dataclass
class PopupPlacement:
    """Top-left popup position in viewport pixels."""
    left: float
    top: float
    pinned: bool = False
    side: str = "right"  # right, left, below, above, fallback or pinned

    def to_dict(self) -> Dict[str, Any]:
        return {'left': self.left, 'top': self.top, 'pinned': self.pinned}


@dataclass
class PlacementOptions:
    """
    Per-call placement directives.

    pin: True pins (reusing stored coordinates when present), False unpins,
    None keeps the current pin state.
    """
    avoid_rect: Optional[Rect] = None
    pin: Optional[bool] = None


class PlacementEngine:
    """Computes popup positions for one viewport."""

    def __init__(self, viewport: Viewport, padding: float = 8.0, store=None):
        """
        Initialize placement engine.

        Args:
            viewport: Shared viewport
            padding: Gap to the anchor and minimum distance to viewport edges
            store: Settings store persisting pinned coordinates
        """
        self.viewport = viewport
        self.padding = padding
        self.store = store
        self._pinned: Optional[Dict[str, float]] = store.get_pinned_popup() if store is not None else None

        logger.info(f"PlacementEngine initialized: padding={padding}px, "
                    f"pinned={'yes' if self._pinned else 'no'}")

    @property
    def is_pinned(self) -> bool:
        return self._pinned is not None

    def clamp(self, left: float, top: float, size: PopupSize):
        """Keep the popup inside the viewport minus padding, never below the padding floor."""
        pad = self.padding
        max_left = max(pad, self.viewport.width - size.width - pad)
        max_top = max(pad, self.viewport.height - size.height - pad)
        return ValidationUtils.clamp(left, pad, max_left), ValidationUtils.clamp(top, pad, max_top)

    def _choose_side(self, size: PopupSize, anchor: Rect):
        pad = self.padding
        vw, vh = self.viewport.width, self.viewport.height

        # Each side needs the gap to the anchor plus the gap to the viewport edge
        space_right = vw - anchor.right - 2 * pad
        space_left = anchor.left - 2 * pad
        space_below = vh - anchor.bottom - 2 * pad
        space_above = anchor.top - 2 * pad

        if space_right >= size.width:
            return anchor.right + pad, anchor.top, "right"
        if space_left >= size.width:
            return anchor.left - pad - size.width, anchor.top, "left"
        if space_below >= size.height:
            return anchor.left, anchor.bottom + pad, "below"
        if space_above >= size.height:
            return anchor.left, anchor.top - pad - size.height, "above"
        return vw - size.width - pad, vh - size.height - pad, "fallback"

    def _avoid(self, left: float, top: float, size: PopupSize, avoid: Rect) -> float:
        """Shift vertically off the avoid-rectangle when the popup overlaps it on both axes."""
        box = Rect.from_size(left, top, size.width, size.height)
        if not box.overlaps(avoid):
            return top
        pad = self.padding
        if avoid.top - pad - size.height >= pad:
            return avoid.top - pad - size.height
        if avoid.bottom + pad + size.height <= self.viewport.height - pad:
            return avoid.bottom + pad
        return self.viewport.height - size.height - pad

    def compute(self, size: PopupSize, anchor: Rect, avoid_rect: Optional[Rect] = None) -> PopupPlacement:
        """Fresh placement, ignoring pin state."""
        left, top, side = self._choose_side(size, anchor)
        if avoid_rect is not None and not avoid_rect.is_empty:
            top = self._avoid(left, top, size, avoid_rect)
        left, top = self.clamp(left, top, size)
        return PopupPlacement(left=left, top=top, pinned=False, side=side)

    def place(self, size: PopupSize, anchor: Rect,
              options: Optional[PlacementOptions] = None) -> PopupPlacement:
        """
        Position a popup for a trigger.

        Args:
            size: Popup size
            anchor: Rectangle to hug (a point expands to a degenerate rect)
            options: Avoid-rectangle and pin directive

        Returns:
            PopupPlacement inside the viewport
        """
        options = options or PlacementOptions()

        if options.pin is False and self.is_pinned:
            self.unpin()

        if self.is_pinned and options.pin is not False:
            return self._pinned_placement(size)

        placement = self.compute(size, anchor, options.avoid_rect)
        if options.pin:
            return self.pin(placement, size)
        return placement

    def pin(self, placement: PopupPlacement, size: Optional[PopupSize] = None) -> PopupPlacement:
        """
        Fix the popup at its current coordinates and persist them.

        Returns:
            The pinned placement
        """
        left, top = round(placement.left), round(placement.top)
        self._pinned = {'left': left, 'top': top}
        if self.store is not None:
            self.store.set_pinned_popup(left, top)
        logger.debug(f"Popup pinned at ({left}, {top})")
        if size is not None:
            return self._pinned_placement(size)
        return PopupPlacement(left=left, top=top, pinned=True, side="pinned")

    def unpin(self):
        """Discard stored coordinates; the next trigger is placed fresh."""
        self._pinned = None
        if self.store is not None:
            self.store.clear_pinned_popup()
        logger.debug("Popup unpinned")

    def _pinned_placement(self, size: PopupSize) -> PopupPlacement:
        left, top = self.clamp(self._pinned['left'], self._pinned['top'], size)
        return PopupPlacement(left=left, top=top, pinned=True, side="pinned")

    def reclamp(self, size: PopupSize) -> Optional[PopupPlacement]:
        """
        Re-clamp the pinned popup after a viewport resize.

        Stored coordinates are kept, so growing the viewport again restores them.

        Returns:
            Clamped placement, or None when nothing is pinned
        """
        if not self.is_pinned:
            return None
        return self._pinned_placement(size)
