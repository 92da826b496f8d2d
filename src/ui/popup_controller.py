"""
Summary popup state controller.

Tracks what the floating summary panel shows and where, independent of
how a host draws it. Handles auto-hide, pinning, Escape dismissal and
re-clamping on viewport resize; the host listens to the signals and
updates its widget accordingly.
"""

import logging
from typing import Optional, Dict, Any
from PyQt6.QtCore import QObject, pyqtSignal, QTimer

from config import PlacementConfig
from utils.geometry import Rect
from .placement import PlacementEngine, PlacementOptions, PopupPlacement, PopupSize

logger = logging.getLogger(__name__)

DEFAULT_POPUP_SIZE = PopupSize(360.0, 180.0)


class PopupController(QObject):
    """Show/hide/pin logic for the summary popup."""

    # PyQt signals for the hosting widget
    shown = pyqtSignal(object, str)  # PopupPlacement, summary text
    hidden = pyqtSignal()
    moved = pyqtSignal(object)  # PopupPlacement after a resize re-clamp
    pin_changed = pyqtSignal(bool)

    def __init__(self, engine: PlacementEngine, config: Optional[PlacementConfig] = None):
        """
        Initialize popup controller.

        Args:
            engine: Placement engine for the active viewport
            config: Auto-hide and pin-default settings
        """
        super().__init__()
        self.engine = engine
        self.config = config or PlacementConfig()

        self.visible = False
        self.summary = ""
        self.meta: Dict[str, Any] = {}
        self.size = DEFAULT_POPUP_SIZE
        self.placement: Optional[PopupPlacement] = None

        self.hide_timer = QTimer()
        self.hide_timer.setSingleShot(True)
        self.hide_timer.timeout.connect(self._on_autohide)

        logger.info(f"PopupController initialized: autohide={self.config.autohide_enabled}, "
                    f"pin_default={self.config.pin_default}")

    @property
    def is_pinned(self) -> bool:
        return self.engine.is_pinned

    def apply_config(self, config: PlacementConfig):
        self.config = config
        if not config.autohide_enabled:
            self.hide_timer.stop()

    def autohide_interval_ms(self) -> int:
        return int(max(self.config.min_autohide_s, self.config.autohide_timeout_s) * 1000)

    def show(self, summary: str, anchor: Rect, size: Optional[PopupSize] = None,
             avoid_rect: Optional[Rect] = None, meta: Optional[Dict[str, Any]] = None) -> PopupPlacement:
        """
        Display a summary next to its anchor.

        Args:
            summary: Text to show
            anchor: Rectangle the popup hugs
            size: Measured popup size
            avoid_rect: Region to keep clear (active selection)
            meta: Source text and trigger details, kept for follow-up actions

        Returns:
            Placement used
        """
        self.size = size or self.size
        self.summary = summary
        self.meta = dict(meta or {})

        # Pin by default only applies to a popup that is not already pinned
        pin = True if (self.config.pin_default and not self.is_pinned) else None
        self.placement = self.engine.place(self.size, anchor, PlacementOptions(avoid_rect=avoid_rect, pin=pin))
        self.visible = True

        self.hide_timer.stop()
        if self.config.autohide_enabled and not self.placement.pinned:
            self.hide_timer.start(self.autohide_interval_ms())

        self.shown.emit(self.placement, summary)
        logger.debug(f"Popup shown at ({self.placement.left:.0f}, {self.placement.top:.0f}) "
                     f"side={self.placement.side}")
        return self.placement

    def update_summary(self, summary: str):
        """Replace the text in place (e.g. an expanded explanation)."""
        if not self.visible or self.placement is None:
            return
        self.summary = summary
        self.shown.emit(self.placement, summary)

    def hide(self, force: bool = False) -> bool:
        """
        Hide the popup. A pinned popup stays unless forced (close button).

        Returns:
            True when the popup was hidden
        """
        if not self.visible:
            return False
        if self.is_pinned and not force:
            return False
        self.hide_timer.stop()
        self.visible = False
        self.hidden.emit()
        return True

    def handle_escape(self) -> bool:
        """Escape dismisses an unpinned popup only."""
        return self.hide(force=False)

    def toggle_pin(self) -> bool:
        """
        Pin at the current position or unpin.

        Returns:
            New pinned state
        """
        if self.is_pinned:
            self.engine.unpin()
            if self.visible and self.config.autohide_enabled:
                self.hide_timer.start(self.autohide_interval_ms())
        elif self.placement is not None:
            self.placement = self.engine.pin(self.placement, self.size)
            self.hide_timer.stop()
        else:
            return False
        self.pin_changed.emit(self.is_pinned)
        logger.info(f"Popup {'pinned' if self.is_pinned else 'unpinned'}")
        return self.is_pinned

    def on_viewport_resized(self, width: float, height: float):
        """Keep a pinned popup on screen after the viewport changes size."""
        self.engine.viewport.resize(width, height)
        if not self.visible:
            return
        placement = self.engine.reclamp(self.size)
        if placement is not None:
            self.placement = placement
            self.moved.emit(placement)

    def _on_autohide(self):
        if self.hide():
            logger.debug("Popup auto-hidden")
