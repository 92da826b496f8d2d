"""
Generic element-tree locator.

Resolves the element under a point, walks up to the nearest block-level
container and treats that container as the text unit. Units are not
pre-indexed: every lookup re-resolves from the current point.

The tree is reached through an ElementSurface adapter. QtWidgetSurface
adapts a PyQt6 widget hierarchy; hosts rendering HTML provide their own.
"""

import itertools
import logging
import weakref
from abc import ABC, abstractmethod
from typing import Optional, Any, Dict, Tuple

from PyQt6.QtCore import QPoint
from PyQt6.QtWidgets import (
    QApplication, QWidget, QLabel, QTextEdit, QPlainTextEdit, QLineEdit,
    QGroupBox, QAbstractButton, QListWidget, QTableWidget
)

from utils.geometry import Rect
from .base import ContentLocator, TextUnit, SourceKind

logger = logging.getLogger(__name__)

BLOCK_DISPLAYS = frozenset({'block', 'list-item', 'table', 'flex', 'grid'})

# Elements that cannot be weakly referenced are kept alive by the id map; cap it
MAX_PINNED_IDS = 512


class ElementSurface(ABC):
    """Minimal view of a rendered element tree."""

    @property
    @abstractmethod
    def root(self) -> Any:
        """Top-level element; ancestor walks stop before it."""

    @abstractmethod
    def element_at(self, x: float, y: float) -> Any:
        """Deepest element under the viewport point, or None."""

    @abstractmethod
    def parent_of(self, element: Any) -> Any:
        """Parent element, or None at the top."""

    @abstractmethod
    def display_of(self, element: Any) -> str:
        """Layout role, using CSS display keywords (block, inline, flex, ...)."""

    @abstractmethod
    def text_of(self, element: Any) -> str:
        """Rendered text content."""

    @abstractmethod
    def rect_of(self, element: Any) -> Rect:
        """Viewport-relative bounding box."""

    def selected_text(self) -> str:
        return ""


def get_block_ancestor(surface: ElementSurface, element: Any) -> Any:
    """
    Walk ancestors to the nearest block-level container.

    Args:
        surface: Element tree adapter
        element: Starting element

    Returns:
        The container, or None when only the root (or nothing) qualifies
    """
    root = surface.root
    while element is not None and element is not root:
        if surface.display_of(element) in BLOCK_DISPLAYS:
            return element
        element = surface.parent_of(element)
    return None


class DomLocator(ContentLocator):
    """Locator over a live element tree."""

    source_kind = SourceKind.DOM
    priority = 30

    def __init__(self, surface: ElementSurface):
        """
        Initialize DOM locator.

        Args:
            surface: Element tree adapter for the active document
        """
        self.surface = surface
        # Entries disappear together with their elements
        self._ids: "weakref.WeakKeyDictionary[Any, str]" = weakref.WeakKeyDictionary()
        self._pinned_ids: Dict[int, Tuple[Any, str]] = {}
        self._counter = itertools.count(1)
        logger.info(f"DomLocator initialized over {surface.__class__.__name__}")

    def _unit_id(self, element: Any) -> str:
        """Stable id for an element while it is alive."""
        try:
            unit_id = self._ids.get(element)
        except TypeError:
            return self._pinned_unit_id(element)
        if unit_id is None:
            unit_id = f"dom-{next(self._counter)}"
            self._ids[element] = unit_id
        return unit_id

    def _pinned_unit_id(self, element: Any) -> str:
        # Holding the element keeps its id() from being recycled
        entry = self._pinned_ids.get(id(element))
        if entry is None or entry[0] is not element:
            entry = (element, f"dom-{next(self._counter)}")
            self._pinned_ids[id(element)] = entry
            while len(self._pinned_ids) > MAX_PINNED_IDS:
                del self._pinned_ids[next(iter(self._pinned_ids))]
        return entry[1]

    async def find_unit_at(self, x: float, y: float) -> Optional[TextUnit]:
        element = self.surface.element_at(x, y)
        if element is None:
            return None
        block = get_block_ancestor(self.surface, element) or element
        return TextUnit(
            id=self._unit_id(block),
            text=self.surface.text_of(block) or "",
            rect=self.surface.rect_of(block),
            source_kind=SourceKind.DOM,
            element=block,
        )

    async def unit_text(self, unit: TextUnit) -> str:
        if unit.element is not None:
            return self.surface.text_of(unit.element) or ""
        return unit.text or ""

    def selected_text(self) -> str:
        return (self.surface.selected_text() or "").strip()


class QtWidgetSurface(ElementSurface):
    """ElementSurface over a PyQt6 widget hierarchy, in the root widget's coordinates."""

    _BLOCK_TYPES = (QLabel, QTextEdit, QPlainTextEdit, QGroupBox)

    def __init__(self, root_widget: QWidget):
        self._root = root_widget

    @property
    def root(self) -> QWidget:
        return self._root

    def element_at(self, x: float, y: float) -> Optional[QWidget]:
        point = QPoint(int(x), int(y))
        child = self._root.childAt(point)
        if child is not None:
            return child
        return self._root if self._root.rect().contains(point) else None

    def parent_of(self, element: QWidget) -> Optional[QWidget]:
        return element.parentWidget()

    def display_of(self, element: QWidget) -> str:
        if isinstance(element, self._BLOCK_TYPES):
            return 'block'
        if isinstance(element, QTableWidget):
            return 'table'
        if isinstance(element, QListWidget):
            return 'list-item'
        return 'inline'

    def text_of(self, element: QWidget) -> str:
        if isinstance(element, (QTextEdit, QPlainTextEdit)):
            return element.toPlainText()
        if isinstance(element, (QLabel, QLineEdit, QAbstractButton)):
            return element.text()
        if isinstance(element, QGroupBox):
            parts = [element.title()] + [label.text() for label in element.findChildren(QLabel)]
            return "\n".join(p for p in parts if p)
        return ""

    def rect_of(self, element: QWidget) -> Rect:
        top_left = element.mapTo(self._root, QPoint(0, 0)) if element is not self._root else QPoint(0, 0)
        return Rect.from_size(top_left.x(), top_left.y(), element.width(), element.height())

    def selected_text(self) -> str:
        widget = QApplication.focusWidget()
        if isinstance(widget, (QTextEdit, QPlainTextEdit)):
            # Qt uses U+2029 as the paragraph separator in selections
            return widget.textCursor().selectedText().replace('\u2029', '\n')
        if isinstance(widget, (QLabel, QLineEdit)):
            return widget.selectedText()
        return ""
