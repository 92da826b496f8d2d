"""
Paginated document locator.

Serves documents made of discrete pages in one of two ways:

1. A pre-rendered text layer (positioned text fragments) is grouped into
   lines and lines into paragraphs, each paragraph becoming a text unit.
   Units stay backed by their live fragments and are re-measured before
   every hit test, since scrolling and reflow move them.
2. Without a text layer, one placeholder unit per page is created, sized to
   an estimated page height. Page text is decoded on demand with pypdf the
   first time the unit is queried or hit, then cached on the unit.
"""

import io
import re
import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List, Callable, Dict, Union

import requests
from pypdf import PdfReader

from utils.geometry import Rect, Viewport
from .base import ContentLocator, TextUnit, SourceKind, HIT_TOLERANCE

logger = logging.getLogger(__name__)

LINE_TOLERANCE = 6.0  # px between fragment tops on one line
PARAGRAPH_GAP_TOLERANCE = 12.0  # px between a line and the paragraph above it


@dataclass
class TextFragment:
    """One positioned run of text from a text layer."""
    text: str
    rect: Rect
    measure: Optional[Callable[[], Rect]] = field(default=None, repr=False)

    def current_rect(self) -> Rect:
        if self.measure is not None:
            try:
                return self.measure()
            except Exception as e:
                logger.debug(f"Fragment re-measure failed, using cached rect: {e}")
        return self.rect


@dataclass
class TextLine:
    """Fragments sharing an approximate vertical position."""
    top: float
    rect: Rect
    fragments: List[TextFragment] = field(default_factory=list)

    @property
    def text(self) -> str:
        ordered = sorted(self.fragments, key=lambda f: f.rect.left)
        return " ".join(f.text.strip() for f in ordered if f.text.strip())


@dataclass
class Paragraph:
    """Adjacent lines with small vertical gaps."""
    rect: Rect
    lines: List[TextLine] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(line.text for line in self.lines)

    @property
    def fragments(self) -> List[TextFragment]:
        return [f for line in self.lines for f in line.fragments]


def group_fragments_into_lines(fragments: List[TextFragment],
                               tolerance: float = LINE_TOLERANCE) -> List[TextLine]:
    """
    Group fragments whose rounded tops lie within tolerance into lines.

    Args:
        fragments: Text fragments of one page
        tolerance: Maximum vertical distance between fragment tops

    Returns:
        Lines ordered top to bottom
    """
    lines: List[TextLine] = []
    for fragment in fragments:
        if not fragment.text or not fragment.text.strip():
            continue
        rect = fragment.rect
        top = round(rect.top)
        line = next((ln for ln in lines if abs(ln.top - top) < tolerance), None)
        if line is None:
            line = TextLine(top=top, rect=rect.copy())
            lines.append(line)
        else:
            line.rect = line.rect.union(rect)
        line.fragments.append(fragment)
    lines.sort(key=lambda ln: ln.top)
    return lines


def group_lines_into_paragraphs(lines: List[TextLine],
                                tolerance: float = PARAGRAPH_GAP_TOLERANCE) -> List[Paragraph]:
    """
    Merge each line into the previous paragraph when the gap between the
    line's top and the paragraph's bottom is below tolerance.

    Args:
        lines: Lines ordered top to bottom
        tolerance: Maximum vertical gap inside one paragraph

    Returns:
        Paragraphs in reading order
    """
    paragraphs: List[Paragraph] = []
    for line in lines:
        current = paragraphs[-1] if paragraphs else None
        if current is not None and abs(line.top - current.rect.bottom) < tolerance:
            current.lines.append(line)
            current.rect = Rect(current.rect.left, current.rect.top,
                                max(current.rect.right, line.rect.right),
                                max(current.rect.bottom, line.rect.bottom))
        else:
            paragraphs.append(Paragraph(rect=line.rect.copy(), lines=[line]))
    return paragraphs


def _normalize_whitespace(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t\f\v]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


class PageSource(ABC):
    """Structured page access for documents without a text layer."""

    @abstractmethod
    def page_count(self) -> int:
        """Number of pages."""

    @abstractmethod
    async def page_text(self, page_number: int) -> str:
        """Decoded text of a 1-based page."""


class PdfPageSource(PageSource):
    """
    PageSource backed by pypdf; decoding runs off the event loop.

    One reader is shared by all pages and pypdf readers are not thread-safe,
    so every access to it goes through a lock.
    """

    def __init__(self, source: Union[str, Path, bytes, io.IOBase], timeout: float = 20.0):
        """
        Args:
            source: File path, http(s)/file URL, raw PDF bytes or a binary stream
            timeout: Download timeout for remote documents, in seconds
        """
        self.source = source
        self.timeout = timeout
        self._reader: Optional[PdfReader] = None
        self._lock = threading.Lock()

    def _get_reader(self) -> PdfReader:
        if self._reader is None:
            source = self.source
            if isinstance(source, (bytes, bytearray)):
                source = io.BytesIO(source)
            elif isinstance(source, str) and source.startswith(("http://", "https://")):
                response = requests.get(source, timeout=self.timeout)
                response.raise_for_status()
                source = io.BytesIO(response.content)
            elif isinstance(source, str) and source.startswith("file://"):
                source = source[len("file://"):]
            self._reader = PdfReader(source)
        return self._reader

    def page_count(self) -> int:
        with self._lock:
            return len(self._get_reader().pages)

    def _extract(self, page_number: int) -> str:
        with self._lock:
            page = self._get_reader().pages[page_number - 1]
            return page.extract_text() or ""

    async def page_text(self, page_number: int) -> str:
        return await asyncio.to_thread(self._extract, page_number)


TextLayerProvider = Callable[[], List[List[TextFragment]]]


class PaginatedLocator(ContentLocator):
    """Locator for page-based documents (text layer or on-demand decoding)."""

    source_kind = SourceKind.PAGINATED
    priority = 10

    def __init__(self, viewport: Viewport,
                 text_layer: Optional[TextLayerProvider] = None,
                 page_source: Optional[PageSource] = None,
                 page_height: Optional[float] = None,
                 selection_provider: Optional[Callable[[], str]] = None):
        """
        Initialize paginated locator.

        Args:
            viewport: Shared viewport (scroll offsets position placeholder pages)
            text_layer: Returns the fragments of each rendered page, if any
            page_source: Decoder used when no text layer exists
            page_height: Estimated page height; defaults to the viewport height
            selection_provider: Returns the current selection text
        """
        self.viewport = viewport
        self.text_layer = text_layer
        self.page_source = page_source
        self.page_height = page_height
        self.selection_provider = selection_provider
        self.units: List[TextUnit] = []
        self.mode = 'none'
        self._indexed = False
        self._decode_tasks: Dict[str, asyncio.Future] = {}

        logger.info(f"PaginatedLocator initialized: text_layer={text_layer is not None}, "
                    f"page_source={page_source.__class__.__name__ if page_source else None}")

    @property
    def available(self) -> bool:
        return self.text_layer is not None or self.page_source is not None

    def _index_text_layer(self) -> bool:
        """Build paragraph units from the text layer; False when it is empty."""
        try:
            pages = self.text_layer() or []
        except Exception as e:
            logger.warning(f"Text layer unavailable: {e}")
            return False

        units: List[TextUnit] = []
        for fragments in pages:
            for paragraph in group_paragraphs(fragments):
                unit_fragments = paragraph.fragments
                units.append(TextUnit(
                    id=f"pdf-p-{len(units)}",
                    text=paragraph.text,
                    rect=paragraph.rect,
                    source_kind=SourceKind.PAGINATED,
                    measure=_live_measure(unit_fragments) if any(f.measure for f in unit_fragments) else None,
                ))
        self.units = units
        return bool(units)

    async def _index_pages(self) -> bool:
        """Create one placeholder unit per page and decode the first page."""
        try:
            count = await asyncio.to_thread(self.page_source.page_count)
        except Exception as e:
            logger.warning(f"Page source unavailable: {e}")
            return False

        height = self.page_height or self.viewport.height
        units: List[TextUnit] = []
        for page in range(1, count + 1):
            doc_rect = Rect(0.0, (page - 1) * height, self.viewport.width, page * height)
            units.append(TextUnit(
                id=f"pdf-p-{page - 1}",
                text="",
                rect=self.viewport.document_to_viewport(doc_rect),
                source_kind=SourceKind.PAGINATED,
                page=page,
                parsed=False,
                measure=_placeholder_measure(self.viewport, doc_rect),
            ))
        self.units = units
        if units:
            await self._decode(units[0])
        return bool(units)

    async def _ensure_indexed(self):
        if self._indexed:
            return
        self._indexed = True
        if self.text_layer is not None and self._index_text_layer():
            self.mode = 'text_layer'
        elif self.page_source is not None and await self._index_pages():
            self.mode = 'decoded'
        logger.info(f"Paginated index built: mode={self.mode}, units={len(self.units)}")

    def reindex(self):
        """Drop the index so the next lookup rebuilds it (e.g. after a new page renders)."""
        self._indexed = False
        self.units = []
        self._decode_tasks.clear()

    async def _decode(self, unit: TextUnit):
        """Decode a placeholder's page once; concurrent callers share the same decode."""
        if unit.parsed or unit.page is None or self.page_source is None:
            return
        task = self._decode_tasks.get(unit.id)
        if task is None:
            task = asyncio.ensure_future(self._decode_page(unit))
            self._decode_tasks[unit.id] = task
        await task

    async def _decode_page(self, unit: TextUnit):
        try:
            unit.text = _normalize_whitespace(await self.page_source.page_text(unit.page))
            logger.debug(f"Decoded page {unit.page}: {len(unit.text)} chars")
        except Exception as e:
            logger.warning(f"Page {unit.page} decode failed: {e}")
            unit.text = ""
        finally:
            unit.parsed = True

    async def find_unit_at(self, x: float, y: float) -> Optional[TextUnit]:
        await self._ensure_indexed()
        for unit in self.units:
            if unit.measure is not None:
                rect = unit.measure()
                if rect is not None:
                    unit.rect = rect
            if unit.rect.contains(x, y, HIT_TOLERANCE):
                if not unit.parsed:
                    await self._decode(unit)
                return unit
        return None

    async def unit_text(self, unit: TextUnit) -> str:
        if unit.text and unit.text.strip():
            return unit.text
        if unit.page is not None and not unit.parsed:
            await self._decode(unit)
        return unit.text or ""

    def selected_text(self) -> str:
        if self.selection_provider is None:
            return ""
        return (self.selection_provider() or "").strip()


def group_paragraphs(fragments: List[TextFragment]) -> List[Paragraph]:
    """Fragments of one page straight to paragraphs."""
    return group_lines_into_paragraphs(group_fragments_into_lines(fragments))


def _live_measure(fragments: List[TextFragment]) -> Callable[[], Optional[Rect]]:
    def measure() -> Optional[Rect]:
        rect = None
        for fragment in fragments:
            current = fragment.current_rect()
            rect = current.copy() if rect is None else rect.union(current)
        return rect
    return measure


def _placeholder_measure(viewport: Viewport, doc_rect: Rect) -> Callable[[], Rect]:
    return lambda: viewport.document_to_viewport(doc_rect)
