"""
Slide-deck overlay locator.

Structured documents without native page rendering (slide decks) carry
their text inside an archive of XML parts. The text runs of every slide are
extracted and laid out as synthetic boxes over an approximate document
canvas. The boxes exist only so their rectangles can be hit-tested; they
never take pointer input.

Without a discoverable archive the locator always returns None.
"""

import io
import re
import asyncio
import math
import zipfile
import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional, List, Tuple, Union, Iterable, Callable

import requests

from utils.geometry import Rect, Viewport
from .base import ContentLocator, TextUnit, SourceKind, HIT_TOLERANCE

logger = logging.getLogger(__name__)

DRAWINGML_NS = "http://schemas.openxmlformats.org/drawingml/2006/main"
SLIDE_PART = re.compile(r"^ppt/slides/slide(\d+)\.xml$")
PPTX_URL = re.compile(r"\.pptx($|[?#])", re.IGNORECASE)

MAX_BLOCK_CHARS = 400

# Synthetic box layout, in canvas pixels
BOX_SIDE_MARGIN = 0.08  # fraction of the canvas width
BOX_GAP = 8.0
BOX_PADDING_X = 12.0
BOX_PADDING_Y = 8.0
LINE_HEIGHT = 20.0
AVG_CHAR_WIDTH = 7.5

ArchiveSource = Union[str, Path, bytes]


def extract_slide_texts(archive: Union[bytes, str, Path, io.IOBase]) -> List[Tuple[str, List[str]]]:
    """
    Read the text runs of every slide in a presentation archive.

    Args:
        archive: Archive bytes, file path or binary stream

    Returns:
        (part name, runs) pairs in slide-number order
    """
    if isinstance(archive, (bytes, bytearray)):
        archive = io.BytesIO(archive)

    slides: List[Tuple[int, str, List[str]]] = []
    with zipfile.ZipFile(archive) as zf:
        for name in zf.namelist():
            match = SLIDE_PART.match(name)
            if not match:
                continue
            root = ET.fromstring(zf.read(name))
            runs = [node.text for node in root.iter(f"{{{DRAWINGML_NS}}}t") if node.text]
            slides.append((int(match.group(1)), name, runs))

    slides.sort(key=lambda item: item[0])
    return [(name, runs) for _, name, runs in slides]


def block_text(runs: Iterable[str], limit: int = MAX_BLOCK_CHARS) -> str:
    """Concatenate runs and truncate to keep summarization payloads small."""
    joined = " ".join(r.strip() for r in runs if r and r.strip())
    return joined[:limit]


def layout_overlay_boxes(texts: List[str], canvas: Rect) -> List[Rect]:
    """
    Stack one box per text block over the canvas.

    Boxes span the canvas width minus side margins; heights are estimated
    from the text length so consecutive boxes never overlap.

    Args:
        texts: Block texts in order
        canvas: Document-space canvas rectangle

    Returns:
        Document-space box rectangles
    """
    left = canvas.left + canvas.width * BOX_SIDE_MARGIN
    width = canvas.width * (1 - 2 * BOX_SIDE_MARGIN)
    chars_per_line = max(1, int((width - 2 * BOX_PADDING_X) / AVG_CHAR_WIDTH))

    boxes: List[Rect] = []
    top = canvas.top + BOX_GAP
    for text in texts:
        lines = max(1, math.ceil(len(text) / chars_per_line))
        height = 2 * BOX_PADDING_Y + lines * LINE_HEIGHT
        boxes.append(Rect.from_size(left, top, width, height))
        top += height + BOX_GAP
    return boxes


def discover_archive_source(document_url: Optional[str],
                            link_urls: Iterable[str] = ()) -> Optional[str]:
    """
    Find a presentation archive for the current document.

    Args:
        document_url: Location of the document itself
        link_urls: Links found in the document

    Returns:
        First linked archive, else the document URL when it is one, else None
    """
    for url in link_urls:
        if url and PPTX_URL.search(url):
            return url
    if document_url and PPTX_URL.search(document_url):
        return document_url
    return None


def load_archive(source: ArchiveSource, timeout: float = 20.0) -> bytes:
    """Fetch archive bytes from an http(s) URL, a file:// URL or a local path."""
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    location = str(source)
    if location.startswith(("http://", "https://")):
        response = requests.get(location, timeout=timeout)
        response.raise_for_status()
        return response.content
    if location.startswith("file://"):
        location = location[len("file://"):]
    return Path(location).read_bytes()


class OverlayLocator(ContentLocator):
    """Locator over synthetic boxes built from a slide archive."""

    source_kind = SourceKind.OVERLAY
    priority = 20

    def __init__(self, viewport: Viewport,
                 archive_source: Optional[ArchiveSource] = None,
                 canvas: Optional[Rect] = None,
                 on_box_created: Optional[Callable[[TextUnit], None]] = None,
                 selection_provider: Optional[Callable[[], str]] = None):
        """
        Initialize overlay locator.

        Args:
            viewport: Shared viewport
            archive_source: Archive bytes, path or URL; None disables the locator
            canvas: Document-space canvas; defaults to the viewport width at the origin
            on_box_created: Notified for each synthetic box, for hosts that draw them
            selection_provider: Returns the current selection text
        """
        self.viewport = viewport
        self.archive_source = archive_source
        self.canvas = canvas
        self.on_box_created = on_box_created
        self.selection_provider = selection_provider
        self.units: List[TextUnit] = []
        self._doc_rects: List[Rect] = []
        self._parsed = False

        logger.info(f"OverlayLocator initialized: source={'yes' if archive_source is not None else 'none'}")

    @property
    def available(self) -> bool:
        return self.archive_source is not None

    def _load_texts(self) -> List[str]:
        archive = load_archive(self.archive_source)
        return [block_text(runs) for _, runs in extract_slide_texts(archive)]

    def _build(self, texts: List[str]):
        canvas = self.canvas or Rect(0.0, 0.0, self.viewport.width, self.viewport.height)
        self._doc_rects = layout_overlay_boxes(texts, canvas)

        self.units = []
        for index, (text, doc_rect) in enumerate(zip(texts, self._doc_rects)):
            unit = TextUnit(
                id=f"pptx-{index}",
                text=text,
                rect=self.viewport.document_to_viewport(doc_rect),
                source_kind=SourceKind.OVERLAY,
            )
            self.units.append(unit)
            if self.on_box_created is not None:
                self.on_box_created(unit)

    async def _ensure_parsed(self):
        if self._parsed:
            return
        self._parsed = True
        if self.archive_source is None:
            return
        try:
            texts = await asyncio.to_thread(self._load_texts)
            self._build(texts)
            logger.info(f"Slide overlay built: {len(self.units)} blocks")
        except Exception as e:
            logger.warning(f"Slide archive unavailable, overlay disabled: {e}")
            self.units = []
            self._doc_rects = []

    async def find_unit_at(self, x: float, y: float) -> Optional[TextUnit]:
        await self._ensure_parsed()
        for unit, doc_rect in zip(self.units, self._doc_rects):
            unit.rect = self.viewport.document_to_viewport(doc_rect)
            if unit.rect.contains(x, y, HIT_TOLERANCE):
                return unit
        return None

    async def unit_text(self, unit: TextUnit) -> str:
        return unit.text or ""

    def selected_text(self) -> str:
        if self.selection_provider is None:
            return ""
        return (self.selection_provider() or "").strip()
