"""
Content locators: map a viewport coordinate to a logical text unit.

Variants: element tree (dom), paginated documents and slide overlays,
selected per document and chained in dispatch order.
"""

from .base import ContentLocator, LocatorChain, TextUnit, SourceKind, HIT_TOLERANCE
from .dom_locator import DomLocator, ElementSurface, QtWidgetSurface, get_block_ancestor
from .paginated_locator import (
    PaginatedLocator, PageSource, PdfPageSource, TextFragment, TextLine, Paragraph,
    group_fragments_into_lines, group_lines_into_paragraphs
)
from .overlay_locator import (
    OverlayLocator, extract_slide_texts, layout_overlay_boxes, discover_archive_source
)
from .document import DocumentContext, build_locator_chain

__all__ = [
    'ContentLocator', 'LocatorChain', 'TextUnit', 'SourceKind', 'HIT_TOLERANCE',
    'DomLocator', 'ElementSurface', 'QtWidgetSurface', 'get_block_ancestor',
    'PaginatedLocator', 'PageSource', 'PdfPageSource', 'TextFragment', 'TextLine', 'Paragraph',
    'group_fragments_into_lines', 'group_lines_into_paragraphs',
    'OverlayLocator', 'extract_slide_texts', 'layout_overlay_boxes', 'discover_archive_source',
    'DocumentContext', 'build_locator_chain'
]
