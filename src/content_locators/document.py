"""
Runtime document inspection.

Chooses the locator strategies for one document session from what the
document exposes (URL shape, embedded viewers, links, element tree) and
assembles them into a LocatorChain in dispatch order.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Optional, List, Callable, Any

from utils.geometry import Rect, Viewport
from .base import LocatorChain
from .dom_locator import DomLocator, ElementSurface
from .paginated_locator import PaginatedLocator, PdfPageSource, PageSource, TextLayerProvider
from .overlay_locator import OverlayLocator, discover_archive_source

logger = logging.getLogger(__name__)

PDF_URL = re.compile(r"\.pdf($|[?#])", re.IGNORECASE)


@dataclass
class DocumentContext:
    """What the host knows about the active document."""
    viewport: Viewport
    url: Optional[str] = None
    surface: Optional[ElementSurface] = None
    text_layer: Optional[TextLayerProvider] = None
    page_source: Optional[PageSource] = None
    pdf_source: Any = None  # path, URL or bytes to decode with pypdf
    has_pdf_embed: bool = False
    archive_source: Any = None  # slide archive path, URL or bytes
    link_urls: List[str] = field(default_factory=list)
    slide_canvas: Optional[Rect] = None
    page_height: Optional[float] = None
    selection_provider: Optional[Callable[[], str]] = None

    @property
    def looks_paginated(self) -> bool:
        return bool(
            self.text_layer is not None or self.page_source is not None or
            self.pdf_source is not None or self.has_pdf_embed or
            (self.url and PDF_URL.search(self.url))
        )


def build_locator_chain(document: DocumentContext) -> LocatorChain:
    """
    Select locators for a document, most structured first.

    Args:
        document: Document description

    Returns:
        LocatorChain (possibly empty when nothing is locatable)
    """
    chain = LocatorChain()

    if document.looks_paginated:
        page_source = document.page_source
        if page_source is None:
            source = document.pdf_source
            if source is None and document.url and PDF_URL.search(document.url):
                source = document.url
            if source is not None:
                page_source = PdfPageSource(source)
        locator = PaginatedLocator(
            document.viewport,
            text_layer=document.text_layer,
            page_source=page_source,
            page_height=document.page_height,
            selection_provider=document.selection_provider,
        )
        if locator.available:
            chain.add(locator)

    archive = document.archive_source or discover_archive_source(document.url, document.link_urls)
    if archive is not None:
        chain.add(OverlayLocator(
            document.viewport,
            archive_source=archive,
            canvas=document.slide_canvas,
            selection_provider=document.selection_provider,
        ))

    if document.surface is not None:
        chain.add(DomLocator(document.surface))

    logger.info(f"Locator chain for {document.url or 'document'}: {chain.describe()['order']}")
    return chain
