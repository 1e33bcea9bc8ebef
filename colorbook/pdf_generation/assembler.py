"""
Render a finished order into a printable colouring book PDF.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from io import BytesIO
from typing import Sequence

from reportlab.lib import colors
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfgen import canvas
from reportlab.pdfgen.canvas import FILL_EVEN_ODD

from colorbook.common.errors import AssemblyError, DocumentWriteFailure, OrderNotFoundError, VectorizationFailure
from colorbook.pipeline.orders import Order, OrderStore

from .artifacts import ArtifactStore
from .vectorizer import LineArtVectorizer, VectorArt

logger = logging.getLogger(__name__)

ELLIPSIS = "..."


class PageKind(str, enum.Enum):
    COVER = "cover"
    ILLUSTRATION = "illustration"


@dataclass(frozen=True)
class GeneratedPage:
    page_number: int
    kind: PageKind
    image: bytes
    caption: str | None = None
    prompt: str | None = None


@dataclass(frozen=True)
class PageLayoutConfig:
    caption_font: str = "Helvetica-Oblique"
    caption_font_size: float = 10
    caption_line_height: float = 1.4
    caption_color: colors.Color = field(default_factory=lambda: colors.Color(0.3, 0.3, 0.3))
    footer_font: str = "Helvetica"
    footer_font_size: float = 9
    footer_color: colors.Color = field(default_factory=lambda: colors.Color(0.6, 0.6, 0.6))
    footer_y: float = 15
    line_art_color: colors.Color = field(default_factory=lambda: colors.black)


DEFAULT_LAYOUT = PageLayoutConfig()


@dataclass
class _PreparedPage:
    page: GeneratedPage
    vector: VectorArt | None
    raster: ImageReader | None
    width: float
    height: float


def build_pages(order: Order) -> list[GeneratedPage]:
    """Slot 0 of an order is the cover; every later slot is an illustration page."""
    return [
        GeneratedPage(
            page_number=index,
            kind=PageKind.COVER if index == 0 else PageKind.ILLUSTRATION,
            image=image,
            caption=order.caption_for(index) if index > 0 else None,
            prompt=order.prompt_for(index),
        )
        for index, image in enumerate(order.images)
    ]


class DocumentAssembler:
    """
    Turn an order's ordered page images into a single PDF.

    Pages are traced into vector outlines where possible so the lines stay
    crisp at any print size; a page that cannot be traced is embedded as the
    original raster instead, without affecting the rest of the book.
    """

    def __init__(
        self,
        store: OrderStore,
        artifact_store: ArtifactStore,
        *,
        vectorizer: LineArtVectorizer | None = None,
        page_size: tuple[float, float] = LETTER,
        margin: float = 36,
        caption_area: float = 100,
        max_caption_lines: int = 6,
        layout: PageLayoutConfig = DEFAULT_LAYOUT,
    ) -> None:
        self._store = store
        self._artifact_store = artifact_store
        self.vectorizer = vectorizer
        self.page_size = page_size
        self.margin = margin
        self.caption_area = caption_area
        self.max_caption_lines = max(1, max_caption_lines)
        self.layout = layout

    async def assemble(self, order_id: str) -> str:
        """Build the PDF for ``order_id`` and return the stored artifact reference."""
        order = await self._store.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found.")

        pages = build_pages(order)
        if not pages:
            raise AssemblyError(f"Order {order_id} has no pages to assemble.")

        logger.info("Assembling %d pages for order %s", len(pages), order_id)
        prepared = [await asyncio.to_thread(self._prepare_page, page) for page in pages]

        try:
            document = await asyncio.to_thread(self._render, prepared, f"Coloring Book {order_id}")
        except AssemblyError:
            raise
        except Exception as exc:
            raise DocumentWriteFailure(f"Could not render document for order {order_id}: {exc}") from exc

        return await self._artifact_store.save(order_id, document)

    def render_pages(self, pages: Sequence[GeneratedPage], title: str = "Coloring Book") -> bytes:
        """Synchronously render ``pages`` to PDF bytes."""
        if not pages:
            raise AssemblyError("No pages to render.")
        return self._render([self._prepare_page(page) for page in pages], title)

    # ------------------------------------------------------------------ preparation

    def _prepare_page(self, page: GeneratedPage) -> _PreparedPage:
        if self.vectorizer is not None:
            try:
                art = self.vectorizer.vectorize(page.image)
            except VectorizationFailure as exc:
                logger.warning(
                    "Page %d kept as raster, tracing failed: %s (prompt: %r)",
                    page.page_number,
                    exc,
                    page.prompt,
                )
            else:
                return _PreparedPage(page, art, None, art.width, art.height)

        try:
            reader = ImageReader(BytesIO(page.image))
            width, height = reader.getSize()
        except Exception as exc:
            raise AssemblyError(f"Page {page.page_number} image could not be read: {exc}") from exc
        return _PreparedPage(page, None, reader, width, height)

    # ------------------------------------------------------------------ rendering

    def _render(self, prepared: Sequence[_PreparedPage], title: str) -> bytes:
        buffer = BytesIO()
        pdf = canvas.Canvas(buffer, pagesize=self.page_size)
        pdf.setTitle(title)
        for item in prepared:
            self._draw_page(pdf, item)
            pdf.showPage()
        pdf.save()
        return buffer.getvalue()

    def _draw_page(self, pdf: canvas.Canvas, item: _PreparedPage) -> None:
        width, height = self.page_size
        max_width = width - 2 * self.margin
        caption_lines = self.wrap_caption(item.page.caption, max_width) if item.page.caption else []

        bottom = self.margin + (self.caption_area if caption_lines else 0)
        max_height = height - self.margin - bottom
        scale = min(max_width / item.width, max_height / item.height)
        draw_width = item.width * scale
        draw_height = item.height * scale
        x = (width - draw_width) / 2
        y = bottom + (max_height - draw_height) / 2

        if item.vector is not None:
            self._draw_vector(pdf, item.vector, x, y, draw_width, draw_height)
        else:
            pdf.drawImage(item.raster, x, y, draw_width, draw_height, preserveAspectRatio=True, mask="auto")

        if caption_lines:
            self._draw_caption(pdf, caption_lines, width)
        if item.page.kind is not PageKind.COVER:
            self._draw_footer(pdf, f"Page {item.page.page_number}", width)

    def _draw_vector(
        self,
        pdf: canvas.Canvas,
        art: VectorArt,
        x: float,
        y: float,
        width: float,
        height: float,
    ) -> None:
        # Outlines use image coordinates, so flip the y axis.
        pdf.saveState()
        pdf.translate(x, y + height)
        pdf.scale(width / art.width, -height / art.height)
        path = pdf.beginPath()
        for outline in art.paths:
            path.moveTo(*outline.start)
            for segment in outline.segments:
                if segment.kind == "curve":
                    (x1, y1), (x2, y2), (x3, y3) = segment.points
                    path.curveTo(x1, y1, x2, y2, x3, y3)
                else:
                    for point in segment.points:
                        path.lineTo(*point)
            path.close()
        pdf.setFillColor(self.layout.line_art_color)
        pdf.drawPath(path, stroke=0, fill=1, fillMode=FILL_EVEN_ODD)
        pdf.restoreState()

    def _draw_caption(self, pdf: canvas.Canvas, lines: Sequence[str], width: float) -> None:
        layout = self.layout
        leading = layout.caption_font_size * layout.caption_line_height
        pdf.saveState()
        pdf.setFont(layout.caption_font, layout.caption_font_size)
        pdf.setFillColor(layout.caption_color)
        text_y = self.margin + self.caption_area - 20
        for line in lines:
            pdf.drawCentredString(width / 2, text_y, line)
            text_y -= leading
        pdf.restoreState()

    def _draw_footer(self, pdf: canvas.Canvas, text: str, width: float) -> None:
        pdf.saveState()
        pdf.setFont(self.layout.footer_font, self.layout.footer_font_size)
        pdf.setFillColor(self.layout.footer_color)
        pdf.drawCentredString(width / 2, self.layout.footer_y, text)
        pdf.restoreState()

    # ------------------------------------------------------------------ helpers

    def wrap_caption(self, caption: str, max_width: float) -> list[str]:
        """
        Word-wrap ``caption`` to ``max_width``, keeping at most ``max_caption_lines``
        lines; the last kept line ends with an ellipsis when text was cut.
        """
        font = self.layout.caption_font
        size = self.layout.caption_font_size
        lines = simpleSplit(" ".join(caption.split()), font, size, max_width)
        if len(lines) <= self.max_caption_lines:
            return lines

        kept = lines[: self.max_caption_lines]
        last = kept[-1]
        while last and pdfmetrics.stringWidth(last + ELLIPSIS, font, size) > max_width:
            last = last[:-1]
        kept[-1] = last.rstrip() + ELLIPSIS
        return kept
