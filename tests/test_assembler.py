"""Tests for PDF assembly."""

from __future__ import annotations

import re

import pytest
from reportlab.pdfbase import pdfmetrics

from colorbook.common.errors import AssemblyError, DocumentWriteFailure, OrderNotFoundError, VectorizationFailure
from colorbook.pdf_generation.artifacts import ArtifactStore
from colorbook.pdf_generation.assembler import DocumentAssembler, PageKind, build_pages
from colorbook.pdf_generation.vectorizer import PathSegment, VectorArt, VectorPath
from colorbook.pipeline.orders import InMemoryOrderStore, OrderStatus

from .conftest import make_png

SQUARE = VectorArt(
    width=10,
    height=10,
    paths=(
        VectorPath(
            start=(1.0, 1.0),
            segments=(
                PathSegment("line", ((9.0, 1.0), (9.0, 9.0))),
                PathSegment("curve", ((5.0, 12.0), (3.0, 12.0), (1.0, 9.0))),
            ),
        ),
    ),
)


class StubVectorizer:
    def __init__(self, failing: set[bytes] = frozenset()) -> None:
        self.failing = failing
        self.calls = 0

    def vectorize(self, image_bytes: bytes) -> VectorArt:
        self.calls += 1
        if image_bytes in self.failing:
            raise VectorizationFailure("nothing to trace")
        return SQUARE


def page_count(document: bytes) -> int:
    return len(re.findall(rb"/Type /Page\b", document))


def image_count(document: bytes) -> int:
    return document.count(b"/Subtype /Image")


async def stored_order(images, captions=(), prompts=()):
    store = InMemoryOrderStore()
    order = await store.create_order(
        source_image=b"ref",
        total_pages=max(1, len(images)),
        captions=captions,
        status=OrderStatus.GENERATING,
    )
    if images:
        await store.update_order_progress(order.order_id, len(images), images, prompts)
    return store, order


class TestBuildPages:
    def test_first_slot_is_cover_without_caption(self):
        from colorbook.pipeline.orders import Order

        order = Order(
            order_id="o",
            total_pages=3,
            source_image=b"ref",
            images=[b"c", b"p1", b"p2"],
            prompts=["on a rocket ship", "at the zoo"],
            captions=["ignored", "First page", None],
        )

        pages = build_pages(order)

        assert [page.kind for page in pages] == [PageKind.COVER, PageKind.ILLUSTRATION, PageKind.ILLUSTRATION]
        assert [page.page_number for page in pages] == [0, 1, 2]
        assert pages[0].caption is None
        assert pages[1].caption == "First page"
        assert [page.prompt for page in pages] == ["on a rocket ship", "at the zoo", None]


class TestDocumentAssembler:
    @pytest.mark.asyncio
    async def test_raster_book_written_to_artifact_store(self, tmp_path):
        images = [make_png((40, 60)), make_png((60, 40)), make_png((50, 50))]
        store, order = await stored_order(images, captions=[None, "A sunny day", "Bedtime"])
        assembler = DocumentAssembler(store, ArtifactStore(tmp_path / "books"))

        reference = await assembler.assemble(order.order_id)

        with open(reference, "rb") as handle:
            document = handle.read()
        assert reference.startswith(str(tmp_path / "books"))
        assert document.startswith(b"%PDF")
        assert page_count(document) == 3
        assert image_count(document) == 3

    @pytest.mark.asyncio
    async def test_failed_trace_falls_back_to_raster_for_that_page_only(self, tmp_path, caplog):
        untraceable = make_png((30, 30), line_art=False)
        images = [make_png((40, 60)), untraceable, make_png((50, 50))]
        store, order = await stored_order(images, prompts=["cover", "flying a kite", "at the beach"])
        vectorizer = StubVectorizer(failing={untraceable})
        assembler = DocumentAssembler(store, ArtifactStore(tmp_path), vectorizer=vectorizer)

        reference = await assembler.assemble(order.order_id)

        with open(reference, "rb") as handle:
            document = handle.read()
        assert vectorizer.calls == 3
        assert page_count(document) == 3
        assert image_count(document) == 1
        assert "flying a kite" in caplog.text

    @pytest.mark.asyncio
    async def test_order_without_pages_is_an_error(self, tmp_path):
        store, order = await stored_order([])
        assembler = DocumentAssembler(store, ArtifactStore(tmp_path))

        with pytest.raises(AssemblyError):
            await assembler.assemble(order.order_id)

        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_missing_order(self, tmp_path):
        assembler = DocumentAssembler(InMemoryOrderStore(), ArtifactStore(tmp_path))

        with pytest.raises(OrderNotFoundError):
            await assembler.assemble("missing")

    @pytest.mark.asyncio
    async def test_unreadable_artifact_location_raises_write_failure(self, tmp_path):
        blocker = tmp_path / "books"
        blocker.write_text("not a directory", encoding="utf-8")
        store, order = await stored_order([make_png()])
        assembler = DocumentAssembler(store, ArtifactStore(blocker / "nested"))

        with pytest.raises(DocumentWriteFailure):
            await assembler.assemble(order.order_id)

    @pytest.mark.asyncio
    async def test_unreadable_page_image(self, tmp_path):
        store, order = await stored_order([b"not an image"])
        assembler = DocumentAssembler(store, ArtifactStore(tmp_path))

        with pytest.raises(AssemblyError):
            await assembler.assemble(order.order_id)


class TestCaptionWrapping:
    def test_short_caption_single_line(self, tmp_path):
        assembler = DocumentAssembler(InMemoryOrderStore(), ArtifactStore(tmp_path))

        assert assembler.wrap_caption("A picnic   in the park", 540) == ["A picnic in the park"]

    def test_long_caption_capped_with_ellipsis(self, tmp_path):
        assembler = DocumentAssembler(InMemoryOrderStore(), ArtifactStore(tmp_path))
        caption = " ".join(["Once upon a time a brave explorer wandered through the forest."] * 30)

        lines = assembler.wrap_caption(caption, 300)

        assert len(lines) == 6
        assert lines[-1].endswith("...")
        for line in lines:
            assert pdfmetrics.stringWidth(line, "Helvetica-Oblique", 10) <= 300
