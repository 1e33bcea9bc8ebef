"""
Render a stored ColorBook order into a printable PDF.

Usage:
    python scripts/render_order_pdf.py --order-id 3f2c... [--output book.pdf]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Ensure project root is on the Python path.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from colorbook import ArtifactStore, DocumentAssembler, FileOrderStore, LineArtVectorizer  # noqa: E402
from colorbook.common import ColorBookError, GenerationSettings  # noqa: E402
from colorbook.pdf_generation import build_pages  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Convert the generated pages of a stored order into a colouring book PDF."
    )
    parser.add_argument(
        "--order-id",
        required=True,
        help="Identifier of the order under the data directory.",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Destination PDF path. Defaults to the artifact directory.",
    )
    parser.add_argument(
        "--data-dir",
        default=None,
        help="Override COLORBOOK_DATA_DIR.",
    )
    parser.add_argument(
        "--margin",
        type=float,
        default=36.0,
        help="Page margin in points (default: 36).",
    )
    parser.add_argument(
        "--no-vectorize",
        action="store_true",
        help="Embed raster pages without tracing them.",
    )
    return parser.parse_args()


async def render(args: argparse.Namespace) -> str:
    settings = GenerationSettings.from_env(data_dir=Path(args.data_dir) if args.data_dir else None)
    store = FileOrderStore(settings.orders_dir)
    assembler = DocumentAssembler(
        store,
        ArtifactStore(settings.artifacts_dir),
        vectorizer=None if args.no_vectorize else LineArtVectorizer(),
        margin=args.margin,
    )

    if args.output is None:
        return await assembler.assemble(args.order_id)

    order = await store.get_order(args.order_id)
    if order is None:
        raise ColorBookError(f"Order {args.order_id} not found.")
    if order.contiguous_pages < order.total_pages:
        print(f"Warning: only {order.contiguous_pages}/{order.total_pages} pages exist for this order.")
    document = await asyncio.to_thread(assembler.render_pages, build_pages(order), f"Coloring Book {order.order_id}")
    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(document)
    return str(output)


def main() -> int:
    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    try:
        reference = asyncio.run(render(args))
    except ColorBookError as exc:
        print(f"Rendering failed: {exc}")
        return 1

    print(f"Rendered colouring book PDF to {reference}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
