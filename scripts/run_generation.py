"""
CLI to generate a colouring book for a new order, or to resume unfinished orders.

Usage:
    python scripts/run_generation.py \
        --image example_images/child.jpg \
        --pages 12 \
        --email parent@example.com

    python scripts/run_generation.py --resume-pending

Environment variables:
    REPLICATE_API_TOKEN  - required unless you pass --api-token
    REPLICATE_MODEL      - optional model override
    RESEND_API_KEY       - enables book-ready emails
    COLORBOOK_*          - pipeline limits, see GenerationSettings
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict

from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from colorbook import (  # noqa: E402
    ArtifactStore,
    DocumentAssembler,
    FileOrderStore,
    GenerationOrchestrator,
    GenerationRegistry,
    LineArtVectorizer,
    PromptSelector,
)
from colorbook.ai_generation import ReplicateIllustrationService  # noqa: E402
from colorbook.common import ColorBookError, GenerationSettings  # noqa: E402
from colorbook.pipeline import LoggingNotifier, ResendNotifier, load_catalog  # noqa: E402
from colorbook.pipeline.orders import OrderStatus  # noqa: E402


class ProgressTracker:
    """
    Command-line progress output for generation runs.
    """

    def __init__(self) -> None:
        self._bars: dict[str, tqdm] = {}

    def __call__(self, stage: str, payload: Dict[str, Any]) -> None:
        order_id = str(payload.get("order_id", ""))
        match stage:
            case "order:started":
                total = payload.get("total_pages", 0)
                remaining = payload.get("remaining_pages", 0)
                verb = "Resuming" if payload.get("resume") else "Starting"
                self._write(f"{verb} order {order_id}: {remaining} of {total} pages to generate.")
                self._bars[order_id] = tqdm(
                    total=total,
                    initial=total - remaining,
                    desc=f"Order {order_id[:8]}",
                    unit="page",
                )
            case "order:skipped":
                self._write(f"Order {order_id} is already {payload.get('status')}, skipping.")
            case "page:done":
                bar = self._bars.get(order_id)
                if bar is not None:
                    bar.update(1)
            case "page:failed":
                self._write(
                    f"Page {payload.get('page_number')} of order {order_id} failed: {payload.get('error')}"
                )
            case "order:assembling":
                self._write(f"Assembling PDF for order {order_id}...")
            case "order:completed":
                self._close(order_id)
                self._write(f"Order {order_id} complete: {payload.get('artifact_reference')}")
            case "order:failed":
                self._close(order_id)
                self._write(f"Order {order_id} failed.")

    def close(self) -> None:
        for order_id in list(self._bars):
            self._close(order_id)

    def _close(self, order_id: str) -> None:
        bar = self._bars.pop(order_id, None)
        if bar is not None:
            bar.close()

    @staticmethod
    def _write(message: str) -> None:
        tqdm.write(message)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate ColorBook colouring books.")
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument(
        "--image",
        help="Reference image path, URL or data URL for a new order.",
    )
    mode.add_argument(
        "--order-id",
        help="Run (or resume) an existing stored order.",
    )
    mode.add_argument(
        "--resume-pending",
        action="store_true",
        help="Resume every pending, paid or generating order in the data directory.",
    )
    parser.add_argument("--pages", type=int, default=10, help="Number of pages for a new order (default: 10).")
    parser.add_argument("--email", default=None, help="Address notified when the book is ready.")
    parser.add_argument(
        "--detail-level",
        choices=["1", "2"],
        default="1",
        help="Line-art complexity: 1 simple, 2 complex (default: 1).",
    )
    parser.add_argument(
        "--caption",
        action="append",
        default=[],
        help="Caption for illustration pages, in page order (repeatable).",
    )
    parser.add_argument(
        "--resume-from-page",
        type=int,
        default=None,
        help="With --order-id, first page to regenerate (default: first missing page).",
    )
    parser.add_argument("--data-dir", default=None, help="Override COLORBOOK_DATA_DIR.")
    parser.add_argument("--workers", type=int, default=None, help="Override COLORBOOK_WORKER_COUNT.")
    parser.add_argument("--catalog", default=None, help="YAML file with a custom scene prompt list.")
    parser.add_argument("--api-token", default=None, help="Replicate API token override.")
    parser.add_argument("--model", default=None, help="Replicate model identifier override.")
    parser.add_argument(
        "--no-vectorize",
        action="store_true",
        help="Embed raster pages without tracing them into vector outlines.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args()


def build_notifier():
    if os.getenv("RESEND_API_KEY"):
        return ResendNotifier()
    return LoggingNotifier()


async def run(args: argparse.Namespace) -> int:
    settings = GenerationSettings.from_env(
        data_dir=Path(args.data_dir) if args.data_dir else None,
        worker_count=args.workers,
    )
    store = FileOrderStore(settings.orders_dir)
    registry = GenerationRegistry.from_path(settings.failure_map_path, threshold=settings.failure_threshold)
    selector = (
        PromptSelector(registry.failure_tracker, load_catalog(args.catalog))
        if args.catalog
        else PromptSelector(registry.failure_tracker)
    )
    assembler = DocumentAssembler(
        store,
        ArtifactStore(settings.artifacts_dir),
        vectorizer=None if args.no_vectorize else LineArtVectorizer(),
    )
    tracker = ProgressTracker()
    orchestrator = GenerationOrchestrator(
        store,
        ReplicateIllustrationService(api_token=args.api_token, model_identifier=args.model),
        registry,
        assembler=assembler,
        selector=selector,
        notifier=build_notifier(),
        settings=settings,
        progress_callback=tracker,
    )

    try:
        if args.resume_pending:
            outcomes = await orchestrator.resume_pending()
            failures = [order_id for order_id, result in outcomes.items() if isinstance(result, BaseException)]
            tqdm.write(f"Resumed {len(outcomes)} orders, {len(failures)} failed.")
            return 1 if failures else 0

        if args.image:
            captions = [None, *args.caption] if args.caption else []
            order = await store.create_order(
                source_image=args.image,
                total_pages=args.pages,
                email=args.email,
                detail_level=args.detail_level,
                captions=captions,
                status=OrderStatus.PAID,
            )
            tqdm.write(f"Created order {order.order_id}")
            result = await orchestrator.run(order.order_id)
        else:
            existing = await store.get_order(args.order_id)
            resume_from = args.resume_from_page or (existing.resume_point if existing else 1)
            result = await orchestrator.run(args.order_id, resume_from, resume=True)
    except ColorBookError as exc:
        tqdm.write(f"Generation failed: {exc}")
        return 1
    finally:
        tracker.close()
        registry.close()

    print(f"Order {result.order_id}: {result.status.value} ({result.pages_generated}/{result.total_pages} pages)")
    if result.artifact_reference:
        print(f"Book saved to {result.artifact_reference}")
    return 0


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())
