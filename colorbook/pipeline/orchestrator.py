"""
Drives an order's pages through the illustration service and hands the result to assembly.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol, Sequence, Union

from colorbook.ai_generation.replicate_service import IllustrationService
from colorbook.common.errors import (
    AssemblyError,
    DocumentWriteFailure,
    IllustrationServiceError,
    ModerationBlocked,
    OrderAlreadyActiveError,
    OrderFailureCeilingExceeded,
    OrderGenerationFailed,
    OrderNotFoundError,
    PageRetryBudgetExhausted,
    PromptPoolExhausted,
    RateLimited,
    TransientServiceError,
)
from colorbook.common.settings import GenerationSettings

from .notifications import LoggingNotifier, Notifier
from .orders import Order, OrderStatus, OrderStore
from .prompt_selector import PromptSelector
from .rate_limiter import SlidingWindowRateLimiter
from .registry import GenerationRegistry

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict[str, Any]], None]


class DocumentBuilder(Protocol):
    async def assemble(self, order_id: str) -> str:
        ...


@dataclass
class PageTask:
    """One page waiting for artwork. ``page_number`` is 1-based, ``slot`` 0-based."""

    page_number: int
    slot: int
    prompt: str
    attempts: int = 0

    @property
    def cover(self) -> bool:
        return self.slot == 0


@dataclass(frozen=True)
class Success:
    image: bytes


@dataclass(frozen=True)
class RetryWithPrompt:
    prompt: str


@dataclass(frozen=True)
class RetryBackoff:
    delay: float


@dataclass(frozen=True)
class PermanentFailure:
    error: Exception


PageOutcome = Union[Success, RetryWithPrompt, RetryBackoff, PermanentFailure]


@dataclass(frozen=True)
class GenerationResult:
    order_id: str
    status: OrderStatus
    pages_generated: int
    total_pages: int
    artifact_reference: str | None = None
    skipped: bool = False


@dataclass
class _OrderRun:
    order: Order
    slots: list[bytes | None]
    prompts: list[str | None]
    success_count: int
    limiter: SlidingWindowRateLimiter
    reference_image: bytes = b""
    used_prompts: set[str] = field(default_factory=set)
    failed_pages: list[int] = field(default_factory=list)
    tripped: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def filled(self) -> int:
        return sum(1 for image in self.slots if image is not None)

    def prefix(self) -> tuple[list[bytes], list[str | None]]:
        images: list[bytes] = []
        for image in self.slots:
            if image is None:
                break
            images.append(image)
        return images, self.prompts[: len(images)]


class GenerationOrchestrator:
    """
    Generates every missing page of an order, then assembles and announces the book.

    Each run owns a fixed pool of ``settings.worker_count`` workers that share
    one rolling-window rate limiter. Pages are persisted as soon as they extend
    the gap-free prefix of the book, so an interrupted run resumes from the
    first missing page. An order is only marked completed once every page
    exists and the document has been written.
    """

    def __init__(
        self,
        store: OrderStore,
        illustration_service: IllustrationService,
        registry: GenerationRegistry,
        *,
        assembler: DocumentBuilder,
        selector: PromptSelector | None = None,
        notifier: Notifier | None = None,
        settings: GenerationSettings | None = None,
        progress_callback: ProgressCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._service = illustration_service
        self._registry = registry
        self._assembler = assembler
        self._selector = selector or PromptSelector(registry.failure_tracker)
        self._notifier = notifier or LoggingNotifier()
        self._settings = settings or GenerationSettings()
        self._progress_callback = progress_callback
        self._clock = clock
        self._sleep = sleep

    @property
    def settings(self) -> GenerationSettings:
        return self._settings

    async def run(
        self,
        order_id: str,
        resume_from_page: int = 1,
        *,
        resume: bool = False,
    ) -> GenerationResult:
        """
        Generate the pages of ``order_id`` from ``resume_from_page`` onwards.

        Raises :class:`OrderAlreadyActiveError` if the order is already running
        in this process, :class:`OrderGenerationFailed` when pages are missing
        at the end, and :class:`AssemblyError` when the document cannot be built.
        """
        if not self._registry.claim(order_id):
            raise OrderAlreadyActiveError(f"Order {order_id} is already being generated.")
        try:
            return await self._run_claimed(order_id, max(1, int(resume_from_page)), resume)
        finally:
            self._registry.release(order_id)

    async def resume_pending(self) -> dict[str, GenerationResult | BaseException]:
        """
        Restart every unfinished order from its first missing page.

        Per-order errors are logged and returned rather than raised.
        """
        orders = await self._store.get_orders_to_resume()
        if not orders:
            logger.info("No orders to resume")
            return {}

        logger.info("Resuming %d orders", len(orders))
        results = await asyncio.gather(
            *(self.run(order.order_id, order.resume_point, resume=True) for order in orders),
            return_exceptions=True,
        )
        outcomes: dict[str, GenerationResult | BaseException] = {}
        for order, result in zip(orders, results):
            if isinstance(result, BaseException):
                logger.error("Resuming order %s failed: %s", order.order_id, result, exc_info=result)
            outcomes[order.order_id] = result
        return outcomes

    # ------------------------------------------------------------------ order level

    async def _run_claimed(self, order_id: str, resume_from_page: int, resume: bool) -> GenerationResult:
        order = await self._store.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found.")

        if order.status.is_terminal or (order.status is OrderStatus.GENERATING and not resume):
            logger.info("Order %s is %s, nothing to do", order_id, order.status.value)
            self._notify("order:skipped", order_id=order_id, status=order.status.value)
            return GenerationResult(
                order_id=order_id,
                status=order.status,
                pages_generated=order.contiguous_pages,
                total_pages=order.total_pages,
                artifact_reference=order.artifact_reference,
                skipped=True,
            )

        kept = min(resume_from_page - 1, order.contiguous_pages)
        ctx = _OrderRun(
            order=order,
            slots=[*order.images[:kept], *([None] * (order.total_pages - kept))],
            prompts=[
                *(order.prompt_for(index) for index in range(kept)),
                *([None] * (order.total_pages - kept)),
            ],
            success_count=kept,
            limiter=SlidingWindowRateLimiter(
                self._settings.rate_limit_calls,
                self._settings.rate_limit_period,
                clock=self._clock,
                sleep=self._sleep,
            ),
        )

        await self._store.update_order_status(order_id, OrderStatus.GENERATING)
        remaining = [slot for slot, image in enumerate(ctx.slots) if image is None]
        self._notify(
            "order:started",
            order_id=order_id,
            total_pages=order.total_pages,
            remaining_pages=len(remaining),
            resume=resume,
        )
        logger.info(
            "Generating order %s: %d/%d pages kept, %d to generate",
            order_id,
            kept,
            order.total_pages,
            len(remaining),
        )

        if remaining:
            await self._generate_pages(ctx, remaining)

        if ctx.filled < order.total_pages:
            await self._fail_order(ctx)

        images, prompts = ctx.prefix()
        await self._store.update_order_progress(order_id, ctx.success_count, images, prompts)
        return await self._complete_order(ctx)

    async def _generate_pages(self, ctx: _OrderRun, remaining: Sequence[int]) -> None:
        order_id = ctx.order.order_id
        try:
            ctx.reference_image = await self._registry.reference_image(ctx.order)
        except (ValueError, OSError) as exc:
            await self._store.update_order_status(order_id, OrderStatus.FAILED)
            self._notify("order:failed", order_id=order_id, reason="reference_image")
            raise OrderGenerationFailed(
                order_id,
                pages_generated=ctx.filled,
                total_pages=ctx.order.total_pages,
                message=f"Order {order_id} reference image could not be loaded: {exc}",
            ) from exc

        ctx.used_prompts.update(prompt for prompt in ctx.prompts if prompt)
        prompts = self._selector.select(len(remaining), excluding=ctx.used_prompts)
        if len(prompts) < len(remaining):
            await self._store.update_order_status(order_id, OrderStatus.FAILED)
            self._notify("order:failed", order_id=order_id, reason="prompt_pool")
            raise OrderGenerationFailed(
                order_id,
                pages_generated=ctx.filled,
                total_pages=ctx.order.total_pages,
                message=(
                    f"Order {order_id} needs {len(remaining)} prompts but only "
                    f"{len(prompts)} are available."
                ),
            ) from PromptPoolExhausted("Not enough unblocked prompts.")
        ctx.used_prompts.update(prompts)

        queue: asyncio.Queue[PageTask] = asyncio.Queue()
        for slot, prompt in zip(remaining, prompts):
            queue.put_nowait(PageTask(page_number=slot + 1, slot=slot, prompt=prompt))

        workers = [
            asyncio.create_task(self._worker(ctx, queue), name=f"{order_id}-worker-{index}")
            for index in range(min(self._settings.worker_count, len(remaining)))
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

    async def _fail_order(self, ctx: _OrderRun) -> None:
        order = ctx.order
        await self._store.update_order_status(order.order_id, OrderStatus.FAILED)
        self._notify(
            "order:failed",
            order_id=order.order_id,
            pages_generated=ctx.filled,
            total_pages=order.total_pages,
            failed_pages=sorted(ctx.failed_pages),
        )
        error_type = OrderFailureCeilingExceeded if ctx.tripped else OrderGenerationFailed
        raise error_type(order.order_id, pages_generated=ctx.filled, total_pages=order.total_pages)

    async def _complete_order(self, ctx: _OrderRun) -> GenerationResult:
        order = ctx.order
        self._notify("order:assembling", order_id=order.order_id, total_pages=order.total_pages)
        try:
            reference = await self._assembler.assemble(order.order_id)
        except Exception as exc:
            logger.exception("Assembling order %s failed", order.order_id)
            await self._store.update_order_status(order.order_id, OrderStatus.FAILED)
            self._notify("order:failed", order_id=order.order_id, reason="assembly")
            if isinstance(exc, AssemblyError):
                raise
            raise DocumentWriteFailure(f"Could not write document for order {order.order_id}.") from exc

        await self._store.update_order_status(
            order.order_id,
            OrderStatus.COMPLETED,
            completed_at=datetime.now(timezone.utc),
            artifact_reference=reference,
        )
        logger.info("Order %s completed: %s", order.order_id, reference)
        self._notify("order:completed", order_id=order.order_id, artifact_reference=reference)

        if order.email:
            try:
                await self._notifier.notify_ready(order.email, order.order_id, reference)
            except Exception:
                logger.exception("Could not send ready notification for order %s", order.order_id)

        return GenerationResult(
            order_id=order.order_id,
            status=OrderStatus.COMPLETED,
            pages_generated=order.total_pages,
            total_pages=order.total_pages,
            artifact_reference=reference,
        )

    # ------------------------------------------------------------------ page level

    async def _worker(self, ctx: _OrderRun, queue: asyncio.Queue[PageTask]) -> None:
        while True:
            try:
                task = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                if ctx.tripped:
                    logger.debug("Dropping page %d of order %s", task.page_number, ctx.order.order_id)
                    continue
                await self._drive_page(ctx, task)
            finally:
                queue.task_done()

    async def _drive_page(self, ctx: _OrderRun, task: PageTask) -> None:
        budget = self._settings.page_attempts
        while True:
            if task.attempts >= budget:
                outcome: PageOutcome = PermanentFailure(
                    PageRetryBudgetExhausted(task.page_number, task.attempts)
                )
            else:
                outcome = await self._attempt(ctx, task)

            match outcome:
                case Success(image):
                    await self._record_success(ctx, task, image)
                    return
                case RetryWithPrompt(prompt):
                    task.prompt = prompt
                case RetryBackoff(delay):
                    if task.attempts < budget:
                        await self._sleep(delay)
                case PermanentFailure(error):
                    self._record_failure(ctx, task, error)
                    return

    async def _attempt(self, ctx: _OrderRun, task: PageTask) -> PageOutcome:
        tracker = self._registry.failure_tracker
        if tracker.is_blocked(task.prompt):
            replacement = self._replacement_prompt(ctx)
            if replacement is None:
                return PermanentFailure(
                    PromptPoolExhausted(f"No replacement prompt left for page {task.page_number}.")
                )
            logger.info("Page %d prompt is blocked, switching prompt", task.page_number)
            return RetryWithPrompt(replacement)

        task.attempts += 1
        await ctx.limiter.acquire()
        try:
            image = await self._service.synthesize(
                task.prompt,
                ctx.reference_image,
                detail_level=ctx.order.detail_level,
                cover=task.cover,
            )
        except ModerationBlocked as exc:
            try:
                tracker.record_failure(task.prompt, str(exc))
            except OSError:
                logger.exception("Could not persist rejection of page %d prompt", task.page_number)
            replacement = self._replacement_prompt(ctx)
            if replacement is None:
                return PermanentFailure(
                    PromptPoolExhausted(f"No replacement prompt left for page {task.page_number}.")
                )
            return RetryWithPrompt(replacement)
        except (RateLimited, TransientServiceError) as exc:
            logger.warning(
                "Page %d attempt %d/%d failed, retrying: %s",
                task.page_number,
                task.attempts,
                self._settings.page_attempts,
                exc,
            )
            return RetryBackoff(self._settings.retry_delay)
        except IllustrationServiceError as exc:
            return PermanentFailure(exc)
        except Exception as exc:
            logger.exception("Page %d failed with an unexpected error", task.page_number)
            return PermanentFailure(exc)

        if not image:
            return RetryBackoff(self._settings.retry_delay)
        return Success(image)

    def _replacement_prompt(self, ctx: _OrderRun) -> str | None:
        prompt = self._selector.select_one(excluding=ctx.used_prompts)
        if prompt is not None:
            ctx.used_prompts.add(prompt)
        return prompt

    async def _record_success(self, ctx: _OrderRun, task: PageTask, image: bytes) -> None:
        async with ctx.lock:
            ctx.slots[task.slot] = image
            ctx.prompts[task.slot] = task.prompt
            ctx.success_count += 1
            prefix, prompts = ctx.prefix()
            await self._store.update_order_progress(ctx.order.order_id, ctx.success_count, prefix, prompts)
        self._notify(
            "page:done",
            order_id=ctx.order.order_id,
            page_number=task.page_number,
            attempts=task.attempts,
            pages_generated=ctx.success_count,
            contiguous_pages=len(prefix),
            total_pages=ctx.order.total_pages,
        )

    def _record_failure(self, ctx: _OrderRun, task: PageTask, error: Exception) -> None:
        ctx.failed_pages.append(task.page_number)
        logger.error(
            "Page %d of order %s failed permanently: %s",
            task.page_number,
            ctx.order.order_id,
            error,
        )
        self._notify(
            "page:failed",
            order_id=ctx.order.order_id,
            page_number=task.page_number,
            attempts=task.attempts,
            error=str(error),
        )
        if not ctx.tripped and len(ctx.failed_pages) >= self._settings.failure_ceiling:
            ctx.tripped = True
            logger.error(
                "Order %s reached %d failed pages, dropping queued pages",
                ctx.order.order_id,
                len(ctx.failed_pages),
            )

    def _notify(self, stage: str, **payload: Any) -> None:
        if self._progress_callback is not None:
            self._progress_callback(stage, payload)
