"""
Order lifecycle, prompt bookkeeping and page generation for ColorBook.
"""

from .failure_tracker import PromptFailureRecord, PromptFailureTracker, TrackingSummary
from .notifications import LoggingNotifier, Notifier, ResendNotifier
from .orchestrator import GenerationOrchestrator, GenerationResult, PageTask
from .orders import FileOrderStore, InMemoryOrderStore, Order, OrderStatus, OrderStore
from .prompt_selector import PromptSelector, load_catalog
from .rate_limiter import SlidingWindowRateLimiter
from .registry import GenerationRegistry

__all__ = [
    "FileOrderStore",
    "GenerationOrchestrator",
    "GenerationRegistry",
    "GenerationResult",
    "InMemoryOrderStore",
    "LoggingNotifier",
    "Notifier",
    "Order",
    "OrderStatus",
    "OrderStore",
    "PageTask",
    "PromptFailureRecord",
    "PromptFailureTracker",
    "PromptSelector",
    "ResendNotifier",
    "SlidingWindowRateLimiter",
    "TrackingSummary",
    "load_catalog",
]
