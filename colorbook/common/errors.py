"""
Exception hierarchy shared by the ColorBook generation pipeline.
"""

from __future__ import annotations


class ColorBookError(Exception):
    """Base class for every error raised by ColorBook."""


# ------------------------------------------------------------------ illustration service


class IllustrationServiceError(ColorBookError):
    """
    A classified failure returned by the illustration service.

    Errors of this exact type (not one of the subclasses below) are treated as
    permanent for the page that triggered them.
    """

    def __init__(self, message: str, *, prompt: str | None = None) -> None:
        super().__init__(message)
        self.prompt = prompt


class ModerationBlocked(IllustrationServiceError):
    """The prompt was rejected by the service's content policy."""


class RateLimited(IllustrationServiceError):
    """The service refused the call because a quota or rate limit was hit."""


class TransientServiceError(IllustrationServiceError):
    """A temporary fault (timeout, 5xx, empty output) worth retrying as-is."""


# ------------------------------------------------------------------ page level


class PromptPoolExhausted(ColorBookError):
    """No eligible prompt remains to substitute for a blocked one."""


class PageRetryBudgetExhausted(ColorBookError):
    """A page used up its attempt budget without producing an image."""

    def __init__(self, page_number: int, attempts: int) -> None:
        super().__init__(f"Page {page_number} failed after {attempts} attempts.")
        self.page_number = page_number
        self.attempts = attempts


# ------------------------------------------------------------------ order level


class OrderNotFoundError(ColorBookError):
    """The order store has no record for the requested identifier."""


class OrderAlreadyActiveError(ColorBookError):
    """The order is already being generated by this process."""


class InvalidStatusTransition(ColorBookError):
    """A status update would violate the order lifecycle."""


class OrderGenerationFailed(ColorBookError):
    """Generation finished with at least one missing page."""

    def __init__(
        self,
        order_id: str,
        *,
        pages_generated: int,
        total_pages: int,
        message: str | None = None,
    ) -> None:
        super().__init__(
            message
            or f"Order {order_id} failed with {pages_generated}/{total_pages} pages generated."
        )
        self.order_id = order_id
        self.pages_generated = pages_generated
        self.total_pages = total_pages


class OrderFailureCeilingExceeded(OrderGenerationFailed):
    """Too many pages failed; remaining queued work was dropped."""


# ------------------------------------------------------------------ assembly


class VectorizationFailure(ColorBookError):
    """A raster page could not be traced into line art."""


class AssemblyError(ColorBookError):
    """The document could not be assembled from the order's pages."""


class DocumentWriteFailure(AssemblyError):
    """Writing or persisting the assembled document failed."""
