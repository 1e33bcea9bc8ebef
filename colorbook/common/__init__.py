"""
Common utilities shared across ColorBook modules.
"""

from .errors import (
    AssemblyError,
    ColorBookError,
    DocumentWriteFailure,
    IllustrationServiceError,
    InvalidStatusTransition,
    ModerationBlocked,
    OrderAlreadyActiveError,
    OrderFailureCeilingExceeded,
    OrderGenerationFailed,
    OrderNotFoundError,
    PageRetryBudgetExhausted,
    PromptPoolExhausted,
    RateLimited,
    TransientServiceError,
    VectorizationFailure,
)
from .images import decode_base64_image, load_image_bytes, sniff_mime_type, to_data_url
from .settings import GenerationSettings

__all__ = [
    "AssemblyError",
    "ColorBookError",
    "DocumentWriteFailure",
    "GenerationSettings",
    "IllustrationServiceError",
    "InvalidStatusTransition",
    "ModerationBlocked",
    "OrderAlreadyActiveError",
    "OrderFailureCeilingExceeded",
    "OrderGenerationFailed",
    "OrderNotFoundError",
    "PageRetryBudgetExhausted",
    "PromptPoolExhausted",
    "RateLimited",
    "TransientServiceError",
    "VectorizationFailure",
    "decode_base64_image",
    "load_image_bytes",
    "sniff_mime_type",
    "to_data_url",
]
