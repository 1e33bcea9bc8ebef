"""
AI image generation package for ColorBook.
"""

from .prompting import ColoringPagePrompt, build_page_prompt, normalize_detail_level
from .replicate_service import (
    IllustrationService,
    ReplicateIllustrationService,
    classify_service_error,
)
from .scenes import SCENE_PROMPTS

__all__ = [
    "ColoringPagePrompt",
    "IllustrationService",
    "ReplicateIllustrationService",
    "SCENE_PROMPTS",
    "build_page_prompt",
    "classify_service_error",
    "normalize_detail_level",
]
