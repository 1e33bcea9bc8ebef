"""
Prompt construction utilities for ColorBook page illustrations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

NEGATIVE_PROMPT = (
    "color fills, shading, gradients, grey tones, photorealism, text, letters, captions, "
    "watermark, logo, signature, cluttered background, broken outlines"
)

DETAIL_LEVELS = ("1", "2")

_DETAIL_DIRECTIONS: dict[str, tuple[str, ...]] = {
    "1": (
        "Bold, clear outlines (3-4px) that are easy to colour within.",
        "Kid-friendly aesthetic with smooth, rounded shapes and few small regions.",
        "Simplified details that keep the subject instantly recognizable.",
    ),
    "2": (
        "More complex and detailed line work with thinner lines throughout.",
        "Refined features and textures with added decorative and pattern details.",
        "Dense but well-separated regions suited to older children.",
    ),
}


_COVER_DIRECTIONS = (
    "This page is the cover of the colouring book.",
    "Place the subject in the centre of the page, facing the viewer, in a cheerful pose.",
    "Surround the subject with decorative stars, swirls and flowers.",
)


@dataclass(frozen=True)
class ColoringPagePrompt:
    """Container for the positive and negative prompts passed to the image model."""

    positive: str
    negative: str = NEGATIVE_PROMPT


def normalize_detail_level(detail_level: str | int | None) -> str:
    """Map any stored detail value onto ``"1"`` (simple) or ``"2"`` (complex)."""
    return "2" if str(detail_level).strip() == "2" else "1"


def build_page_prompt(
    scene_prompt: str,
    *,
    detail_level: str | int | None = "1",
    extra_notes: Sequence[str] | None = None,
    cover: bool = False,
) -> ColoringPagePrompt:
    """
    Build the structured prompt for one colouring page.

    Parameters
    ----------
    scene_prompt:
        Short scene fragment drawn from the catalog (e.g. "riding a bicycle in the park").
    detail_level:
        ``"1"`` for simple line art, ``"2"`` for complex line art. Anything else falls
        back to simple.
    extra_notes:
        Optional additional bullet points appended to the prompt.
    cover:
        Frame the page as the book cover; the scene then only sets the theme
        of the decorations.
    """
    if not scene_prompt or not scene_prompt.strip():
        raise ValueError("scene_prompt must be a non-empty string.")

    level = normalize_detail_level(detail_level)

    positive_prompt = f"""TASK
Convert the subject from the reference photo into a clean, Disney-Pixar-style black and white line art colouring book page.

{_scene_section(scene_prompt.strip(), cover)}

CHARACTER REFERENCE
- Match the subject in the reference image: same facial features, hair and body proportions.

{_format_bullet_section("LINE STYLE", _DETAIL_DIRECTIONS[level])}

OUTPUT RULES
- High contrast black lines on a white background.
- No shading, gradients, or colour fills - only clean line art.
- Do not include any text, letters, words, titles, captions or labels."""

    notes = [note.strip() for note in extra_notes or () if note and note.strip()]
    if notes:
        positive_prompt = positive_prompt + "\n\n" + _format_bullet_section("NOTES", notes)

    return ColoringPagePrompt(positive=positive_prompt)


def _scene_section(scene_prompt: str, cover: bool) -> str:
    if cover:
        return _format_bullet_section(
            "COVER", (*_COVER_DIRECTIONS, f"Let the decorations hint at the theme: {scene_prompt}.")
        )
    return _format_bullet_section(
        "SCENE",
        (
            f"Show the subject {scene_prompt}.",
            "The subject stays the clear focal point; the background supports the scene without clutter.",
        ),
    )


def _format_bullet_section(title: str, lines: Sequence[str]) -> str:
    bullet_block = "\n".join(f"- {line}" for line in lines if line.strip())
    return f"{title}\n{bullet_block}"
