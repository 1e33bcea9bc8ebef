"""
Integration with Replicate for colouring page illustration synthesis.
"""

from __future__ import annotations

import asyncio
import io
import logging
import os
from collections.abc import Iterable as IterableABC
from typing import Any, BinaryIO, Callable, Protocol, runtime_checkable

import replicate
import requests
from replicate.exceptions import ModelError, ReplicateError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from colorbook.common.errors import (
    IllustrationServiceError,
    ModerationBlocked,
    RateLimited,
    TransientServiceError,
)
from colorbook.common.images import sniff_mime_type

from .prompting import ColoringPagePrompt, build_page_prompt

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "black-forest-labs/flux-kontext-pro"

_MODERATION_MARKERS = (
    "nsfw",
    "flagged",
    "sensitive",
    "safety",
    "moderation",
    "content policy",
    "content_policy",
    "violat",
)
_RATE_LIMIT_MARKERS = ("429", "rate limit", "ratelimit", "quota", "too many requests")


@runtime_checkable
class IllustrationService(Protocol):
    """
    Anything able to turn a scene prompt plus a reference image into page artwork.

    Implementations raise :class:`ModerationBlocked`, :class:`RateLimited`,
    :class:`TransientServiceError` or a plain :class:`IllustrationServiceError`.
    """

    async def synthesize(
        self,
        prompt: str,
        reference_image: bytes,
        *,
        detail_level: str = "1",
        cover: bool = False,
    ) -> bytes:
        ...


def _build_flux_kontext_input(
    *,
    prompt: ColoringPagePrompt,
    image_input: BinaryIO,
) -> dict[str, Any]:
    return {
        "prompt": prompt.positive,
        "input_image": image_input,
        "output_format": "png",
        "safety_tolerance": 2,
        "aspect_ratio": "2:3",
    }


def _build_nano_banana_input(
    *,
    prompt: ColoringPagePrompt,
    image_input: BinaryIO,
) -> dict[str, Any]:
    return {
        "prompt": f"{prompt.positive}\n\nAVOID\n{prompt.negative}",
        "image_input": [image_input],
        "output_format": "png",
        "aspect_ratio": "2:3",
    }


_MODEL_INPUT_BUILDERS: dict[str, Callable[..., dict[str, Any]]] = {
    "black-forest-labs/flux-kontext-pro": _build_flux_kontext_input,
    "black-forest-labs/flux-kontext-max": _build_flux_kontext_input,
    "google/nano-banana": _build_nano_banana_input,
}


def _build_replicate_input_payload(
    *,
    model_identifier: str,
    prompt: ColoringPagePrompt,
    image_input: BinaryIO,
) -> dict[str, Any]:
    normalized_identifier = model_identifier.strip().lower()
    builder = _MODEL_INPUT_BUILDERS.get(normalized_identifier)
    if builder is None and ":" in normalized_identifier:
        base_identifier = normalized_identifier.split(":", maxsplit=1)[0]
        builder = _MODEL_INPUT_BUILDERS.get(base_identifier)
    if builder is None:
        supported_models = ", ".join(sorted(_MODEL_INPUT_BUILDERS))
        raise ValueError(
            "Model identifier "
            f"'{model_identifier}' is not configured with a default input payload. "
            f"Supported models: {supported_models}."
        )

    return builder(prompt=prompt, image_input=image_input)


class ReplicateIllustrationService:
    """
    :class:`IllustrationService` backed by a Replicate image-editing model.

    Parameters
    ----------
    api_token:
        Replicate API token. Falls back to ``REPLICATE_API_TOKEN`` environment variable.
    model_identifier:
        Model string in the ``owner/model[:version]`` format. Falls back to
        ``REPLICATE_MODEL`` and then to :data:`DEFAULT_MODEL`.
    client:
        Optional pre-configured :class:`replicate.Client`. Mainly useful for testing.
    download_timeout:
        Timeout in seconds for fetching output files returned as URLs.
    """

    def __init__(
        self,
        *,
        api_token: str | None = None,
        model_identifier: str | None = None,
        client: replicate.Client | None = None,
        download_timeout: float = 60.0,
    ) -> None:
        self._api_token = api_token or os.getenv("REPLICATE_API_TOKEN")
        if not self._api_token and not client:
            raise ValueError(
                "Replicate API token is required. Set REPLICATE_API_TOKEN or pass api_token."
            )

        self._model_identifier = (
            model_identifier or os.getenv("REPLICATE_MODEL") or DEFAULT_MODEL
        )
        self._client = client or replicate.Client(api_token=self._api_token)
        self._download_timeout = download_timeout

    @property
    def model_identifier(self) -> str:
        """Return the model identifier currently used."""
        return self._model_identifier

    async def synthesize(
        self,
        prompt: str,
        reference_image: bytes,
        *,
        detail_level: str = "1",
        cover: bool = False,
    ) -> bytes:
        """
        Render one colouring page for ``prompt`` using ``reference_image`` as the subject.

        With ``cover`` set the page is framed as the book cover.
        """
        page_prompt = build_page_prompt(prompt, detail_level=detail_level, cover=cover)
        return await asyncio.to_thread(self._synthesize_blocking, prompt, page_prompt, reference_image)

    def _synthesize_blocking(
        self,
        scene_prompt: str,
        page_prompt: ColoringPagePrompt,
        reference_image: bytes,
    ) -> bytes:
        image_input = io.BytesIO(reference_image)
        image_input.name = "reference.png"
        try:
            payload = _build_replicate_input_payload(
                model_identifier=self._model_identifier,
                prompt=page_prompt,
                image_input=image_input,
            )
        except ValueError as exc:
            raise IllustrationServiceError(str(exc), prompt=scene_prompt) from exc

        try:
            raw_output = self._client.run(self._model_identifier, input=payload)
            return self._read_output(raw_output, scene_prompt)
        except Exception as exc:
            raise classify_service_error(exc, prompt=scene_prompt) from exc

    def _read_output(self, raw_output: Any, scene_prompt: str) -> bytes:
        for item in _flatten_outputs(raw_output):
            if hasattr(item, "read"):
                data = item.read()
            elif isinstance(item, (bytes, bytearray)):
                data = bytes(item)
            else:
                url = str(item)
                if not url.lower().startswith(("http://", "https://")):
                    continue
                try:
                    data = _download(url, timeout=self._download_timeout)
                except requests.RequestException as exc:
                    raise TransientServiceError(
                        f"Could not download illustration output: {exc}",
                        prompt=scene_prompt,
                    ) from exc

            if data and sniff_mime_type(data) is not None:
                return data
            logger.warning("Discarding non-image output from %s", self._model_identifier)

        raise TransientServiceError("Illustration service returned no image data.", prompt=scene_prompt)


def classify_service_error(exc: BaseException, *, prompt: str | None = None) -> IllustrationServiceError:
    """
    Map a Replicate (or transport) exception onto the illustration error taxonomy.
    """
    if isinstance(exc, IllustrationServiceError):
        return exc

    message = str(exc) or type(exc).__name__
    lowered = message.lower()
    status = getattr(exc, "status", None)

    if any(marker in lowered for marker in _MODERATION_MARKERS):
        return ModerationBlocked(message, prompt=prompt)

    if status == 429 or any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
        return RateLimited(message, prompt=prompt)

    if isinstance(exc, ModelError):
        return TransientServiceError(message, prompt=prompt)

    if isinstance(exc, ReplicateError) and isinstance(status, int) and 400 <= status < 500:
        return IllustrationServiceError(message, prompt=prompt)

    return TransientServiceError(message, prompt=prompt)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1.0, max=10),
    retry=retry_if_exception_type(requests.RequestException),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
def _download(url: str, *, timeout: float) -> bytes:
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()
    return response.content


def _flatten_outputs(raw: Any) -> list[Any]:
    """
    Normalize Replicate outputs (URL strings, file outputs, nested lists) into a flat list.
    """
    if raw is None:
        return []

    if isinstance(raw, (str, bytes, bytearray)) or hasattr(raw, "read"):
        return [raw]

    if isinstance(raw, IterableABC):
        collected = list(raw)
        if collected and all(isinstance(item, str) and len(item) == 1 for item in collected):
            return ["".join(collected)]

        flattened: list[Any] = []
        for item in collected:
            if item is None:
                continue
            flattened.extend(_flatten_outputs(item))
        return flattened

    return [str(raw)]
