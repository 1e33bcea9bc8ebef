"""
Helpers for turning stored image references into raw bytes and back.
"""

from __future__ import annotations

import base64
import binascii
import mimetypes
import re
from pathlib import Path

import requests

PathLike = str | Path

_DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[\w/+.-]+)?;base64,", re.IGNORECASE)


def load_image_bytes(reference: PathLike | bytes, *, timeout: float = 30.0) -> bytes:
    """
    Resolve an image reference to its raw bytes.

    ``reference`` may be raw bytes, a ``data:`` URL, an ``http(s)`` URL, a local
    file path, or bare base64 text (the format the order store keeps uploads in).
    """
    if isinstance(reference, (bytes, bytearray)):
        return bytes(reference)

    if isinstance(reference, Path):
        return _read_path(reference)

    candidate = reference.strip()
    if not candidate:
        raise ValueError("Image reference is empty.")

    if _DATA_URL_PATTERN.match(candidate):
        return decode_base64_image(candidate)

    if candidate.lower().startswith(("http://", "https://")):
        response = requests.get(candidate, timeout=timeout)
        response.raise_for_status()
        return response.content

    path = Path(candidate).expanduser()
    if len(candidate) < 4096 and path.exists():
        return _read_path(path)

    return decode_base64_image(candidate)


def decode_base64_image(data: str) -> bytes:
    """Decode base64 image data, with or without a ``data:`` URL prefix."""
    payload = _DATA_URL_PATTERN.sub("", data.strip(), count=1)
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Image reference is neither a path, URL nor valid base64 data.") from exc


def to_data_url(image: bytes, *, filename: str | None = None) -> str:
    """Encode image bytes as a ``data:`` URL, guessing the MIME type from the content."""
    mime_type = sniff_mime_type(image)
    if mime_type is None and filename:
        mime_type, _ = mimetypes.guess_type(filename)
    encoded = base64.b64encode(image).decode("ascii")
    return f"data:{mime_type or 'image/png'};base64,{encoded}"


def sniff_mime_type(image: bytes) -> str | None:
    if image.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image[:4] == b"RIFF" and image[8:12] == b"WEBP":
        return "image/webp"
    return None


def _read_path(path: Path) -> bytes:
    resolved = path.expanduser()
    if not resolved.exists():
        raise FileNotFoundError(f"Image not found at '{resolved}'.")
    return resolved.read_bytes()
