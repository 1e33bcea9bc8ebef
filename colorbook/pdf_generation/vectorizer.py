"""
Bitmap-to-outline tracing for colouring page line art.
"""

from __future__ import annotations

import io
from dataclasses import dataclass

import potrace
from PIL import Image, UnidentifiedImageError

from colorbook.common.errors import VectorizationFailure

Point = tuple[float, float]


@dataclass(frozen=True)
class PathSegment:
    """``kind`` is ``"line"`` (polyline through ``points``) or ``"curve"`` (cubic: c1, c2, end)."""

    kind: str
    points: tuple[Point, ...]


@dataclass(frozen=True)
class VectorPath:
    start: Point
    segments: tuple[PathSegment, ...]


@dataclass(frozen=True)
class VectorArt:
    """
    Closed outlines in image pixel coordinates (origin top-left, y down).
    """

    width: int
    height: int
    paths: tuple[VectorPath, ...]

    @property
    def segment_count(self) -> int:
        return sum(len(path.segments) for path in self.paths)


class LineArtVectorizer:
    """
    Traces dark strokes of a raster page into filled outlines with ``potracer``.

    Parameters
    ----------
    threshold:
        Grey level (0-255) below which a pixel counts as ink.
    turd_size:
        Speckles with an area up to this many pixels are dropped.
    opt_tolerance:
        Curve optimisation tolerance.
    alpha_max:
        Corner threshold; lower values keep more sharp corners.
    max_dimension:
        Larger images are downscaled before tracing. The outlines are
        resolution independent, so only tiny details are lost.
    """

    def __init__(
        self,
        *,
        threshold: int = 128,
        turd_size: int = 2,
        opt_tolerance: float = 0.2,
        alpha_max: float = 1.0,
        max_dimension: int | None = 1600,
    ) -> None:
        if not 0 < threshold < 256:
            raise ValueError("threshold must be between 1 and 255.")
        self.threshold = threshold
        self.turd_size = turd_size
        self.opt_tolerance = opt_tolerance
        self.alpha_max = alpha_max
        self.max_dimension = max_dimension

    def vectorize(self, image_bytes: bytes) -> VectorArt:
        """
        Trace ``image_bytes``. Raises :class:`VectorizationFailure` when the
        image cannot be decoded or contains no traceable strokes.
        """
        greyscale = self._load_greyscale(image_bytes)
        bitmap = potrace.Bitmap(greyscale, blacklevel=self.threshold / 255)
        try:
            traced = bitmap.trace(
                turdsize=self.turd_size,
                turnpolicy=potrace.POTRACE_TURNPOLICY_MINORITY,
                alphamax=self.alpha_max,
                opticurve=True,
                opttolerance=self.opt_tolerance,
            )
        except Exception as exc:
            raise VectorizationFailure(f"Tracing failed: {exc}") from exc

        paths = tuple(_convert_curve(curve) for curve in traced or ())
        if not paths:
            raise VectorizationFailure("Image contains no line art to trace.")
        return VectorArt(width=greyscale.width, height=greyscale.height, paths=paths)

    def _load_greyscale(self, image_bytes: bytes) -> Image.Image:
        if not image_bytes:
            raise VectorizationFailure("Image is empty.")
        try:
            with Image.open(io.BytesIO(image_bytes)) as image:
                image.load()
                if image.mode in ("RGBA", "LA") or "transparency" in image.info:
                    rgba = image.convert("RGBA")
                    flattened = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
                    flattened.alpha_composite(rgba)
                    greyscale = flattened.convert("L")
                else:
                    greyscale = image.convert("L")
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise VectorizationFailure(f"Image could not be decoded: {exc}") from exc

        if self.max_dimension and max(greyscale.size) > self.max_dimension:
            greyscale.thumbnail((self.max_dimension, self.max_dimension), Image.Resampling.LANCZOS)
        return greyscale


def _convert_curve(curve) -> VectorPath:
    segments: list[PathSegment] = []
    for segment in curve.segments:
        if segment.is_corner:
            segments.append(PathSegment("line", (_point(segment.c), _point(segment.end_point))))
        else:
            segments.append(
                PathSegment(
                    "curve",
                    (_point(segment.c1), _point(segment.c2), _point(segment.end_point)),
                )
            )
    return VectorPath(start=_point(curve.start_point), segments=tuple(segments))


def _point(value) -> Point:
    return (float(value.x), float(value.y))
