"""Single-raster content mutators: colour filters, adjustments and gradients.

Every function takes a composed raster and returns a new one of the same
size.  Alpha is carried through untouched except by the gradient overlay,
which paints over the full frame.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

import cv2
import numpy as np

from lumina_editor.config import parse_color
from lumina_editor.models import CompositeImage


class FilterKind(str, Enum):
    NONE = "none"
    GRAYSCALE = "grayscale"
    SEPIA = "sepia"
    INVERT = "invert"


@dataclass(frozen=True)
class Adjustments:
    """Percentages follow CSS filter semantics: 100 is the identity."""

    brightness: float = 100.0
    contrast: float = 100.0
    saturation: float = 100.0
    hue: float = 0.0
    blur: float = 0.0

    def is_identity(self) -> bool:
        return self == Adjustments()


class GradientType(str, Enum):
    LINEAR = "linear"
    RADIAL = "radial"


@dataclass(frozen=True)
class GradientSettings:
    type: GradientType = GradientType.LINEAR
    start_color: str = "#3b82f6"
    end_color: str = "#a855f7"
    angle: float = 135.0
    opacity: float = 50.0


# Sepia matrix from the CSS filter spec, rows/columns reordered for BGR.
_SEPIA_BGR = np.array(
    [
        [0.131, 0.534, 0.272],
        [0.168, 0.686, 0.349],
        [0.189, 0.769, 0.393],
    ],
    dtype=np.float32,
)


def apply_filter(image: CompositeImage, kind: FilterKind | str) -> CompositeImage:
    kind = FilterKind(kind)
    color = image.color

    if kind is FilterKind.NONE:
        result = color.copy()
    elif kind is FilterKind.GRAYSCALE:
        gray = cv2.cvtColor(color, cv2.COLOR_BGR2GRAY)
        result = cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR)
    elif kind is FilterKind.SEPIA:
        toned = cv2.transform(color.astype(np.float32), _SEPIA_BGR)
        result = np.clip(toned, 0, 255).astype(np.uint8)
    else:
        result = cv2.bitwise_not(color)

    return CompositeImage(color=result, alpha=image.alpha.copy())


def apply_adjustments(image: CompositeImage, adjustments: Adjustments) -> CompositeImage:
    """Apply blur, brightness, contrast, saturation and hue, in that order."""
    if adjustments.is_identity():
        return CompositeImage(color=image.color.copy(), alpha=image.alpha.copy())

    color = image.color.astype(np.float32)

    if adjustments.blur > 0:
        sigma = float(min(adjustments.blur, 20.0))
        color = cv2.GaussianBlur(color, (0, 0), sigmaX=sigma, sigmaY=sigma)

    if adjustments.brightness != 100:
        color = color * (max(0.0, adjustments.brightness) / 100.0)

    if adjustments.contrast != 100:
        factor = max(0.0, adjustments.contrast) / 100.0
        color = (color - 127.5) * factor + 127.5

    color = np.clip(color, 0, 255)

    if adjustments.saturation != 100 or adjustments.hue != 0:
        hsv = cv2.cvtColor(color.astype(np.uint8), cv2.COLOR_BGR2HSV_FULL).astype(np.float32)
        if adjustments.hue != 0:
            # HSV_FULL stores hue in 0..255 for a full turn.
            hsv[..., 0] = np.mod(hsv[..., 0] + adjustments.hue * 256.0 / 360.0, 256.0)
        if adjustments.saturation != 100:
            hsv[..., 1] = hsv[..., 1] * (max(0.0, adjustments.saturation) / 100.0)
        hsv = np.clip(hsv, 0, 255).astype(np.uint8)
        color = cv2.cvtColor(hsv, cv2.COLOR_HSV2BGR_FULL).astype(np.float32)

    result = np.clip(np.rint(color), 0, 255).astype(np.uint8)
    return CompositeImage(color=result, alpha=image.alpha.copy())


def apply_gradient(image: CompositeImage, settings: GradientSettings) -> CompositeImage:
    height, width = image.alpha.shape
    ramp = _gradient_ramp(width, height, settings)

    start = np.array(parse_color(settings.start_color), dtype=np.float32)
    end = np.array(parse_color(settings.end_color), dtype=np.float32)
    gradient = start + (end - start) * ramp[..., None]

    strength = max(0.0, min(100.0, settings.opacity)) / 100.0
    base_alpha = image.alpha.astype(np.float32) / 255.0
    out_alpha = strength + base_alpha * (1.0 - strength)

    combined = (
        gradient * strength
        + image.color.astype(np.float32) * (base_alpha * (1.0 - strength))[..., None]
    )
    divisor = np.maximum(out_alpha[..., None], 1e-6)
    color = combined / divisor

    return CompositeImage(
        color=np.clip(np.rint(color), 0, 255).astype(np.uint8),
        alpha=np.clip(np.rint(out_alpha * 255.0), 0, 255).astype(np.uint8),
    )


def _gradient_ramp(width: int, height: int, settings: GradientSettings) -> np.ndarray:
    """Return per-pixel interpolation positions in ``[0, 1]``."""
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float32)
    xs += 0.5
    ys += 0.5
    center_x = width / 2.0
    center_y = height / 2.0

    if GradientType(settings.type) is GradientType.RADIAL:
        radius = max(width, height) / 1.5
        distance = np.sqrt((xs - center_x) ** 2 + (ys - center_y) ** 2)
        return np.clip(distance / max(radius, 1e-6), 0.0, 1.0)

    # Start and end points sit on a line through the centre, half a diagonal
    # away on either side.
    angle = math.radians(settings.angle)
    half_diagonal = math.sqrt(width * width + height * height) / 2.0
    start_x = center_x - half_diagonal * math.sin(angle)
    start_y = center_y + half_diagonal * math.cos(angle)
    dir_x = 2.0 * half_diagonal * math.sin(angle)
    dir_y = -2.0 * half_diagonal * math.cos(angle)
    length_sq = max(dir_x * dir_x + dir_y * dir_y, 1e-6)
    projection = ((xs - start_x) * dir_x + (ys - start_y) * dir_y) / length_sq
    return np.clip(projection, 0.0, 1.0)


__all__ = [
    "Adjustments",
    "FilterKind",
    "GradientSettings",
    "GradientType",
    "apply_adjustments",
    "apply_filter",
    "apply_gradient",
]
