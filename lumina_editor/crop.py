"""Crop selection geometry and sub-rectangle extraction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from lumina_editor.models import CompositeImage


@dataclass(frozen=True)
class CropRect:
    x: float
    y: float
    width: float
    height: float

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0


def normalize_selection(anchor: Tuple[float, float], current: Tuple[float, float]) -> CropRect:
    """Rectangle spanned by a drag, whatever direction it went in."""
    width = current[0] - anchor[0]
    height = current[1] - anchor[1]
    return CropRect(
        x=anchor[0] if width > 0 else current[0],
        y=anchor[1] if height > 0 else current[1],
        width=abs(width),
        height=abs(height),
    )


def map_to_natural(
    selection: CropRect,
    displayed: Tuple[float, float],
    natural: Tuple[int, int],
) -> CropRect:
    """Scale a display-space selection into natural image pixels."""
    displayed_width, displayed_height = displayed
    if displayed_width <= 0 or displayed_height <= 0:
        raise ValueError(f"Invalid displayed size {displayed_width}x{displayed_height}")
    scale_x = natural[0] / displayed_width
    scale_y = natural[1] / displayed_height
    return CropRect(
        x=selection.x * scale_x,
        y=selection.y * scale_y,
        width=selection.width * scale_x,
        height=selection.height * scale_y,
    )


def pixel_bounds(rect: CropRect, width: int, height: int) -> Optional[Tuple[int, int, int, int]]:
    """Round ``rect`` to whole pixels clipped to the image; ``None`` if empty."""
    x0 = max(0, min(width, int(round(rect.x))))
    y0 = max(0, min(height, int(round(rect.y))))
    x1 = max(0, min(width, int(round(rect.x + rect.width))))
    y1 = max(0, min(height, int(round(rect.y + rect.height))))
    if x1 <= x0 or y1 <= y0:
        return None
    return (x0, y0, x1, y1)


def extract_region(image: CompositeImage, rect: CropRect) -> Optional[CompositeImage]:
    bounds = pixel_bounds(rect, image.width, image.height)
    if bounds is None:
        return None
    x0, y0, x1, y1 = bounds
    return CompositeImage(
        color=image.color[y0:y1, x0:x1].copy(),
        alpha=image.alpha[y0:y1, x0:x1].copy(),
    )


__all__ = [
    "CropRect",
    "extract_region",
    "map_to_natural",
    "normalize_selection",
    "pixel_bounds",
]
