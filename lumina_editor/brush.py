"""Freehand brush scratch raster."""

from __future__ import annotations

import math
from typing import Optional, Tuple

import cv2
import numpy as np

from lumina_editor.config import BrushSettings, parse_color
from lumina_editor.models import CanvasSize, CompositeImage

_SHIFT = 4
_SUBPIXEL = 1 << _SHIFT

Point = Tuple[float, float]


class BrushCanvas:
    """Collect strokes at the canvas' native resolution.

    Pointer positions arrive in display space and are mapped through
    ``native / displayed`` per axis.  Stroke coverage is accumulated with a
    per-stroke maximum, so overlapping segments of one stroke never darken
    their joints.  Each stroke is painted at the brush opacity and finished
    strokes are alpha-blended over earlier ones.
    """

    def __init__(self, canvas: CanvasSize, settings: BrushSettings) -> None:
        self.canvas = canvas
        self.settings = settings
        self._color = np.zeros((canvas.height, canvas.width, 3), dtype=np.uint8)
        self._alpha = np.zeros((canvas.height, canvas.width), dtype=np.uint8)
        self._stroke = np.zeros((canvas.height, canvas.width), dtype=np.uint8)
        self._stroke_color: Tuple[int, int, int] = (0, 0, 0)
        self._stroke_width = 1.0
        self._stroke_opacity = 1.0
        self._last_point: Optional[Point] = None
        self._has_strokes = False

    @property
    def is_drawing(self) -> bool:
        return self._last_point is not None

    @property
    def is_empty(self) -> bool:
        return not self._has_strokes

    def map_point(self, point: Point, displayed: Tuple[float, float]) -> Point:
        displayed_width, displayed_height = displayed
        scale_x = self.canvas.width / displayed_width if displayed_width else 1.0
        scale_y = self.canvas.height / displayed_height if displayed_height else 1.0
        return (point[0] * scale_x, point[1] * scale_y)

    # ------------------------------------------------------------------
    # Stroke lifecycle
    # ------------------------------------------------------------------

    def begin(self, point: Point, displayed: Tuple[float, float]) -> Point:
        if self.is_drawing:
            self.end()
        native = self.map_point(point, displayed)
        displayed_width = displayed[0] or self.canvas.width
        self._stroke_color = parse_color(self.settings.color, (0, 0, 255))
        self._stroke_width = max(1.0, self.settings.size * (self.canvas.width / displayed_width))
        self._stroke_opacity = max(0.0, min(100.0, float(self.settings.opacity))) / 100.0
        self._last_point = native
        self._paint_segment(native, native)
        return native

    def extend(self, point: Point, displayed: Tuple[float, float]) -> Optional[Point]:
        if self._last_point is None:
            return None
        native = self.map_point(point, displayed)
        self._paint_segment(self._last_point, native)
        self._last_point = native
        return native

    def end(self) -> None:
        if self._last_point is None:
            return
        self._last_point = None
        self._merge_stroke()

    def clear(self) -> None:
        self._color[:] = 0
        self._alpha[:] = 0
        self._stroke[:] = 0
        self._last_point = None
        self._has_strokes = False

    def raster(self) -> CompositeImage:
        """Return committed strokes plus any stroke still in progress."""
        if not np.any(self._stroke):
            return CompositeImage(color=self._color.copy(), alpha=self._alpha.copy())
        color, alpha = self._blend_stroke(self._color, self._alpha)
        return CompositeImage(color=color, alpha=alpha)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _paint_segment(self, start: Point, end: Point) -> None:
        thickness = max(1, int(round(self._stroke_width)))
        radius = thickness / 2.0 + 2.0
        x0 = max(0, int(math.floor(min(start[0], end[0]) - radius)))
        y0 = max(0, int(math.floor(min(start[1], end[1]) - radius)))
        x1 = min(self.canvas.width, int(math.ceil(max(start[0], end[0]) + radius)) + 1)
        y1 = min(self.canvas.height, int(math.ceil(max(start[1], end[1]) + radius)) + 1)
        if x0 >= x1 or y0 >= y1:
            return

        segment = np.zeros((y1 - y0, x1 - x0), dtype=np.uint8)
        p0 = (int(round((start[0] - x0) * _SUBPIXEL)), int(round((start[1] - y0) * _SUBPIXEL)))
        p1 = (int(round((end[0] - x0) * _SUBPIXEL)), int(round((end[1] - y0) * _SUBPIXEL)))
        # Round caps and joins.
        cv2.line(segment, p0, p1, 255, thickness, cv2.LINE_AA, _SHIFT)
        cv2.circle(segment, p0, int(round(thickness / 2.0 * _SUBPIXEL)), 255, -1, cv2.LINE_AA, _SHIFT)
        cv2.circle(segment, p1, int(round(thickness / 2.0 * _SUBPIXEL)), 255, -1, cv2.LINE_AA, _SHIFT)

        region = self._stroke[y0:y1, x0:x1]
        np.maximum(region, segment, out=region)
        self._has_strokes = True

    def _blend_stroke(self, color: np.ndarray, alpha: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        stroke_alpha = self._stroke.astype(np.float32) / 255.0 * self._stroke_opacity
        base_alpha = alpha.astype(np.float32) / 255.0
        inverse_stroke_alpha = 1.0 - stroke_alpha
        out_alpha = stroke_alpha + base_alpha * inverse_stroke_alpha

        stroke_rgb = np.array(self._stroke_color, dtype=np.float32)
        combined = (
            stroke_rgb * stroke_alpha[..., None]
            + color.astype(np.float32) * (base_alpha * inverse_stroke_alpha)[..., None]
        )
        out_color = combined / np.maximum(out_alpha[..., None], 1e-6)
        out_color[out_alpha <= 0] = 0

        return (
            np.clip(np.rint(out_color), 0, 255).astype(np.uint8),
            np.clip(np.rint(out_alpha * 255.0), 0, 255).astype(np.uint8),
        )

    def _merge_stroke(self) -> None:
        if not np.any(self._stroke):
            return
        self._color, self._alpha = self._blend_stroke(self._color, self._alpha)
        self._stroke[:] = 0


__all__ = ["BrushCanvas"]
