"""Pointer and keyboard handling for the editing surface.

The engine owns presentation state (tool mode, zoom/pan, the crop
rectangle being dragged, the brush scratch raster) and turns input events
into new layer stacks.  It never touches history; the controller decides
when a finished gesture becomes a snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple

from lumina_editor.brush import BrushCanvas
from lumina_editor.config import BrushSettings, EditorSettings
from lumina_editor.crop import CropRect, map_to_natural, normalize_selection
from lumina_editor.layers import Layer, LayerStack, find_layer, update_layer
from lumina_editor.models import CanvasSize

Point = Tuple[float, float]


class ToolMode(str, Enum):
    NONE = "none"
    BRUSH = "brush"
    CROP = "crop"
    TEXT_EDITING = "text_editing"


class KeyAction(str, Enum):
    IGNORED = "ignored"
    VIEW_CHANGED = "view_changed"
    DELETE_ACTIVE = "delete_active"


@dataclass
class ViewTransform:
    """Screen-space zoom and pan; never part of history."""

    zoom: float = 1.0
    pan_x: float = 0.0
    pan_y: float = 0.0

    def reset(self) -> None:
        self.zoom = 1.0
        self.pan_x = 0.0
        self.pan_y = 0.0


class _Drag(str, Enum):
    LAYER = "layer"
    PAN = "pan"


class InteractionEngine:
    """Translate input events into layer mutations and view changes."""

    def __init__(
        self,
        settings: EditorSettings,
        brush_settings: BrushSettings,
        *,
        logger: logging.Logger,
    ) -> None:
        self.settings = settings
        self.brush_settings = brush_settings
        self.logger = logger
        self.view = ViewTransform()
        self.tool_mode = ToolMode.NONE
        self.display_size: Optional[Tuple[float, float]] = None
        self.crop_selection: Optional[CropRect] = None
        self.editing_text_id: Optional[str] = None
        self.brush: Optional[BrushCanvas] = None
        self._canvas: Optional[CanvasSize] = None
        self._crop_anchor: Optional[Point] = None
        self._drag: Optional[_Drag] = None
        self._drag_layer_id: Optional[str] = None
        self._drag_moved = False
        self._last_pointer: Optional[Point] = None

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def attach_canvas(self, canvas: Optional[CanvasSize]) -> None:
        """Bind to a new composition and drop every transient interaction."""
        self._canvas = canvas
        self.set_tool_mode(ToolMode.NONE)
        self.brush = None
        self.reset_view()

    def set_display_size(self, width: float, height: float) -> None:
        """On-screen size of the base image, used by crop and brush mapping."""
        self.display_size = (float(width), float(height))

    def set_brush_settings(self, settings: BrushSettings) -> None:
        self.brush_settings = settings
        if self.brush is not None:
            self.brush.settings = settings

    # ------------------------------------------------------------------
    # Tool modes
    # ------------------------------------------------------------------

    def set_tool_mode(self, mode: ToolMode, *, text_layer_id: Optional[str] = None) -> None:
        """Activate ``mode``; every other tool is deactivated."""
        mode = ToolMode(mode)
        previous = self.tool_mode
        self.tool_mode = mode
        self._cancel_drag()

        if previous is ToolMode.BRUSH and mode is not ToolMode.BRUSH and self.brush is not None:
            self.brush.clear()
        if mode is not ToolMode.TEXT_EDITING:
            self.editing_text_id = None

        if mode is ToolMode.BRUSH:
            self.clear_crop()
            if self._canvas is not None and (self.brush is None or self.brush.canvas != self._canvas):
                self.brush = BrushCanvas(self._canvas, self.brush_settings)
        elif mode is ToolMode.CROP:
            self.clear_crop()
        elif mode is ToolMode.TEXT_EDITING:
            self.clear_crop()
            self.editing_text_id = text_layer_id
        else:
            self.clear_crop()

        if previous is not mode:
            self.logger.debug("Tool mode %s -> %s", previous.value, mode.value)

    def clear_crop(self) -> None:
        self.crop_selection = None
        self._crop_anchor = None

    # ------------------------------------------------------------------
    # Pointer handling
    # ------------------------------------------------------------------

    def begin_layer_drag(self, layers: Sequence[Layer], layer_id: str, point: Point) -> bool:
        """Start dragging ``layer_id``; locked or missing layers refuse."""
        if self.tool_mode is not ToolMode.NONE:
            return False
        layer = find_layer(layers, layer_id)
        if layer is None or layer.locked:
            return False

        self._drag = _Drag.LAYER
        self._drag_layer_id = layer.id
        self._drag_moved = False
        self._last_pointer = point
        return True

    def pointer_down(self, point: Point, *, active_layer_id: Optional[str] = None) -> None:
        """Pointer pressed on the canvas background (or a tool overlay)."""
        if self.tool_mode is ToolMode.BRUSH:
            if self.brush is not None:
                self.brush.begin(point, self._display_or_native())
            return
        if self.tool_mode is ToolMode.CROP:
            self._crop_anchor = point
            self.crop_selection = CropRect(point[0], point[1], 0.0, 0.0)
            return
        if self.tool_mode is ToolMode.TEXT_EDITING:
            # Clicking outside the text field ends the edit.
            self.set_tool_mode(ToolMode.NONE)

        if self._drag is _Drag.LAYER:
            return
        if active_layer_id is None and self.view.zoom >= 1.0:
            self._drag = _Drag.PAN
            self._last_pointer = point

    def pointer_move(
        self,
        layers: Sequence[Layer],
        point: Point,
    ) -> Optional[LayerStack]:
        """Handle motion; returns a new stack when a layer moved."""
        if self.tool_mode is ToolMode.BRUSH:
            if self.brush is not None:
                self.brush.extend(point, self._display_or_native())
            return None
        if self.tool_mode is ToolMode.CROP:
            if self._crop_anchor is not None:
                self.crop_selection = normalize_selection(self._crop_anchor, point)
            return None

        if self._drag is None or self._last_pointer is None:
            return None

        delta_x = point[0] - self._last_pointer[0]
        delta_y = point[1] - self._last_pointer[1]
        self._last_pointer = point

        if self._drag is _Drag.PAN:
            # Pan lives in screen space, so the delta is used as-is.
            self.view.pan_x += delta_x
            self.view.pan_y += delta_y
            return None

        return self._drag_layer(layers, delta_x, delta_y)

    def pointer_up(self) -> Optional[str]:
        """Finish the gesture; returns a history label if layers changed."""
        if self.tool_mode is ToolMode.BRUSH:
            if self.brush is not None:
                self.brush.end()
            return None
        if self.tool_mode is ToolMode.CROP:
            self._crop_anchor = None
            return None

        moved = self._drag is _Drag.LAYER and self._drag_moved
        self._cancel_drag()
        return "Move Layer" if moved else None

    def drag_layer_by(
        self,
        layers: Sequence[Layer],
        layer_id: str,
        delta: Point,
    ) -> Optional[LayerStack]:
        """Move a layer by a screen-space delta at the current zoom."""
        layer = find_layer(layers, layer_id)
        if layer is None or layer.locked:
            return None
        zoom = self.view.zoom or 1.0
        return update_layer(
            layers,
            layer_id,
            {
                "x": layer.transform.x + delta[0] / zoom,
                "y": layer.transform.y + delta[1] / zoom,
            },
        )

    # ------------------------------------------------------------------
    # Keyboard and wheel
    # ------------------------------------------------------------------

    def key_press(self, key: str) -> KeyAction:
        if self.tool_mode in (ToolMode.CROP, ToolMode.TEXT_EDITING):
            return KeyAction.IGNORED

        step = self.settings.keyboard_pan_step / (self.view.zoom or 1.0)
        if key == "ArrowUp":
            self.view.pan_y += step
        elif key == "ArrowDown":
            self.view.pan_y -= step
        elif key == "ArrowLeft":
            self.view.pan_x += step
        elif key == "ArrowRight":
            self.view.pan_x -= step
        elif key in ("+", "="):
            self.zoom_in()
        elif key in ("-", "_"):
            self.zoom_out()
        elif key in ("0", "Escape"):
            self.reset_view()
        elif key in ("Delete", "Backspace"):
            return KeyAction.DELETE_ACTIVE
        else:
            return KeyAction.IGNORED
        return KeyAction.VIEW_CHANGED

    def wheel(self, delta_y: float) -> bool:
        if self.tool_mode is ToolMode.CROP or delta_y == 0:
            return False
        direction = -1.0 if delta_y > 0 else 1.0
        self._set_zoom(self.view.zoom + direction * self.settings.wheel_zoom_step)
        return True

    def zoom_in(self) -> None:
        self._set_zoom(self.view.zoom + self.settings.zoom_step)

    def zoom_out(self) -> None:
        self._set_zoom(self.view.zoom - self.settings.zoom_step)

    def reset_view(self) -> None:
        self.view.reset()

    # ------------------------------------------------------------------
    # Crop mapping
    # ------------------------------------------------------------------

    def natural_crop_rect(self, natural: Tuple[int, int]) -> Optional[CropRect]:
        """Current selection in natural pixels, or ``None`` if there is none."""
        if self.crop_selection is None or self.crop_selection.is_empty():
            return None
        displayed = self.display_size or (float(natural[0]), float(natural[1]))
        return map_to_natural(self.crop_selection, displayed, natural)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _drag_layer(self, layers: Sequence[Layer], delta_x: float, delta_y: float) -> Optional[LayerStack]:
        if self._drag_layer_id is None or (delta_x == 0 and delta_y == 0):
            return None
        moved = self.drag_layer_by(layers, self._drag_layer_id, (delta_x, delta_y))
        if moved is None:
            # Layer vanished or got locked mid-gesture.
            self._cancel_drag()
            return None
        self._drag_moved = True
        return moved

    def _cancel_drag(self) -> None:
        self._drag = None
        self._drag_layer_id = None
        self._drag_moved = False
        self._last_pointer = None

    def _set_zoom(self, value: float) -> None:
        self.view.zoom = max(self.settings.zoom_min, min(self.settings.zoom_max, value))

    def _display_or_native(self) -> Tuple[float, float]:
        if self.display_size is not None:
            return self.display_size
        if self._canvas is not None:
            return (float(self._canvas.width), float(self._canvas.height))
        return (1.0, 1.0)


__all__ = ["InteractionEngine", "KeyAction", "ToolMode", "ViewTransform"]
