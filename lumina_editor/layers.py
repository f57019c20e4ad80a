"""Layer data model and stack mutation helpers.

A layer is an envelope (identity, visibility, opacity, transform and an
optional explicit pixel size) wrapped around exactly one content payload:
an encoded image, a freehand drawing, or a run of text.  Stacks are plain
lists ordered bottom to top; every helper here returns a new list and
leaves its input untouched.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from lumina_editor.models import CanvasSize


class LayerKind(str, Enum):
    IMAGE = "image"
    DRAWING = "drawing"
    TEXT = "text"


class LayerFieldError(ValueError):
    """Raised when a layer update names an unknown field or an invalid value."""


@dataclass
class Transform:
    """Position, rotation (degrees) and uniform scale of a layer."""

    x: float = 0.0
    y: float = 0.0
    rotation: float = 0.0
    scale: float = 1.0


@dataclass
class ImageContent:
    src: str


@dataclass
class DrawingContent:
    src: str


@dataclass
class TextContent:
    text: str
    font_size: float = 32.0
    color: str = "#ffffff"
    font_family: str = "Inter"
    font_weight: str = "bold"


LayerContent = Union[ImageContent, DrawingContent, TextContent]

_CONTENT_KINDS: Dict[type, LayerKind] = {
    ImageContent: LayerKind.IMAGE,
    DrawingContent: LayerKind.DRAWING,
    TextContent: LayerKind.TEXT,
}

ENVELOPE_FIELDS = frozenset({"name", "visible", "locked", "opacity", "width", "height"})
TRANSFORM_FIELDS = frozenset({"x", "y", "rotation", "scale"})


@dataclass
class Layer:
    """One positioned, transformable element of the stack."""

    id: str
    name: str
    content: LayerContent
    visible: bool = True
    locked: bool = False
    opacity: float = 100.0
    transform: Transform = field(default_factory=Transform)
    width: Optional[float] = None
    height: Optional[float] = None

    @property
    def kind(self) -> LayerKind:
        return _CONTENT_KINDS[type(self.content)]

    @property
    def is_raster(self) -> bool:
        return isinstance(self.content, (ImageContent, DrawingContent))


LayerStack = List[Layer]


# ----------------------------------------------------------------------
# Layer construction
# ----------------------------------------------------------------------

def new_layer_id(prefix: str = "layer") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def make_base_layer(src: str) -> Layer:
    """Background layer: locked, unscaled, anchored at the origin."""
    return Layer(
        id="layer-base",
        name="Background",
        content=ImageContent(src=src),
        locked=True,
    )


def make_image_layer(src: str, stack_size: int) -> Layer:
    # New images land smaller than the background so they are easy to grab.
    return Layer(
        id=new_layer_id("layer"),
        name=f"Image {stack_size + 1}",
        content=ImageContent(src=src),
        transform=Transform(x=50.0, y=50.0, scale=0.5),
        width=300.0,
        height=300.0,
    )


def make_text_layer(
    text: str,
    *,
    font_size: float = 32.0,
    color: str = "#ffffff",
    font_family: str = "Inter",
    font_weight: str = "bold",
) -> Layer:
    return Layer(
        id=new_layer_id("text"),
        name="Text Layer",
        content=TextContent(
            text=text,
            font_size=font_size,
            color=color,
            font_family=font_family,
            font_weight=font_weight,
        ),
        transform=Transform(x=50.0, y=50.0),
    )


def make_drawing_layer(src: str, *, opacity: float, canvas: CanvasSize) -> Layer:
    return Layer(
        id=new_layer_id("draw"),
        name="Brush Stroke",
        content=DrawingContent(src=src),
        opacity=_clamp_opacity(opacity),
        width=float(canvas.width),
        height=float(canvas.height),
    )


# ----------------------------------------------------------------------
# Stack queries and mutations
# ----------------------------------------------------------------------

def index_of(stack: Sequence[Layer], layer_id: Optional[str]) -> Optional[int]:
    if layer_id is None:
        return None
    for index, layer in enumerate(stack):
        if layer.id == layer_id:
            return index
    return None


def find_layer(stack: Sequence[Layer], layer_id: Optional[str]) -> Optional[Layer]:
    index = index_of(stack, layer_id)
    return stack[index] if index is not None else None


def append_layer(stack: Sequence[Layer], layer: Layer) -> LayerStack:
    if index_of(stack, layer.id) is not None:
        raise LayerFieldError(f"Layer id already in stack: {layer.id}")
    return [*stack, layer]


def remove_layer(stack: Sequence[Layer], layer_id: str) -> LayerStack:
    return [layer for layer in stack if layer.id != layer_id]


def move_layer(stack: Sequence[Layer], from_index: int, to_index: int) -> LayerStack:
    """Move the layer at ``from_index`` to ``to_index`` with splice semantics.

    Indices are positional; callers must resolve a layer id to its current
    index immediately before calling.  Out-of-range indices leave the order
    unchanged.
    """
    moved = list(stack)
    if not 0 <= to_index < len(moved) or not 0 <= from_index < len(moved):
        return moved
    layer = moved.pop(from_index)
    moved.insert(to_index, layer)
    return moved


def update_layer(
    stack: Sequence[Layer],
    layer_id: str,
    changes: Mapping[str, Any],
) -> LayerStack:
    """Merge ``changes`` into the layer with ``layer_id``.

    Keys may name envelope fields, transform fields or fields of the
    layer's content payload.  An unknown id is a no-op.
    """
    updated: LayerStack = []
    for layer in stack:
        if layer.id == layer_id:
            layer = _merge_changes(layer, changes)
        updated.append(layer)
    return updated


def copy_stack(stack: Sequence[Layer]) -> LayerStack:
    return copy.deepcopy(list(stack))


def _clamp_opacity(value: Any) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise LayerFieldError(f"Invalid opacity: {value!r}") from exc
    return max(0.0, min(100.0, parsed))


def _merge_changes(layer: Layer, changes: Mapping[str, Any]) -> Layer:
    envelope: Dict[str, Any] = {}
    transform: Dict[str, Any] = {}
    content: Dict[str, Any] = {}
    content_fields = {item.name for item in fields(layer.content)}

    for key, value in changes.items():
        if key in ENVELOPE_FIELDS:
            envelope[key] = value
        elif key in TRANSFORM_FIELDS:
            transform[key] = value
        elif key in content_fields:
            content[key] = value
        else:
            raise LayerFieldError(
                f"Field '{key}' is not valid for {layer.kind.value} layer {layer.id}"
            )

    if "opacity" in envelope:
        envelope["opacity"] = _clamp_opacity(envelope["opacity"])
    for size_key in ("width", "height"):
        size = envelope.get(size_key)
        if size is not None and float(size) <= 0:
            raise LayerFieldError(f"{size_key} must be positive, got {size!r}")
    scale = transform.get("scale")
    if scale is not None and float(scale) <= 0:
        raise LayerFieldError(f"scale must be positive, got {scale!r}")
    font_size = content.get("font_size")
    if font_size is not None and float(font_size) <= 0:
        raise LayerFieldError(f"font_size must be positive, got {font_size!r}")

    merged = replace(layer, **envelope)
    if transform:
        merged.transform = replace(layer.transform, **transform)
    if content:
        merged.content = replace(layer.content, **content)
    return merged


# ----------------------------------------------------------------------
# Project serialization
# ----------------------------------------------------------------------

def layer_to_dict(layer: Layer) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": layer.id,
        "type": layer.kind.value,
        "name": layer.name,
        "visible": layer.visible,
        "locked": layer.locked,
        "opacity": layer.opacity,
        "x": layer.transform.x,
        "y": layer.transform.y,
        "rotation": layer.transform.rotation,
        "scale": layer.transform.scale,
        "width": layer.width,
        "height": layer.height,
    }
    for item in fields(layer.content):
        data[item.name] = getattr(layer.content, item.name)
    return data


def layer_from_dict(data: Mapping[str, Any]) -> Layer:
    kind = LayerKind(str(data.get("type", "image")))
    if kind is LayerKind.TEXT:
        defaults = TextContent(text="")
        content: LayerContent = TextContent(
            text=str(data.get("text", "")),
            font_size=float(data.get("font_size", defaults.font_size)),
            color=str(data.get("color", defaults.color)),
            font_family=str(data.get("font_family", defaults.font_family)),
            font_weight=str(data.get("font_weight", defaults.font_weight)),
        )
    elif kind is LayerKind.DRAWING:
        content = DrawingContent(src=str(data["src"]))
    else:
        content = ImageContent(src=str(data["src"]))

    width = data.get("width")
    height = data.get("height")
    return Layer(
        id=str(data.get("id") or new_layer_id()),
        name=str(data.get("name", kind.value.title())),
        content=content,
        visible=bool(data.get("visible", True)),
        locked=bool(data.get("locked", False)),
        opacity=_clamp_opacity(data.get("opacity", 100.0)),
        transform=Transform(
            x=float(data.get("x", 0.0)),
            y=float(data.get("y", 0.0)),
            rotation=float(data.get("rotation", 0.0)),
            scale=float(data.get("scale", 1.0)),
        ),
        width=float(width) if width is not None else None,
        height=float(height) if height is not None else None,
    )


def stack_to_dict(canvas: CanvasSize, stack: Sequence[Layer]) -> Dict[str, Any]:
    return {
        "canvas": {"width": canvas.width, "height": canvas.height},
        "layers": [layer_to_dict(layer) for layer in stack],
    }


def stack_from_dict(data: Mapping[str, Any]) -> Tuple[CanvasSize, LayerStack]:
    raw_canvas = data.get("canvas") or {}
    canvas = CanvasSize(
        width=int(raw_canvas.get("width", 0)),
        height=int(raw_canvas.get("height", 0)),
    )
    stack: LayerStack = []
    for entry in data.get("layers", []):
        if not isinstance(entry, Mapping):
            continue
        stack = append_layer(stack, layer_from_dict(entry))
    return canvas, stack


__all__ = [
    "DrawingContent",
    "ImageContent",
    "Layer",
    "LayerContent",
    "LayerFieldError",
    "LayerKind",
    "LayerStack",
    "TextContent",
    "Transform",
    "append_layer",
    "copy_stack",
    "find_layer",
    "index_of",
    "layer_from_dict",
    "layer_to_dict",
    "make_base_layer",
    "make_drawing_layer",
    "make_image_layer",
    "make_text_layer",
    "move_layer",
    "new_layer_id",
    "remove_layer",
    "stack_from_dict",
    "stack_to_dict",
    "update_layer",
]
