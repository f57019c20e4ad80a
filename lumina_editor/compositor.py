"""Flatten a layer stack into a single raster."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Dict, Optional, Protocol, Sequence, Tuple

import cv2
import numpy as np

from lumina_editor.config import parse_color
from lumina_editor.errors import DecodeError, RenderSurfaceError
from lumina_editor.layers import ImageContent, Layer, TextContent
from lumina_editor.models import CompositeImage, DecodedAsset

_FONT_FACES = {
    "inter": cv2.FONT_HERSHEY_SIMPLEX,
    "sans-serif": cv2.FONT_HERSHEY_SIMPLEX,
    "times new roman": cv2.FONT_HERSHEY_TRIPLEX,
    "serif": cv2.FONT_HERSHEY_TRIPLEX,
    "courier new": cv2.FONT_HERSHEY_COMPLEX_SMALL,
    "monospace": cv2.FONT_HERSHEY_COMPLEX_SMALL,
    "brush script mt": cv2.FONT_HERSHEY_SCRIPT_SIMPLEX,
    "cursive": cv2.FONT_HERSHEY_SCRIPT_SIMPLEX,
    "impact": cv2.FONT_HERSHEY_DUPLEX,
}


class AssetSource(Protocol):
    async def decode(self, src: str) -> DecodedAsset:
        ...


class Compositor:
    """Rasterize a bottom-to-top layer stack under opacity and transforms.

    Decodes for all raster layers are started together, but each layer is
    drawn only after every layer beneath it has been drawn, so the output
    never depends on which decode finishes first.
    """

    def __init__(self, decoder: AssetSource, *, logger: logging.Logger) -> None:
        self.decoder = decoder
        self.logger = logger

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def compose(
        self,
        layers: Sequence[Layer],
        canvas_width: int,
        canvas_height: int,
    ) -> CompositeImage:
        started = perf_counter()
        premultiplied, coverage = self._allocate(canvas_width, canvas_height)
        visible = [layer for layer in layers if layer.visible]

        pending: Dict[str, "asyncio.Future[DecodedAsset]"] = {}
        for layer in visible:
            if layer.is_raster and layer.id not in pending:
                pending[layer.id] = asyncio.ensure_future(self.decoder.decode(layer.content.src))

        try:
            for layer in visible:
                opacity = max(0.0, min(100.0, float(layer.opacity))) / 100.0
                if isinstance(layer.content, TextContent):
                    self._draw_text(premultiplied, coverage, layer, opacity)
                    continue

                try:
                    asset = await pending[layer.id]
                except DecodeError as exc:
                    self.logger.warning("Skipping layer %s (%s): %s", layer.id, layer.name, exc)
                    continue
                self._draw_raster(premultiplied, coverage, layer, asset, opacity)
        finally:
            for task in pending.values():
                if not task.done():
                    task.cancel()
                elif not task.cancelled():
                    task.exception()

        composite = self._finalize(premultiplied, coverage)
        self.logger.debug(
            "Composed %s/%s visible layers onto %sx%s in %.1f ms",
            len(visible),
            len(layers),
            canvas_width,
            canvas_height,
            (perf_counter() - started) * 1000.0,
        )
        return composite

    async def compose_single(self, src: str) -> CompositeImage:
        """Compose one image at its natural size.

        Unlike :meth:`compose`, a decode failure here is raised to the
        caller since there is nothing else to draw.
        """
        asset = await self.decoder.decode(src)
        layer = Layer(id="single", name="Single", content=ImageContent(src=src))
        premultiplied, coverage = self._allocate(asset.width, asset.height)
        self._draw_raster(premultiplied, coverage, layer, asset, 1.0)
        return self._finalize(premultiplied, coverage)

    # ------------------------------------------------------------------
    # Layer drawing
    # ------------------------------------------------------------------

    def _draw_raster(
        self,
        premultiplied: np.ndarray,
        coverage: np.ndarray,
        layer: Layer,
        asset: DecodedAsset,
        opacity: float,
    ) -> None:
        transform = layer.transform
        box_width = (layer.width if layer.width is not None else asset.width) * transform.scale
        box_height = (layer.height if layer.height is not None else asset.height) * transform.scale
        if box_width <= 0 or box_height <= 0:
            return

        target_width = max(1, int(round(box_width)))
        target_height = max(1, int(round(box_height)))
        pixels = self._premultiply(asset.pixels)
        if (target_width, target_height) != (asset.width, asset.height):
            shrinking = target_width * target_height < asset.width * asset.height
            pixels = cv2.resize(
                pixels,
                (target_width, target_height),
                interpolation=cv2.INTER_AREA if shrinking else cv2.INTER_LINEAR,
            )
            if pixels.ndim == 2:
                pixels = pixels[..., None]

        matrix = _translation(transform.x, transform.y) @ _scaling(
            box_width / target_width,
            box_height / target_height,
        )
        if transform.rotation % 360 != 0:
            center_x = transform.x + box_width / 2.0
            center_y = transform.y + box_height / 2.0
            matrix = _rotation_about(center_x, center_y, transform.rotation) @ matrix

        self._place(premultiplied, coverage, pixels, matrix, opacity)

    def _draw_text(
        self,
        premultiplied: np.ndarray,
        coverage: np.ndarray,
        layer: Layer,
        opacity: float,
    ) -> None:
        content = layer.content
        if not content.text:
            return

        transform = layer.transform
        mask, padding = render_text_mask(content, transform.scale)
        if mask.size == 0:
            return

        b, g, r = parse_color(content.color, (255, 255, 255))
        alpha = mask.astype(np.float32) / 255.0
        pixels = np.empty((mask.shape[0], mask.shape[1], 4), dtype=np.float32)
        pixels[..., 0] = b * alpha
        pixels[..., 1] = g * alpha
        pixels[..., 2] = r * alpha
        pixels[..., 3] = alpha

        matrix = _translation(transform.x - padding, transform.y - padding)
        if transform.rotation % 360 != 0:
            # Text pivots on its top-left anchor, not on its box centre.
            matrix = _rotation_about(transform.x, transform.y, transform.rotation) @ matrix

        self._place(premultiplied, coverage, pixels, matrix, opacity)

    def _place(
        self,
        premultiplied: np.ndarray,
        coverage: np.ndarray,
        pixels: np.ndarray,
        matrix: np.ndarray,
        opacity: float,
    ) -> None:
        if opacity <= 0.0:
            return

        offset = _integer_offset(matrix)
        if offset is not None:
            self._blend_region(premultiplied, coverage, pixels, offset[0], offset[1], opacity)
            return

        canvas_height, canvas_width = coverage.shape
        warped = cv2.warpAffine(
            pixels,
            matrix[:2],
            (canvas_width, canvas_height),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=(0, 0, 0, 0),
        )
        self._blend_region(premultiplied, coverage, warped, 0, 0, opacity)

    @staticmethod
    def _blend_region(
        premultiplied: np.ndarray,
        coverage: np.ndarray,
        pixels: np.ndarray,
        offset_x: int,
        offset_y: int,
        opacity: float,
    ) -> None:
        canvas_height, canvas_width = coverage.shape
        layer_height, layer_width = pixels.shape[:2]

        start_x = max(0, offset_x)
        start_y = max(0, offset_y)
        end_x = min(canvas_width, offset_x + layer_width)
        end_y = min(canvas_height, offset_y + layer_height)
        if start_x >= end_x or start_y >= end_y:
            return

        source = pixels[start_y - offset_y:end_y - offset_y, start_x - offset_x:end_x - offset_x]
        source_color = source[:, :, :3] * opacity
        source_alpha = source[:, :, 3] * opacity
        inverse_source_alpha = 1.0 - source_alpha

        region_color = premultiplied[start_y:end_y, start_x:end_x]
        region_alpha = coverage[start_y:end_y, start_x:end_x]

        premultiplied[start_y:end_y, start_x:end_x] = (
            source_color + region_color * inverse_source_alpha[..., None]
        )
        coverage[start_y:end_y, start_x:end_x] = source_alpha + region_alpha * inverse_source_alpha

    # ------------------------------------------------------------------
    # Surface helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _allocate(canvas_width: int, canvas_height: int) -> Tuple[np.ndarray, np.ndarray]:
        try:
            width = int(canvas_width)
            height = int(canvas_height)
        except (TypeError, ValueError) as exc:
            raise RenderSurfaceError(f"Invalid canvas size {canvas_width!r}x{canvas_height!r}") from exc
        if width <= 0 or height <= 0:
            raise RenderSurfaceError(f"Invalid canvas size {width}x{height}")
        try:
            premultiplied = np.zeros((height, width, 3), dtype=np.float32)
            coverage = np.zeros((height, width), dtype=np.float32)
        except (MemoryError, ValueError) as exc:
            raise RenderSurfaceError(f"Unable to allocate {width}x{height} surface: {exc}") from exc
        return premultiplied, coverage

    @staticmethod
    def _premultiply(pixels: np.ndarray) -> np.ndarray:
        layer = pixels.astype(np.float32)
        alpha = layer[:, :, 3] / 255.0
        layer[:, :, :3] *= alpha[..., None]
        layer[:, :, 3] = alpha
        return layer

    @staticmethod
    def _finalize(premultiplied: np.ndarray, coverage: np.ndarray) -> CompositeImage:
        divisor = np.maximum(coverage[..., None], 1e-6)
        color = premultiplied / divisor
        color[coverage <= 0] = 0.0
        return CompositeImage(
            color=np.clip(np.rint(color), 0, 255).astype(np.uint8),
            alpha=np.clip(np.rint(coverage * 255.0), 0, 255).astype(np.uint8),
        )


# ----------------------------------------------------------------------
# Text glyphs
# ----------------------------------------------------------------------

def font_face_for(family: str) -> int:
    return _FONT_FACES.get(family.strip().lower(), cv2.FONT_HERSHEY_SIMPLEX)


def _is_bold(weight: str) -> bool:
    value = weight.strip().lower()
    if value in {"bold", "bolder"}:
        return True
    try:
        return int(value) >= 600
    except ValueError:
        return False


def render_text_mask(content: TextContent, scale: float = 1.0) -> Tuple[np.ndarray, int]:
    """Rasterize a single line of text into a coverage mask.

    Returns the mask and the padding (pixels) between the mask's top-left
    corner and the text box's top-left corner.
    """
    font_px = float(content.font_size) * float(scale)
    if font_px <= 0:
        return np.zeros((0, 0), dtype=np.uint8), 0

    face = font_face_for(content.font_family)
    text = " ".join(content.text.splitlines())
    (_, reference_height), reference_baseline = cv2.getTextSize("Hg", face, 1.0, 1)
    font_scale = font_px / float(reference_height + reference_baseline)
    stroke_divisor = 10.0 if _is_bold(content.font_weight) else 18.0
    thickness = max(1, int(round(font_px / stroke_divisor)))

    (text_width, text_height), baseline = cv2.getTextSize(text, face, font_scale, thickness)
    padding = thickness
    mask = np.zeros(
        (text_height + baseline + 2 * padding, text_width + 2 * padding),
        dtype=np.uint8,
    )
    cv2.putText(
        mask,
        text,
        (padding, padding + text_height),
        face,
        font_scale,
        255,
        thickness,
        cv2.LINE_AA,
    )
    return mask, padding


# ----------------------------------------------------------------------
# Affine helpers (3x3, canvas coordinates, y pointing down)
# ----------------------------------------------------------------------

def _translation(tx: float, ty: float) -> np.ndarray:
    return np.array([[1.0, 0.0, tx], [0.0, 1.0, ty], [0.0, 0.0, 1.0]])


def _scaling(sx: float, sy: float) -> np.ndarray:
    return np.array([[sx, 0.0, 0.0], [0.0, sy, 0.0], [0.0, 0.0, 1.0]])


def _rotation_about(pivot_x: float, pivot_y: float, degrees: float) -> np.ndarray:
    # Positive degrees turn clockwise on screen; OpenCV's angle is counter-clockwise.
    matrix = cv2.getRotationMatrix2D((float(pivot_x), float(pivot_y)), -float(degrees), 1.0)
    return np.vstack([matrix, [0.0, 0.0, 1.0]])


def _integer_offset(matrix: np.ndarray) -> Optional[Tuple[int, int]]:
    linear = matrix[:2, :2]
    if not np.allclose(linear, np.eye(2), atol=1e-9):
        return None
    tx, ty = matrix[0, 2], matrix[1, 2]
    if abs(tx - round(tx)) > 1e-9 or abs(ty - round(ty)) > 1e-9:
        return None
    return int(round(tx)), int(round(ty))


__all__ = ["AssetSource", "Compositor", "font_face_for", "render_text_mask"]
