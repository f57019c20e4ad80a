"""Data URI helpers and the raster export boundary."""

from __future__ import annotations

import base64
import re
import time
import uuid
from pathlib import Path
from typing import Tuple

import cv2
import numpy as np

from lumina_editor.models import CompositeImage

_DATA_URI_PREFIX = re.compile(r"^data:(image/[\w.+-]+);base64,")

_EXTENSIONS = {
    "png": ".png",
    "jpeg": ".jpg",
    "webp": ".webp",
}

_MIME_TYPES = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
}


def strip_data_uri_prefix(data_uri: str) -> str:
    """Drop the ``data:image/...;base64,`` prefix, leaving raw base64 text."""
    return _DATA_URI_PREFIX.sub("", data_uri, count=1)


def mime_type_from_data_uri(data_uri: str) -> str:
    match = _DATA_URI_PREFIX.match(data_uri)
    return match.group(1) if match else "image/png"


def is_data_uri(value: str) -> bool:
    return bool(_DATA_URI_PREFIX.match(value))


def decode_data_uri(data_uri: str) -> bytes:
    return base64.b64decode(strip_data_uri_prefix(data_uri), validate=False)


def to_data_uri(payload: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(payload).decode('ascii')}"


def flatten_onto_background(
    composite: CompositeImage,
    background_color: Tuple[int, int, int],
) -> np.ndarray:
    """Blend the raster over an opaque BGR background."""
    alpha = composite.alpha.astype(np.float32)[..., None] / 255.0
    background = np.empty_like(composite.color, dtype=np.float32)
    background[:] = background_color
    flattened = composite.color.astype(np.float32) * alpha + background * (1.0 - alpha)
    return np.clip(np.rint(flattened), 0, 255).astype(np.uint8)


def encode_image(
    composite: CompositeImage,
    fmt: str = "png",
    *,
    quality: int = 92,
    background_color: Tuple[int, int, int] = (0, 0, 0),
) -> bytes:
    """Encode a raster into ``png``, ``jpeg`` or ``webp`` bytes."""
    extension = _EXTENSIONS.get(fmt)
    if extension is None:
        raise ValueError(f"Unsupported export format: {fmt}")

    params: list[int] = []
    if fmt == "jpeg":
        # JPEG carries no alpha channel.
        pixels = flatten_onto_background(composite, background_color)
        params = [cv2.IMWRITE_JPEG_QUALITY, int(quality)]
    elif fmt == "webp":
        pixels = composite.to_bgra()
        params = [cv2.IMWRITE_WEBP_QUALITY, int(quality)]
    else:
        pixels = composite.to_bgra()

    success, buffer = cv2.imencode(extension, pixels, params)
    if not success:
        raise RuntimeError(f"Failed to encode {composite.width}x{composite.height} raster as {fmt}")
    return buffer.tobytes()


def encode_data_uri(composite: CompositeImage, fmt: str = "png", **kwargs) -> str:
    return to_data_uri(encode_image(composite, fmt, **kwargs), _MIME_TYPES[fmt])


def default_export_filename(prefix: str = "lumina-edit", fmt: str = "png") -> str:
    return f"{prefix}-{int(time.time() * 1000)}{_EXTENSIONS.get(fmt, '.png')}"


def export_image(
    composite: CompositeImage,
    output_path: Path,
    fmt: str = "png",
    *,
    quality: int = 92,
    background_color: Tuple[int, int, int] = (0, 0, 0),
) -> Path:
    """Encode and write a raster, replacing ``output_path`` atomically."""
    payload = encode_image(
        composite,
        fmt,
        quality=quality,
        background_color=background_color,
    )
    output_path.parent.mkdir(parents=True, exist_ok=True)
    temp_output = output_path.with_name(f".tmp_{uuid.uuid4().hex}_{output_path.name}")
    try:
        temp_output.write_bytes(payload)
        temp_output.replace(output_path)
    finally:
        temp_output.unlink(missing_ok=True)
    return output_path


__all__ = [
    "decode_data_uri",
    "default_export_filename",
    "encode_data_uri",
    "encode_image",
    "export_image",
    "flatten_onto_background",
    "is_data_uri",
    "mime_type_from_data_uri",
    "strip_data_uri_prefix",
    "to_data_uri",
]
