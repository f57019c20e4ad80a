"""Data models used across the layered image editor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass(frozen=True)
class CanvasSize:
    """Pixel dimensions of the composition, independent of any layer."""

    width: int
    height: int

    def as_tuple(self) -> Tuple[int, int]:
        return (self.width, self.height)


@dataclass
class CompositeImage:
    """Container for a flattened raster and its transparency mask."""

    color: np.ndarray
    alpha: np.ndarray

    @property
    def width(self) -> int:
        return int(self.color.shape[1])

    @property
    def height(self) -> int:
        return int(self.color.shape[0])

    def to_bgra(self) -> np.ndarray:
        """Return the raster as a single BGRA ``uint8`` array."""
        return np.concatenate((self.color, self.alpha[..., None]), axis=2)

    @classmethod
    def from_bgra(cls, pixels: np.ndarray) -> "CompositeImage":
        return cls(
            color=np.ascontiguousarray(pixels[:, :, :3]),
            alpha=np.ascontiguousarray(pixels[:, :, 3]),
        )


@dataclass
class DecodedAsset:
    """Pixels resolved from an encoded image reference."""

    pixels: np.ndarray
    width: int
    height: int


__all__ = [
    "CanvasSize",
    "CompositeImage",
    "DecodedAsset",
]
