"""Asset resolution: turn encoded image references into BGRA pixels."""

from __future__ import annotations

import asyncio
import binascii
import logging
from collections import OrderedDict
from pathlib import Path
from typing import Optional

import cv2
import numpy as np
import requests

from lumina_editor.encoding import decode_data_uri, is_data_uri
from lumina_editor.errors import DecodeError
from lumina_editor.models import DecodedAsset


def ensure_bgra(pixels: Optional[np.ndarray]) -> Optional[np.ndarray]:
    """Normalize gray, BGR or BGRA ``uint8`` arrays to BGRA."""
    if pixels is None:
        return None
    if pixels.dtype != np.uint8:
        if pixels.dtype == np.uint16:
            pixels = (pixels >> 8).astype(np.uint8)
        else:
            return None
    if len(pixels.shape) == 2:
        return cv2.cvtColor(pixels, cv2.COLOR_GRAY2BGRA)
    if pixels.shape[2] == 1:
        return cv2.cvtColor(pixels, cv2.COLOR_GRAY2BGRA)
    if pixels.shape[2] == 3:
        opaque_alpha = np.full((pixels.shape[0], pixels.shape[1], 1), 255, dtype=pixels.dtype)
        return np.concatenate((pixels, opaque_alpha), axis=2)
    if pixels.shape[2] != 4:
        return None
    return pixels


class AssetDecoder:
    """Resolve data URIs, HTTP URLs and file paths to decoded pixels.

    Decoded assets are cached per reference; the cache evicts the oldest
    entry once ``cache_size`` is exceeded.  A ``cache_size`` of zero turns
    caching off.
    """

    def __init__(
        self,
        *,
        logger: logging.Logger,
        cache_size: int = 32,
        http_timeout: int = 10,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.logger = logger
        self.cache_size = max(0, cache_size)
        self.http_timeout = http_timeout
        self.session = session or requests.Session()
        self._cache: "OrderedDict[str, DecodedAsset]" = OrderedDict()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def decode(self, src: str) -> DecodedAsset:
        cached = self._cache.get(src)
        if cached is not None:
            self._cache.move_to_end(src)
            return cached

        asset = await asyncio.to_thread(self.decode_sync, src)
        self._remember(src, asset)
        return asset

    def decode_sync(self, src: str) -> DecodedAsset:
        payload = self._read_payload(src)
        buffer = np.frombuffer(payload, dtype=np.uint8)
        if buffer.size == 0:
            raise DecodeError(f"Empty image payload for {self._describe(src)}")

        try:
            pixels = ensure_bgra(cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED))
        except cv2.error as exc:
            raise DecodeError(f"Failed to decode {self._describe(src)}: {exc}") from exc
        if pixels is None:
            raise DecodeError(f"Unreadable image data for {self._describe(src)}")

        height, width = pixels.shape[:2]
        return DecodedAsset(pixels=pixels, width=int(width), height=int(height))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_payload(self, src: str) -> bytes:
        if not src:
            raise DecodeError("Empty asset reference")

        if is_data_uri(src):
            try:
                return decode_data_uri(src)
            except (binascii.Error, ValueError) as exc:
                raise DecodeError(f"Malformed data URI: {exc}") from exc

        if src.startswith(("http://", "https://")):
            try:
                response = self.session.get(src, timeout=self.http_timeout)
                response.raise_for_status()
            except requests.RequestException as exc:
                raise DecodeError(f"Failed to fetch {src}: {exc}") from exc
            return response.content

        path = Path(src)
        try:
            return path.read_bytes()
        except (OSError, ValueError) as exc:
            raise DecodeError(f"Failed to read {src!r}: {exc}") from exc

    def _remember(self, src: str, asset: DecodedAsset) -> None:
        if self.cache_size == 0:
            return
        self._cache[src] = asset
        self._cache.move_to_end(src)
        while len(self._cache) > self.cache_size:
            evicted, _ = self._cache.popitem(last=False)
            self.logger.debug("Evicted decoded asset %s", self._describe(evicted))

    @staticmethod
    def _describe(src: str) -> str:
        if is_data_uri(src):
            return f"data URI ({len(src)} chars)"
        return src


__all__ = ["AssetDecoder", "ensure_bgra"]
