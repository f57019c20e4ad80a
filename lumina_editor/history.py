"""Linear undo/redo timeline over deep-copied layer stack snapshots."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import List, Optional, Sequence

from lumina_editor.compositor import Compositor
from lumina_editor.layers import Layer, LayerStack, copy_stack
from lumina_editor.models import CanvasSize, CompositeImage


@dataclass
class Snapshot:
    """Point-in-time copy of the layer stack plus its flattened preview."""

    id: str
    preview: CompositeImage
    layers: LayerStack
    label: str
    timestamp: float


class HistoryTimeline:
    """Snapshots plus a cursor; new snapshots discard any redo tail.

    ``snapshot``, ``undo``, ``redo`` and ``reset`` are serialized by one
    lock so a slow compose can never interleave with a truncation.
    ``limit`` caps the number of retained snapshots (0 keeps everything).
    """

    def __init__(
        self,
        compositor: Compositor,
        *,
        logger: logging.Logger,
        limit: int = 0,
    ) -> None:
        self.compositor = compositor
        self.logger = logger
        self.limit = max(0, limit)
        self._entries: List[Snapshot] = []
        self._current_index = -1
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def entries(self) -> Sequence[Snapshot]:
        return tuple(self._entries)

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def current(self) -> Optional[Snapshot]:
        if not self._entries:
            return None
        return self._entries[self._current_index]

    def __len__(self) -> int:
        return len(self._entries)

    def can_undo(self) -> bool:
        return self._current_index > 0

    def can_redo(self) -> bool:
        return 0 <= self._current_index < len(self._entries) - 1

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def reset(
        self,
        base_layer: Layer,
        canvas: CanvasSize,
        *,
        label: str = "Original Upload",
    ) -> Snapshot:
        """Replace the timeline with a single snapshot holding ``base_layer``."""
        async with self._lock:
            layers = copy_stack([base_layer])
            preview = await self.compositor.compose(layers, canvas.width, canvas.height)
            entry = self._make_entry(preview, layers, label)
            self._entries = [entry]
            self._current_index = 0
            self.logger.debug("History reset with '%s'", label)
            return entry

    def clear(self) -> None:
        """Forget every snapshot; used when the composition is discarded."""
        self._entries = []
        self._current_index = -1

    async def snapshot(
        self,
        layers: Sequence[Layer],
        canvas: CanvasSize,
        label: str = "Action",
    ) -> Snapshot:
        """Record ``layers`` after the current position.

        The stack is copied before the preview is composed, so mutations of
        the live stack during the compose cannot leak into the snapshot.
        A failed compose records nothing.
        """
        async with self._lock:
            copied = copy_stack(layers)
            preview = await self.compositor.compose(copied, canvas.width, canvas.height)
            entry = self._make_entry(preview, copied, label)

            del self._entries[self._current_index + 1:]
            self._entries.append(entry)
            self._current_index = len(self._entries) - 1
            self._enforce_limit()

            self.logger.debug(
                "History snapshot '%s' at index %s/%s",
                label,
                self._current_index,
                len(self._entries) - 1,
            )
            return entry

    async def undo(self) -> Optional[LayerStack]:
        """Step back one snapshot and return a fresh copy of its layers."""
        async with self._lock:
            if not self.can_undo():
                return None
            self._current_index -= 1
            return copy_stack(self._entries[self._current_index].layers)

    async def redo(self) -> Optional[LayerStack]:
        async with self._lock:
            if not self.can_redo():
                return None
            self._current_index += 1
            return copy_stack(self._entries[self._current_index].layers)

    async def jump_to(self, index: int) -> Optional[LayerStack]:
        """Move the cursor to ``index`` without discarding anything."""
        async with self._lock:
            if not 0 <= index < len(self._entries):
                return None
            self._current_index = index
            return copy_stack(self._entries[index].layers)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _make_entry(preview: CompositeImage, layers: LayerStack, label: str) -> Snapshot:
        return Snapshot(
            id=uuid.uuid4().hex,
            preview=preview,
            layers=layers,
            label=label,
            timestamp=time.time(),
        )

    def _enforce_limit(self) -> None:
        if self.limit == 0:
            return
        overflow = len(self._entries) - self.limit
        if overflow > 0:
            del self._entries[:overflow]
            self._current_index -= overflow


__all__ = ["HistoryTimeline", "Snapshot"]
