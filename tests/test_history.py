import asyncio
import logging
import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lumina_editor.compositor import Compositor
from lumina_editor.errors import RenderSurfaceError
from lumina_editor.history import HistoryTimeline
from lumina_editor.layers import ImageContent, Layer, TextContent, Transform, update_layer
from lumina_editor.models import CanvasSize, DecodedAsset

CANVAS = CanvasSize(16, 12)


class SolidDecoder:
    def __init__(self, delay=0.0):
        self.delay = delay

    async def decode(self, src):
        await asyncio.sleep(self.delay)
        pixels = np.full((CANVAS.height, CANVAS.width, 4), 255, dtype=np.uint8)
        return DecodedAsset(pixels=pixels, width=CANVAS.width, height=CANVAS.height)


def make_timeline(limit=0, delay=0.0):
    compositor = Compositor(SolidDecoder(delay), logger=logging.getLogger("history-test"))
    return HistoryTimeline(compositor, logger=logging.getLogger("history-test"), limit=limit)


def base_layer():
    return Layer(id="layer-base", name="Background", content=ImageContent(src="bg"), locked=True)


def text_layer(x=0.0):
    return Layer(id="t", name="Text", content=TextContent(text="hi"), transform=Transform(x=x))


def test_reset_seeds_single_snapshot():
    async def scenario():
        timeline = make_timeline()
        entry = await timeline.reset(base_layer(), CANVAS)
        assert len(timeline) == 1
        assert timeline.current_index == 0
        assert entry.label == "Original Upload"
        assert entry.preview.width == CANVAS.width
        assert not timeline.can_undo()
        assert not timeline.can_redo()

    asyncio.run(scenario())


def test_undo_then_redo_round_trips_layers():
    async def scenario():
        timeline = make_timeline()
        await timeline.reset(base_layer(), CANVAS)
        first = [base_layer(), text_layer(5)]
        second = update_layer(first, "t", {"x": 40})
        await timeline.snapshot(first, CANVAS, "Add Text")
        await timeline.snapshot(second, CANVAS, "Move Layer")

        undone = await timeline.undo()
        assert undone == first
        redone = await timeline.redo()
        assert redone == second
        assert await timeline.redo() is None

    asyncio.run(scenario())


def test_snapshot_after_undo_discards_redo_tail():
    async def scenario():
        timeline = make_timeline()
        await timeline.reset(base_layer(), CANVAS)
        await timeline.snapshot([base_layer(), text_layer(1)], CANVAS, "A")
        await timeline.snapshot([base_layer(), text_layer(2)], CANVAS, "B")
        await timeline.undo()
        await timeline.snapshot([base_layer(), text_layer(3)], CANVAS, "C")

        assert [entry.label for entry in timeline.entries] == ["Original Upload", "A", "C"]
        assert timeline.current_index == 2
        assert not timeline.can_redo()

    asyncio.run(scenario())


def test_snapshot_is_immune_to_later_mutation():
    async def scenario():
        timeline = make_timeline()
        await timeline.reset(base_layer(), CANVAS)
        live = [base_layer(), text_layer(5)]
        await timeline.snapshot(live, CANVAS, "Add Text")

        live[1].transform.x = 999
        live[1].content.text = "changed"

        stored = timeline.current.layers[1]
        assert stored.transform.x == 5
        assert stored.content.text == "hi"

        restored = await timeline.jump_to(1)
        restored[1].transform.x = -1
        assert timeline.current.layers[1].transform.x == 5

    asyncio.run(scenario())


def test_mutation_during_compose_does_not_leak_into_snapshot():
    async def scenario():
        timeline = make_timeline(delay=0.02)
        await timeline.reset(base_layer(), CANVAS)
        live = [base_layer(), text_layer(5)]

        pending = asyncio.create_task(timeline.snapshot(live, CANVAS, "Add Text"))
        await asyncio.sleep(0)
        live[1].transform.x = 77
        entry = await pending

        assert entry.layers[1].transform.x == 5

    asyncio.run(scenario())


def test_concurrent_snapshots_are_serialized():
    async def scenario():
        timeline = make_timeline(delay=0.01)
        await timeline.reset(base_layer(), CANVAS)
        await asyncio.gather(
            timeline.snapshot([base_layer(), text_layer(1)], CANVAS, "A"),
            timeline.snapshot([base_layer(), text_layer(2)], CANVAS, "B"),
            timeline.snapshot([base_layer(), text_layer(3)], CANVAS, "C"),
        )
        assert [entry.label for entry in timeline.entries] == ["Original Upload", "A", "B", "C"]
        assert timeline.current_index == 3

    asyncio.run(scenario())


def test_jump_to_keeps_all_entries():
    async def scenario():
        timeline = make_timeline()
        await timeline.reset(base_layer(), CANVAS)
        for label in "ABC":
            await timeline.snapshot([base_layer()], CANVAS, label)

        assert await timeline.jump_to(1) is not None
        assert len(timeline) == 4
        assert timeline.current.label == "A"
        assert await timeline.jump_to(9) is None
        assert timeline.current_index == 1

    asyncio.run(scenario())


def test_failed_compose_records_nothing():
    async def scenario():
        timeline = make_timeline()
        await timeline.reset(base_layer(), CANVAS)
        with pytest.raises(RenderSurfaceError):
            await timeline.snapshot([base_layer()], CanvasSize(0, 0), "Broken")
        assert len(timeline) == 1

    asyncio.run(scenario())


def test_limit_drops_oldest_entries():
    async def scenario():
        timeline = make_timeline(limit=3)
        await timeline.reset(base_layer(), CANVAS)
        for label in "ABCD":
            await timeline.snapshot([base_layer()], CANVAS, label)

        assert [entry.label for entry in timeline.entries] == ["B", "C", "D"]
        assert timeline.current_index == 2

    asyncio.run(scenario())


def test_reset_replaces_previous_timeline():
    async def scenario():
        timeline = make_timeline()
        await timeline.reset(base_layer(), CANVAS)
        await timeline.snapshot([base_layer(), text_layer()], CANVAS, "A")
        await timeline.reset(base_layer(), CANVAS, label="Crop")

        assert [entry.label for entry in timeline.entries] == ["Crop"]
        timeline.clear()
        assert len(timeline) == 0
        assert timeline.current is None

    asyncio.run(scenario())
