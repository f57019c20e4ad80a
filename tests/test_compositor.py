import asyncio
import logging
import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lumina_editor.assets import AssetDecoder
from lumina_editor.compositor import Compositor
from lumina_editor.errors import DecodeError, RenderSurfaceError
from lumina_editor.layers import ImageContent, Layer, TextContent, Transform
from lumina_editor.models import DecodedAsset


class FakeDecoder:
    """Serve in-memory BGRA arrays, optionally after a delay."""

    def __init__(self, assets, delays=None):
        self.assets = assets
        self.delays = delays or {}
        self.calls = []

    async def decode(self, src):
        self.calls.append(src)
        await asyncio.sleep(self.delays.get(src, 0))
        if src not in self.assets:
            raise DecodeError(f"missing asset {src}")
        pixels = self.assets[src]
        return DecodedAsset(pixels=pixels, width=pixels.shape[1], height=pixels.shape[0])


def solid(width, height, bgr, alpha=255):
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[..., :3] = bgr
    pixels[..., 3] = alpha
    return pixels


def image(layer_id, src, **kwargs):
    return Layer(id=layer_id, name=layer_id, content=ImageContent(src=src), **kwargs)


def compose(assets, layers, width, height, delays=None):
    compositor = Compositor(FakeDecoder(assets, delays), logger=logging.getLogger("compositor-test"))
    return asyncio.run(compositor.compose(layers, width, height))


def centroid(alpha):
    ys, xs = np.nonzero(alpha)
    return xs.mean(), ys.mean()


def test_empty_stack_yields_transparent_canvas():
    result = compose({}, [], 12, 8)
    assert result.color.shape == (8, 12, 3)
    assert not result.alpha.any()


def test_opaque_base_layer_is_reproduced_exactly():
    rng = np.random.default_rng(7)
    pixels = rng.integers(0, 256, size=(6, 9, 4), dtype=np.uint8)
    pixels[..., 3] = 255

    result = compose({"base": pixels}, [image("base", "base")], 9, 6)

    assert np.array_equal(result.color, pixels[..., :3])
    assert (result.alpha == 255).all()


def test_hidden_layer_contributes_nothing():
    assets = {"base": solid(10, 10, (10, 20, 30)), "red": solid(4, 4, (0, 0, 255))}
    visible_only = compose(assets, [image("base", "base")], 10, 10)
    with_hidden = compose(
        assets,
        [image("base", "base"), image("red", "red", visible=False)],
        10,
        10,
    )
    assert np.array_equal(visible_only.color, with_hidden.color)
    assert np.array_equal(visible_only.alpha, with_hidden.alpha)


def test_swapping_order_only_changes_overlap():
    assets = {
        "base": solid(10, 10, (0, 0, 255)),
        "green": solid(4, 4, (0, 255, 0)),
        "blue": solid(4, 4, (255, 0, 0)),
    }
    base = image("base", "base")
    green = image("green", "green", transform=Transform(x=2, y=2))
    blue = image("blue", "blue", transform=Transform(x=4, y=4))

    first = compose(assets, [base, green, blue], 10, 10)
    second = compose(assets, [base, blue, green], 10, 10)

    differs = np.any(first.color != second.color, axis=2)
    overlap = np.zeros((10, 10), dtype=bool)
    overlap[4:6, 4:6] = True
    assert np.array_equal(differs, overlap)
    assert tuple(first.color[5, 5]) == (255, 0, 0)
    assert tuple(second.color[5, 5]) == (0, 255, 0)


def test_failed_decode_skips_only_that_layer():
    assets = {"base": solid(8, 8, (50, 60, 70)), "top": solid(2, 2, (255, 255, 255))}
    expected = compose(assets, [image("base", "base"), image("top", "top")], 8, 8)
    result = compose(
        assets,
        [image("base", "base"), image("broken", "broken"), image("top", "top")],
        8,
        8,
    )
    assert np.array_equal(result.color, expected.color)
    assert np.array_equal(result.alpha, expected.alpha)


def test_layer_opacity_blends_over_lower_layers():
    assets = {"base": solid(4, 4, (0, 0, 0)), "white": solid(4, 4, (255, 255, 255))}
    result = compose(assets, [image("base", "base"), image("white", "white", opacity=50)], 4, 4)

    assert (result.alpha == 255).all()
    assert np.all(np.abs(result.color.astype(int) - 128) <= 1)


def test_zero_opacity_layer_is_invisible():
    assets = {"base": solid(4, 4, (9, 9, 9)), "white": solid(4, 4, (255, 255, 255))}
    result = compose(assets, [image("base", "base"), image("white", "white", opacity=0)], 4, 4)
    assert (result.color == 9).all()


def test_scaled_layer_covers_scaled_box():
    assets = {"red": solid(2, 2, (0, 0, 255))}
    layer = image("red", "red", transform=Transform(x=1, y=1, scale=2.0))

    result = compose(assets, [layer], 8, 8)

    assert (result.alpha[1:5, 1:5] == 255).all()
    assert (result.color[1:5, 1:5] == (0, 0, 255)).all()
    assert result.alpha.sum() == 16 * 255


def test_explicit_size_overrides_natural_dimensions():
    assets = {"red": solid(10, 10, (0, 0, 255))}
    layer = image("red", "red", width=4, height=2)

    result = compose(assets, [layer], 10, 10)

    assert (result.alpha[0:2, 0:4] == 255).all()
    assert result.alpha.sum() == 8 * 255


def test_image_rotates_about_box_centre():
    assets = {"bar": solid(40, 20, (255, 255, 255))}
    layer = image("bar", "bar", transform=Transform(x=50, y=20, rotation=90))

    result = compose(assets, [layer], 200, 200)

    cx, cy = centroid(result.alpha > 127)
    assert abs(cx - 70) < 1.5
    assert abs(cy - 30) < 1.5
    ys, xs = np.nonzero(result.alpha > 127)
    assert xs.max() - xs.min() < 25
    assert ys.max() - ys.min() > 35


def test_text_rotates_about_its_top_left_anchor():
    text = TextContent(text="Hello", font_size=32)
    upright = Layer(id="t", name="t", content=text, transform=Transform(x=50, y=20))
    rotated = Layer(id="t", name="t", content=text, transform=Transform(x=50, y=20, rotation=90))

    upright_result = compose({}, [upright], 200, 200)
    rotated_result = compose({}, [rotated], 200, 200)

    ux, uy = centroid(upright_result.alpha > 127)
    assert ux > 50 and uy > 20

    # A clockwise quarter turn about (50, 20) sends the run of glyphs downward
    # and their height to the left of the anchor.
    rx, ry = centroid(rotated_result.alpha > 127)
    assert rx < 50
    assert ry > 20
    assert abs(ry - 20 - (ux - 50)) < 3


def test_text_uses_its_colour():
    layer = Layer(
        id="t",
        name="t",
        content=TextContent(text="I", font_size=40, color="#00ff00"),
        transform=Transform(x=5, y=5),
    )
    result = compose({}, [layer], 80, 80)
    solid_pixels = result.color[result.alpha == 255]
    assert len(solid_pixels)
    assert {tuple(map(int, pixel)) for pixel in solid_pixels} == {(0, 255, 0)}


@pytest.mark.parametrize("size", [(0, 10), (10, -1), (None, 5)])
def test_invalid_canvas_raises_render_surface_error(size):
    with pytest.raises(RenderSurfaceError):
        compose({}, [], *size)


def test_draw_order_ignores_decode_completion_order():
    assets = {
        "base": solid(6, 6, (0, 0, 255)),
        "top": solid(6, 6, (255, 0, 0), alpha=200),
    }
    layers = [image("base", "base"), image("top", "top")]

    slow_base = compose(assets, layers, 6, 6, delays={"base": 0.05})
    slow_top = compose(assets, layers, 6, 6, delays={"top": 0.05})

    assert np.array_equal(slow_base.color, slow_top.color)
    assert np.array_equal(slow_base.alpha, slow_top.alpha)
    assert slow_base.color[0, 0, 0] > slow_base.color[0, 0, 2]


def test_layers_sharing_a_source_are_each_drawn():
    decoder = FakeDecoder({"dot": solid(1, 1, (255, 255, 255))})
    compositor = Compositor(decoder, logger=logging.getLogger("compositor-test"))
    layers = [
        image("a", "dot", transform=Transform(x=0, y=0)),
        image("b", "dot", transform=Transform(x=2, y=0)),
    ]

    result = asyncio.run(compositor.compose(layers, 3, 1))

    assert list(result.alpha[0]) == [255, 0, 255]
    assert sorted(decoder.calls) == ["dot", "dot"]


def test_compose_single_raises_on_decode_failure():
    compositor = Compositor(FakeDecoder({}), logger=logging.getLogger("compositor-test"))
    with pytest.raises(DecodeError):
        asyncio.run(compositor.compose_single("missing"))


def test_compose_single_uses_natural_size():
    pixels = solid(7, 3, (1, 2, 3))
    compositor = Compositor(FakeDecoder({"img": pixels}), logger=logging.getLogger("compositor-test"))
    result = asyncio.run(compositor.compose_single("img"))
    assert (result.width, result.height) == (7, 3)
    assert np.array_equal(result.to_bgra(), pixels)


def test_text_and_image_with_same_transform_pivot_differently():
    transform = Transform(x=50, y=20, rotation=90)
    text = Layer(id="t", name="t", content=TextContent(text="Hello", font_size=32), transform=transform)
    bar = image("bar", "bar", transform=transform)
    assets = {"bar": solid(40, 20, (255, 255, 255))}

    text_result = compose(assets, [text], 200, 200)
    image_result = compose(assets, [bar], 200, 200)

    assert not np.array_equal(text_result.alpha, image_result.alpha)
    tx, _ = centroid(text_result.alpha > 127)
    ix, _ = centroid(image_result.alpha > 127)
    assert tx < 50 < ix


def test_unreadable_file_reference_skips_only_its_layer(tmp_path):
    path = tmp_path / "red.png"
    cv2.imwrite(str(path), np.full((4, 4, 3), (0, 0, 255), dtype=np.uint8))
    layers = [
        image("good", str(path)),
        image("bad", "broken\x00name.png", transform=Transform(x=2, y=2)),
    ]
    logger = logging.getLogger("compositor-test")
    compositor = Compositor(AssetDecoder(logger=logger), logger=logger)

    result = asyncio.run(compositor.compose(layers, 4, 4))

    assert (result.alpha == 255).all()
    assert tuple(result.color[3, 3]) == (0, 0, 255)
