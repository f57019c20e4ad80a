"""Editor controller: application state plus the wiring between components."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional, Tuple

from lumina_editor.ai_client import ImageServiceClient, find_style
from lumina_editor.assets import AssetDecoder
from lumina_editor.compositor import AssetSource, Compositor
from lumina_editor.config import BrushSettings, Config
from lumina_editor.crop import extract_region
from lumina_editor.encoding import default_export_filename, encode_data_uri, export_image
from lumina_editor.errors import DecodeError, RenderSurfaceError, ServiceError
from lumina_editor.filters import (
    Adjustments,
    FilterKind,
    GradientSettings,
    apply_adjustments,
    apply_filter,
    apply_gradient,
)
from lumina_editor.history import HistoryTimeline
from lumina_editor.interaction import InteractionEngine, KeyAction, ToolMode
from lumina_editor.layers import (
    ImageContent,
    Layer,
    LayerStack,
    TextContent,
    append_layer,
    copy_stack,
    find_layer,
    index_of,
    make_base_layer,
    make_drawing_layer,
    make_image_layer,
    make_text_layer,
    move_layer,
    remove_layer,
    update_layer,
)
from lumina_editor.models import CanvasSize, CompositeImage

Point = Tuple[float, float]


class AppMode(str, Enum):
    GENERATE = "generate"
    EDIT = "edit"
    ANALYZE = "analyze"


class Status(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class EditorState:
    """Everything the editing surface renders from.

    ``canvas`` is stored on its own so the composition size never depends
    on whichever layer happens to sit at index 0.  ``text_panel_layer_id``
    names the text layer whose property panel is open.
    """

    mode: AppMode = AppMode.EDIT
    status: Status = Status.IDLE
    layers: LayerStack = field(default_factory=list)
    active_layer_id: Optional[str] = None
    text_panel_layer_id: Optional[str] = None
    canvas: Optional[CanvasSize] = None
    base_layer_id: Optional[str] = None
    base_source: Optional[str] = None
    result_image: Optional[str] = None
    analysis_result: Optional[str] = None
    prompt: str = ""
    aspect_ratio: str = "1:1"
    resolution: str = "high"
    error_message: Optional[str] = None
    stack_version: int = 0
    preview: Optional[CompositeImage] = None


class EditorController:
    """Own the editor state and route actions through model, history and services."""

    def __init__(
        self,
        config: Config,
        *,
        logger: logging.Logger,
        decoder: Optional[AssetSource] = None,
        ai_client: Optional[ImageServiceClient] = None,
    ) -> None:
        self.config = config
        self.logger = logger
        self.decoder = decoder or AssetDecoder(
            logger=logger,
            cache_size=config.editor.decode_cache_size,
            http_timeout=config.editor.http_timeout,
        )
        self.compositor = Compositor(self.decoder, logger=logger)
        self.history = HistoryTimeline(
            self.compositor,
            logger=logger,
            limit=config.editor.history_limit,
        )
        self.interaction = InteractionEngine(config.editor, config.brush, logger=logger)
        self.ai = ai_client or ImageServiceClient(config.ai)
        self.state = EditorState()

    # ------------------------------------------------------------------
    # Composition lifecycle
    # ------------------------------------------------------------------

    async def load_base_image(self, src: str, *, label: str = "Original Upload") -> bool:
        """Start a fresh composition from ``src``; history restarts at one entry."""
        try:
            asset = await self.decoder.decode(src)
        except DecodeError as exc:
            self.logger.error("Failed to load base image: %s", exc)
            self._notify("Failed to load image")
            return False

        canvas = CanvasSize(asset.width, asset.height)
        base_layer = make_base_layer(src)
        try:
            await self.history.reset(base_layer, canvas, label=label)
        except RenderSurfaceError as exc:
            self.logger.error("Failed to render base image: %s", exc)
            self._notify(str(exc))
            return False

        state = self.state
        state.canvas = canvas
        state.base_layer_id = base_layer.id
        state.base_source = src
        state.result_image = None
        state.analysis_result = None
        state.error_message = None
        state.status = Status.IDLE
        state.preview = self.history.current.preview if self.history.current else None
        self._set_layers([base_layer], active_layer_id=base_layer.id)
        self.interaction.attach_canvas(canvas)
        self.logger.info("Loaded base image %sx%s", canvas.width, canvas.height)
        return True

    def set_mode(self, mode: AppMode) -> None:
        mode = AppMode(mode)
        state = self.state
        state.mode = mode
        state.result_image = None
        state.analysis_result = None
        state.error_message = None
        if mode is AppMode.GENERATE:
            state.canvas = None
            state.base_layer_id = None
            state.base_source = None
            state.preview = None
            self.history.clear()
            self._set_layers([], active_layer_id=None)
            self.interaction.attach_canvas(None)
        else:
            self.interaction.set_tool_mode(ToolMode.NONE)
            self.interaction.reset_view()

    # ------------------------------------------------------------------
    # Layer management
    # ------------------------------------------------------------------

    async def add_image_layer(self, src: str) -> Optional[Layer]:
        if not self._require_canvas():
            return None
        layer = make_image_layer(src, len(self.state.layers))
        await self._commit(append_layer(self.state.layers, layer), "Add Image", active_layer_id=layer.id)
        return layer

    async def add_text_layer(self, text: Optional[str] = None) -> Optional[Layer]:
        if not self._require_canvas():
            return None
        defaults = self.config.text
        layer = make_text_layer(
            text if text is not None else defaults.text,
            font_size=defaults.font_size,
            color=defaults.color,
            font_family=defaults.font_family,
            font_weight=defaults.font_weight,
        )
        await self._commit(append_layer(self.state.layers, layer), "Add Text", active_layer_id=layer.id)
        self.state.text_panel_layer_id = layer.id
        return layer

    async def delete_layer(self, layer_id: str) -> bool:
        if find_layer(self.state.layers, layer_id) is None:
            return False
        await self._commit(remove_layer(self.state.layers, layer_id), "Delete Layer")
        return True

    async def reorder_layer(self, layer_id: str, to_index: int) -> bool:
        """Move a layer, resolving its index right before the positional move."""
        from_index = index_of(self.state.layers, layer_id)
        if from_index is None or not 0 <= to_index < len(self.state.layers):
            return False
        if from_index == to_index:
            return False
        await self._commit(move_layer(self.state.layers, from_index, to_index), "Reorder Layer")
        return True

    async def update_layer(
        self,
        layer_id: str,
        changes: Mapping[str, Any],
        *,
        record: bool = True,
        label: str = "Edit Layer",
    ) -> bool:
        if find_layer(self.state.layers, layer_id) is None:
            return False
        updated = update_layer(self.state.layers, layer_id, changes)
        if record:
            await self._commit(updated, label)
        else:
            self._set_layers(updated)
        return True

    async def toggle_visibility(self, layer_id: str) -> bool:
        layer = find_layer(self.state.layers, layer_id)
        if layer is None:
            return False
        label = "Hide Layer" if layer.visible else "Show Layer"
        return await self.update_layer(layer_id, {"visible": not layer.visible}, label=label)

    async def toggle_lock(self, layer_id: str) -> bool:
        layer = find_layer(self.state.layers, layer_id)
        if layer is None:
            return False
        label = "Unlock Layer" if layer.locked else "Lock Layer"
        return await self.update_layer(layer_id, {"locked": not layer.locked}, label=label)

    def select_layer(self, layer_id: Optional[str]) -> bool:
        if layer_id is None:
            self._activate(None)
            return True
        layer = find_layer(self.state.layers, layer_id)
        if layer is None or layer.locked:
            return False
        self._activate(layer)
        return True

    def begin_text_edit(self, layer_id: Optional[str] = None) -> bool:
        """Focus the text field of a text layer; keys then go to the field."""
        layer = find_layer(self.state.layers, layer_id or self.state.active_layer_id)
        if layer is None or layer.locked or not isinstance(layer.content, TextContent):
            return False
        self._activate(layer)
        self.interaction.set_tool_mode(ToolMode.TEXT_EDITING, text_layer_id=layer.id)
        return True

    def end_text_edit(self) -> None:
        if self.interaction.tool_mode is ToolMode.TEXT_EDITING:
            self.interaction.set_tool_mode(ToolMode.NONE)

    @property
    def active_layer(self) -> Optional[Layer]:
        return find_layer(self.state.layers, self.state.active_layer_id)

    # ------------------------------------------------------------------
    # Base image mutators
    # ------------------------------------------------------------------

    async def apply_filter(self, kind: FilterKind | str) -> bool:
        kind = FilterKind(kind)
        if kind is FilterKind.NONE:
            return False
        return await self._mutate_base(
            lambda image: apply_filter(image, kind),
            f"Filter: {kind.value}",
            "Failed to apply filter",
        )

    async def apply_adjustments(self, adjustments: Adjustments) -> bool:
        return await self._mutate_base(
            lambda image: apply_adjustments(image, adjustments),
            "Adjustments",
            "Failed to apply adjustments",
        )

    async def apply_gradient(self, settings: GradientSettings) -> bool:
        return await self._mutate_base(
            lambda image: apply_gradient(image, settings),
            "Gradient",
            "Failed to apply gradient",
        )

    # ------------------------------------------------------------------
    # Pointer, keyboard and tool routing
    # ------------------------------------------------------------------

    def set_tool_mode(self, mode: ToolMode) -> None:
        mode = ToolMode(mode)
        if mode is ToolMode.TEXT_EDITING:
            self.begin_text_edit()
            return
        self.interaction.set_tool_mode(mode)

    def set_display_size(self, width: float, height: float) -> None:
        self.interaction.set_display_size(width, height)

    def update_brush_settings(self, **changes: Any) -> BrushSettings:
        settings = replace(self.interaction.brush_settings, **changes)
        self.interaction.set_brush_settings(settings)
        return settings

    def layer_pointer_down(self, layer_id: str, point: Point) -> bool:
        if not self.interaction.begin_layer_drag(self.state.layers, layer_id, point):
            return False
        self._activate(find_layer(self.state.layers, layer_id))
        return True

    def pointer_down(self, point: Point) -> None:
        """Pointer pressed on the canvas background or a tool overlay."""
        if self.interaction.tool_mode in (ToolMode.NONE, ToolMode.TEXT_EDITING):
            # Clicking empty canvas deselects and closes the text panel.
            self.state.active_layer_id = None
            self.state.text_panel_layer_id = None
        self.interaction.pointer_down(point, active_layer_id=self.state.active_layer_id)

    def pointer_move(self, point: Point) -> None:
        moved = self.interaction.pointer_move(self.state.layers, point)
        if moved is not None:
            self._set_layers(moved)

    async def pointer_up(self) -> None:
        label = self.interaction.pointer_up()
        if label is not None:
            await self._snapshot(label)

    async def key_press(self, key: str) -> KeyAction:
        action = self.interaction.key_press(key)
        if action is KeyAction.DELETE_ACTIVE and self.state.active_layer_id is not None:
            await self.delete_layer(self.state.active_layer_id)
        return action

    def wheel(self, delta_y: float) -> bool:
        return self.interaction.wheel(delta_y)

    async def commit_brush(self) -> Optional[Layer]:
        """Turn the brush scratch raster into a new drawing layer."""
        brush = self.interaction.brush
        canvas = self.state.canvas
        if brush is None or canvas is None or brush.is_empty:
            return None
        brush.end()
        try:
            src = encode_data_uri(brush.raster())
        except RuntimeError as exc:
            self.logger.error("Failed to encode brush strokes: %s", exc)
            self._notify("Failed to apply brush stroke")
            return None

        layer = make_drawing_layer(src, opacity=self.interaction.brush_settings.opacity, canvas=canvas)
        brush.clear()
        self.interaction.set_tool_mode(ToolMode.NONE)
        await self._commit(append_layer(self.state.layers, layer), "Brush Stroke", active_layer_id=layer.id)
        return layer

    async def apply_crop(self) -> bool:
        """Crop the base image and restart the composition from the result.

        Only the base raster is cropped; every other layer is discarded and
        history restarts with a single snapshot.
        """
        canvas = self.state.canvas
        if canvas is None or self.state.base_source is None:
            return False
        rect = self.interaction.natural_crop_rect(canvas.as_tuple())
        if rect is None:
            return False

        try:
            base = await self.compositor.compose_single(self.state.base_source)
        except (DecodeError, RenderSurfaceError) as exc:
            self.logger.error("Failed to crop image: %s", exc)
            self._notify("Failed to crop image")
            return False

        region = extract_region(base, rect)
        if region is None:
            self.logger.info("Crop selection %s is empty after clipping", rect)
            return False

        self.logger.info(
            "Cropping base image to %sx%s at (%s, %s)",
            region.width,
            region.height,
            int(round(rect.x)),
            int(round(rect.y)),
        )
        return await self.load_base_image(encode_data_uri(region), label="Crop")

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def undo(self) -> bool:
        return self._restore(await self.history.undo())

    async def redo(self) -> bool:
        return self._restore(await self.history.redo())

    async def jump_to_history(self, index: int) -> bool:
        return self._restore(await self.history.jump_to(index))

    # ------------------------------------------------------------------
    # Rendering and export
    # ------------------------------------------------------------------

    async def render_preview(self) -> Optional[CompositeImage]:
        """Compose the live stack; results superseded mid-compose are dropped."""
        canvas = self.state.canvas
        if canvas is None:
            return None
        version = self.state.stack_version
        try:
            composite = await self.compositor.compose(copy_stack(self.state.layers), canvas.width, canvas.height)
        except RenderSurfaceError as exc:
            self.logger.error("Preview render failed: %s", exc)
            self._notify(str(exc))
            return None
        if version != self.state.stack_version:
            self.logger.debug("Dropping stale preview for stack version %s", version)
            return None
        self.state.preview = composite
        return composite

    async def flatten(self) -> Optional[CompositeImage]:
        canvas = self.state.canvas
        if canvas is None:
            return None
        return await self.compositor.compose(copy_stack(self.state.layers), canvas.width, canvas.height)

    async def export(self, output_path: Optional[Path] = None, fmt: Optional[str] = None) -> Optional[Path]:
        """Write the pending AI result if there is one, else the flattened stack."""
        editor = self.config.editor
        fmt = fmt or editor.export_format
        try:
            if self.state.result_image is not None:
                composite = await self.compositor.compose_single(self.state.result_image)
                prefix = "lumina"
            else:
                composite = await self.flatten()
                prefix = "lumina-edit"
        except (DecodeError, RenderSurfaceError) as exc:
            self.logger.error("Export failed: %s", exc)
            self._notify("Failed to export image")
            return None
        if composite is None:
            return None

        target = output_path or Path(default_export_filename(prefix, fmt))
        export_image(
            composite,
            target,
            fmt,
            quality=editor.export_quality,
            background_color=editor.background_color,
        )
        self.logger.info("Exported %sx%s image to %s", composite.width, composite.height, target)
        return target

    # ------------------------------------------------------------------
    # Image service actions
    # ------------------------------------------------------------------

    def set_prompt(self, prompt: str) -> None:
        self.state.prompt = prompt

    async def apply_artistic_style(self, style_id: str) -> bool:
        style = find_style(style_id)
        if style is None:
            raise ValueError(f"Unknown artistic style: {style_id}")

        async def action(flattened: str) -> str:
            return await self.ai.edit_async(flattened, style.instruction())

        if await self._run_edit_service(action):
            self.state.prompt = f"Style: {style.label}"
            return True
        return False

    async def remove_background(self) -> bool:
        return await self._run_edit_service(self.ai.remove_background_async)

    async def upscale(self) -> bool:
        return await self._run_edit_service(self.ai.upscale_async)

    async def run_prompt(self) -> bool:
        """Generate from the prompt, or analyze the composition, by mode."""
        state = self.state
        prompt = state.prompt.strip()
        if not prompt:
            return False

        if state.mode is AppMode.GENERATE:
            result = await self._call_service(
                lambda: self.ai.generate_async(prompt, state.aspect_ratio, state.resolution)
            )
            if result is None:
                return False
            state.result_image = result
            state.status = Status.SUCCESS
            return True

        if state.mode is AppMode.ANALYZE and state.canvas is not None:
            flattened = await self._flattened_data_uri()
            if flattened is None:
                return False
            analysis = await self._call_service(lambda: self.ai.analyze_async(flattened, prompt))
            if analysis is None:
                return False
            state.analysis_result = analysis
            state.status = Status.IDLE
            return True

        return False

    async def keep_result_as_layer(self) -> Optional[Layer]:
        result = self.state.result_image
        if result is None:
            return None
        self.state.result_image = None
        if self.state.canvas is None:
            await self.load_base_image(result)
            return find_layer(self.state.layers, self.state.base_layer_id)
        return await self.add_image_layer(result)

    def discard_result(self) -> None:
        self.state.result_image = None

    def dismiss_error(self) -> None:
        self.state.error_message = None
        if self.state.status is Status.ERROR:
            self.state.status = Status.IDLE

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _set_layers(self, layers: LayerStack, *, active_layer_id: Any = ...) -> None:
        state = self.state
        state.layers = layers
        state.stack_version += 1
        if active_layer_id is not ...:
            state.active_layer_id = active_layer_id
        if find_layer(layers, state.active_layer_id) is None:
            state.active_layer_id = None
        if find_layer(layers, state.text_panel_layer_id) is None:
            state.text_panel_layer_id = None
        if (
            self.interaction.editing_text_id is not None
            and find_layer(layers, self.interaction.editing_text_id) is None
        ):
            self.interaction.set_tool_mode(ToolMode.NONE)
        self._sync_base_source()

    async def _commit(self, layers: LayerStack, label: str, *, active_layer_id: Any = ...) -> None:
        self._set_layers(layers, active_layer_id=active_layer_id)
        await self._snapshot(label)

    async def _snapshot(self, label: str) -> None:
        canvas = self.state.canvas
        if canvas is None:
            return
        version = self.state.stack_version
        try:
            entry = await self.history.snapshot(self.state.layers, canvas, label)
        except RenderSurfaceError as exc:
            self.logger.error("Snapshot '%s' not recorded: %s", label, exc)
            self._notify(str(exc))
            return
        if version != self.state.stack_version:
            self.logger.debug("Snapshot '%s' preview is stale; keeping live preview", label)
            return
        self.state.preview = entry.preview

    def _activate(self, layer: Optional[Layer]) -> None:
        """Make ``layer`` active; text layers open their property panel."""
        self.state.active_layer_id = layer.id if layer is not None else None
        if layer is not None and isinstance(layer.content, TextContent):
            self.state.text_panel_layer_id = layer.id
        else:
            self.state.text_panel_layer_id = None
        if self.interaction.editing_text_id not in (None, self.state.active_layer_id):
            self.interaction.set_tool_mode(ToolMode.NONE)

    def _restore(self, layers: Optional[LayerStack]) -> bool:
        if layers is None:
            return False
        self._set_layers(layers)
        self.state.result_image = None
        current = self.history.current
        if current is not None:
            self.state.preview = current.preview
        return True

    def _sync_base_source(self) -> None:
        base = find_layer(self.state.layers, self.state.base_layer_id)
        if base is not None and isinstance(base.content, ImageContent):
            self.state.base_source = base.content.src

    async def _mutate_base(
        self,
        mutator: Callable[[CompositeImage], CompositeImage],
        label: str,
        failure_message: str,
    ) -> bool:
        state = self.state
        if state.base_source is None:
            return False
        if find_layer(state.layers, state.base_layer_id) is None:
            self.logger.warning("%s: base layer has been deleted", failure_message)
            self._notify(f"{failure_message}: no base layer")
            return False
        state.status = Status.LOADING
        try:
            image = await self.compositor.compose_single(state.base_source)
            src = encode_data_uri(mutator(image))
        except (DecodeError, RenderSurfaceError, RuntimeError) as exc:
            self.logger.error("%s: %s", failure_message, exc)
            self._notify(failure_message)
            return False

        state.status = Status.IDLE
        await self._commit(update_layer(state.layers, state.base_layer_id, {"src": src}), label)
        return True

    async def _flattened_data_uri(self) -> Optional[str]:
        try:
            composite = await self.flatten()
        except RenderSurfaceError as exc:
            self.logger.error("Failed to flatten composition: %s", exc)
            self._notify(str(exc))
            return None
        if composite is None:
            return None
        return encode_data_uri(composite)

    async def _run_edit_service(self, action: Callable[[str], Awaitable[str]]) -> bool:
        flattened = await self._flattened_data_uri()
        if flattened is None:
            return False
        result = await self._call_service(lambda: action(flattened))
        if result is None:
            return False
        self.state.result_image = result
        self.state.status = Status.SUCCESS
        return True

    async def _call_service(self, call: Callable[[], Awaitable[str]]) -> Optional[str]:
        self.state.status = Status.LOADING
        self.state.error_message = None
        try:
            return await call()
        except ServiceError as exc:
            self.logger.error("Image service call failed: %s", exc.message)
            self._notify(exc.message)
            return None

    def _notify(self, message: str) -> None:
        self.state.status = Status.ERROR
        self.state.error_message = message

    def _require_canvas(self) -> bool:
        if self.state.canvas is None:
            self.logger.warning("No base image loaded; ignoring layer action")
            return False
        return True


__all__ = ["AppMode", "EditorController", "EditorState", "Status"]
