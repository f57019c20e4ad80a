"""Configuration dataclasses and loading helpers for the layered image editor."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
EXPORT_FORMATS = ("png", "jpeg", "webp")


def _parse_bool(value: Any, default: bool) -> bool:
    """Parse truthy/falsy values from multiple input types."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(value, (int, float)):
        return value != 0
    return default


def _parse_positive_int(value: Any, default: int) -> int:
    """Parse a positive integer with fallback to default."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _parse_non_negative_int(value: Any, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= 0 else default


def _parse_float(value: Any, default: float) -> float:
    """Parse a floating point number with fallback to default."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_color(value: Any, default: Tuple[int, int, int] = (0, 0, 0)) -> Tuple[int, int, int]:
    """Parse and clamp colour definitions to BGR tuples.

    Accepts ``#rrggbb`` / ``#rgb`` strings, RGB triplets, and mappings of the
    form ``{"hex": ...}`` or ``{"value": [...], "order": "bgr"}``.
    """

    def _clamp_triplet(triplet: Any) -> Optional[Tuple[int, int, int]]:
        if not isinstance(triplet, (list, tuple)) or len(triplet) != 3:
            return None
        try:
            return tuple(
                max(0, min(255, int(channel)))
                for channel in triplet
            )
        except (TypeError, ValueError):
            return None

    def _to_bgr(channels: Tuple[int, int, int], order: Optional[str]) -> Optional[Tuple[int, int, int]]:
        color_order = (order or "rgb").lower()
        if color_order == "bgr":
            return channels
        if color_order == "rgb":
            return (channels[2], channels[1], channels[0])
        return None

    if isinstance(value, Mapping):
        if "hex" in value and isinstance(value["hex"], str):
            return parse_color(value["hex"], default)
        if "value" in value:
            channels = _clamp_triplet(value["value"])
            if channels is None:
                return default
            bgr = _to_bgr(channels, value.get("order") or value.get("color_space"))
            if bgr is not None:
                return bgr
            return default

    if isinstance(value, (list, tuple)):
        channels = _clamp_triplet(value)
        if channels is None:
            return default
        bgr = _to_bgr(channels, "rgb")
        if bgr is not None:
            return bgr
        return default

    if isinstance(value, str):
        hex_value = value.strip().lstrip("#")
        if len(hex_value) == 3:
            hex_value = "".join(char * 2 for char in hex_value)
        if len(hex_value) == 6:
            try:
                r = int(hex_value[0:2], 16)
                g = int(hex_value[2:4], 16)
                b = int(hex_value[4:6], 16)
                return (b, g, r)
            except ValueError:
                return default

    return default


def _parse_export_format(value: Any, default: str = "png") -> str:
    fmt = str(value or default).strip().lower()
    if fmt == "jpg":
        fmt = "jpeg"
    return fmt if fmt in EXPORT_FORMATS else default


@dataclass(frozen=True)
class BrushSettings:
    """Freehand brush defaults."""

    color: str = "#ef4444"
    size: int = 10
    opacity: float = 100.0


@dataclass(frozen=True)
class TextDefaults:
    """Initial properties for newly created text layers."""

    text: str = "Double click to edit"
    font_size: float = 32.0
    color: str = "#ffffff"
    font_family: str = "Inter"
    font_weight: str = "bold"


@dataclass(frozen=True)
class AISettings:
    """Connection settings for the external image service."""

    api_base: str = DEFAULT_API_BASE
    api_key: Optional[str] = None
    image_model: str = "gemini-2.5-flash-image"
    imagen_model: str = "imagen-4.0-generate-001"
    analysis_model: str = "gemini-2.5-flash"
    timeout: float = 60.0


@dataclass(frozen=True)
class EditorSettings:
    """Compositing, history and interaction settings."""

    background_color: Tuple[int, int, int] = (0, 0, 0)
    export_format: str = "png"
    export_quality: int = 92
    history_limit: int = 0
    keyboard_pan_step: float = 40.0
    zoom_min: float = 0.5
    zoom_max: float = 5.0
    zoom_step: float = 0.5
    wheel_zoom_step: float = 0.1
    decode_cache_size: int = 32
    http_timeout: int = 10


@dataclass(frozen=True)
class Config:
    """Root configuration object for the editor."""

    editor: EditorSettings = field(default_factory=EditorSettings)
    brush: BrushSettings = field(default_factory=BrushSettings)
    text: TextDefaults = field(default_factory=TextDefaults)
    ai: AISettings = field(default_factory=AISettings)
    log_file: Optional[Path] = None
    log_level: str = "INFO"
    log_to_console: bool = True
    log_max_bytes: int = 0
    log_backup_count: int = 3


def _parse_editor_settings(raw: Any) -> EditorSettings:
    default = EditorSettings()
    if not isinstance(raw, Mapping):
        return default

    zoom_min = _parse_float(raw.get("zoom_min"), default.zoom_min)
    zoom_max = _parse_float(raw.get("zoom_max"), default.zoom_max)
    if zoom_min <= 0 or zoom_max < zoom_min:
        zoom_min, zoom_max = default.zoom_min, default.zoom_max

    return EditorSettings(
        background_color=parse_color(raw.get("background_color"), default.background_color),
        export_format=_parse_export_format(raw.get("export_format"), default.export_format),
        export_quality=max(1, min(100, _parse_positive_int(raw.get("export_quality"), default.export_quality))),
        history_limit=_parse_non_negative_int(raw.get("history_limit"), default.history_limit),
        keyboard_pan_step=_parse_float(raw.get("keyboard_pan_step"), default.keyboard_pan_step),
        zoom_min=zoom_min,
        zoom_max=zoom_max,
        zoom_step=_parse_float(raw.get("zoom_step"), default.zoom_step),
        wheel_zoom_step=_parse_float(raw.get("wheel_zoom_step"), default.wheel_zoom_step),
        decode_cache_size=_parse_non_negative_int(raw.get("decode_cache_size"), default.decode_cache_size),
        http_timeout=_parse_positive_int(raw.get("http_timeout"), default.http_timeout),
    )


def _parse_brush_settings(raw: Any) -> BrushSettings:
    default = BrushSettings()
    if not isinstance(raw, Mapping):
        return default
    return BrushSettings(
        color=str(raw.get("color", default.color)),
        size=max(1, min(100, _parse_positive_int(raw.get("size"), default.size))),
        opacity=max(0.0, min(100.0, _parse_float(raw.get("opacity"), default.opacity))),
    )


def _parse_text_defaults(raw: Any) -> TextDefaults:
    default = TextDefaults()
    if not isinstance(raw, Mapping):
        return default
    font_size = _parse_float(raw.get("font_size"), default.font_size)
    return TextDefaults(
        text=str(raw.get("text", default.text)),
        font_size=font_size if font_size > 0 else default.font_size,
        color=str(raw.get("color", default.color)),
        font_family=str(raw.get("font_family", default.font_family)),
        font_weight=str(raw.get("font_weight", default.font_weight)),
    )


def _parse_ai_settings(raw: Any, env: Mapping[str, str]) -> AISettings:
    default = AISettings()
    if not isinstance(raw, Mapping):
        raw = {}
    api_key = raw.get("api_key") or env.get("GEMINI_API_KEY") or env.get("API_KEY")
    return AISettings(
        api_base=str(raw.get("api_base", env.get("GEMINI_API_BASE", default.api_base))).rstrip("/"),
        api_key=str(api_key) if api_key else None,
        image_model=str(raw.get("image_model", default.image_model)),
        imagen_model=str(raw.get("imagen_model", default.imagen_model)),
        analysis_model=str(raw.get("analysis_model", default.analysis_model)),
        timeout=_parse_float(raw.get("timeout"), default.timeout),
    )


def _load_env_config(env: Mapping[str, str]) -> Config:
    """Fallback configuration derived from environment variables."""
    editor = _parse_editor_settings({
        "background_color": env.get("BACKGROUND_COLOR"),
        "export_format": env.get("EXPORT_FORMAT"),
        "export_quality": env.get("EXPORT_QUALITY"),
        "history_limit": env.get("HISTORY_LIMIT"),
        "keyboard_pan_step": env.get("KEYBOARD_PAN_STEP"),
        "decode_cache_size": env.get("DECODE_CACHE_SIZE"),
        "http_timeout": env.get("HTTP_TIMEOUT"),
    })
    log_file = env.get("LUMINA_LOG_FILE")
    return Config(
        editor=editor,
        ai=_parse_ai_settings({}, env),
        log_file=Path(log_file) if log_file else None,
        log_level=str(env.get("LUMINA_LOG_LEVEL", "INFO")).upper(),
        log_to_console=_parse_bool(env.get("LUMINA_LOG_TO_CONSOLE"), True),
        log_max_bytes=_parse_non_negative_int(env.get("LUMINA_LOG_MAX_BYTES"), 0),
        log_backup_count=_parse_non_negative_int(env.get("LUMINA_LOG_BACKUPS"), 3),
    )


def load_config(config_path: Path | str, env: Mapping[str, str] | None = None) -> Config:
    """Load configuration from JSON file or environment defaults."""
    source_env = env if env is not None else os.environ
    path = Path(config_path)

    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        log_file = data.get("log_file")
        return Config(
            editor=_parse_editor_settings(data.get("editor", {})),
            brush=_parse_brush_settings(data.get("brush", {})),
            text=_parse_text_defaults(data.get("text", {})),
            ai=_parse_ai_settings(data.get("ai", {}), source_env),
            log_file=Path(log_file) if log_file else None,
            log_level=str(data.get("log_level", "INFO")).upper(),
            log_to_console=_parse_bool(data.get("log_to_console"), True),
            log_max_bytes=_parse_non_negative_int(data.get("log_max_bytes"), 0),
            log_backup_count=_parse_non_negative_int(data.get("log_backup_count"), 3),
        )

    return _load_env_config(source_env)


__all__ = [
    "AISettings",
    "BrushSettings",
    "Config",
    "EditorSettings",
    "TextDefaults",
    "load_config",
    "parse_color",
    "_parse_bool",
    "_parse_positive_int",
]
