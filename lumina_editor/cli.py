"""
Command line utilities for flattening projects and calling the image service.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from .ai_client import ASPECT_RATIOS, QUALITY_TIERS, ImageServiceClient
from .assets import AssetDecoder
from .compositor import Compositor
from .config import Config, load_config
from .encoding import decode_data_uri, encode_data_uri, export_image, is_data_uri
from .errors import EditorError
from .filters import Adjustments, FilterKind, apply_adjustments, apply_filter
from .layers import LayerStack, stack_from_dict
from .logging_setup import configure_from_config
from .models import CompositeImage

DEFAULT_CONFIG_PATH = Path("config.json")


def _format_for(path: Path, fallback: str) -> str:
    suffix = path.suffix.lower().lstrip(".")
    if suffix in ("jpg", "jpeg"):
        return "jpeg"
    if suffix in ("png", "webp"):
        return suffix
    return fallback


def _resolve_sources(stack: LayerStack, project_dir: Path) -> LayerStack:
    """Make relative file paths in a project point next to the project file."""
    for layer in stack:
        src = getattr(layer.content, "src", None)
        if not src or is_data_uri(src) or src.startswith(("http://", "https://")):
            continue
        path = Path(src)
        if not path.is_absolute():
            layer.content.src = str((project_dir / path).resolve())
    return stack


def _write(composite: CompositeImage, output: Path, config: Config) -> None:
    editor = config.editor
    export_image(
        composite,
        output,
        _format_for(output, editor.export_format),
        quality=editor.export_quality,
        background_color=editor.background_color,
    )
    logging.info("Wrote %sx%s image to %s", composite.width, composite.height, output)


def compose_project(config: Config, logger: logging.Logger, args: argparse.Namespace) -> int:
    """Flatten a saved project document into a single image."""
    with args.project.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    canvas, stack = stack_from_dict(data)
    stack = _resolve_sources(stack, args.project.resolve().parent)
    logging.info(
        "Composing %s layer(s) onto a %sx%s canvas",
        len(stack),
        canvas.width,
        canvas.height,
    )

    decoder = AssetDecoder(
        logger=logger,
        cache_size=config.editor.decode_cache_size,
        http_timeout=config.editor.http_timeout,
    )
    compositor = Compositor(decoder, logger=logger)
    composite = asyncio.run(compositor.compose(stack, canvas.width, canvas.height))
    _write(composite, args.output, config)
    return 0


def filter_image(config: Config, logger: logging.Logger, args: argparse.Namespace) -> int:
    """Apply a colour filter and optional adjustments to one image."""
    decoder = AssetDecoder(logger=logger, cache_size=0, http_timeout=config.editor.http_timeout)
    asset = decoder.decode_sync(str(args.image))
    image = CompositeImage.from_bgra(asset.pixels)

    image = apply_filter(image, args.kind)
    adjustments = Adjustments(
        brightness=args.brightness,
        contrast=args.contrast,
        saturation=args.saturation,
        hue=args.hue,
        blur=args.blur,
    )
    if not adjustments.is_identity():
        image = apply_adjustments(image, adjustments)

    _write(image, args.output, config)
    return 0


def _image_data_uri(path: Path, config: Config, logger: logging.Logger) -> str:
    decoder = AssetDecoder(logger=logger, cache_size=0, http_timeout=config.editor.http_timeout)
    asset = decoder.decode_sync(str(path))
    return encode_data_uri(CompositeImage.from_bgra(asset.pixels))


def analyze_image(config: Config, logger: logging.Logger, args: argparse.Namespace) -> int:
    client = ImageServiceClient(config.ai)
    text = client.analyze(_image_data_uri(args.image, config, logger), args.prompt or "")
    print(text)
    return 0


def generate_image(config: Config, logger: logging.Logger, args: argparse.Namespace) -> int:
    client = ImageServiceClient(config.ai)
    data_uri = client.generate(args.prompt, args.aspect_ratio, args.quality)
    output: Path = args.output
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(decode_data_uri(data_uri))
    logger.info("Saved generated image to %s", output)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Layered image editing tools.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to the editor config JSON (default: ./config.json, falls back to environment).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    compose_parser = subparsers.add_parser(
        "compose", help="Flatten a saved layer project into one image."
    )
    compose_parser.add_argument("project", type=Path, help="Project JSON document.")
    compose_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        required=True,
        help="Destination image path; the suffix picks the format.",
    )

    filter_parser = subparsers.add_parser(
        "filter", help="Apply a colour filter and adjustments to an image."
    )
    filter_parser.add_argument("image", type=Path, help="Source image path.")
    filter_parser.add_argument(
        "--kind",
        choices=[kind.value for kind in FilterKind],
        default=FilterKind.NONE.value,
        help="Filter preset (default: none).",
    )
    filter_parser.add_argument("--brightness", type=float, default=100.0, help="Percent, 100 is neutral.")
    filter_parser.add_argument("--contrast", type=float, default=100.0, help="Percent, 100 is neutral.")
    filter_parser.add_argument("--saturation", type=float, default=100.0, help="Percent, 100 is neutral.")
    filter_parser.add_argument("--hue", type=float, default=0.0, help="Hue rotation in degrees.")
    filter_parser.add_argument("--blur", type=float, default=0.0, help="Blur radius in pixels.")
    filter_parser.add_argument("-o", "--output", type=Path, required=True, help="Destination image path.")

    analyze_parser = subparsers.add_parser(
        "analyze", help="Ask the image service to describe an image."
    )
    analyze_parser.add_argument("image", type=Path, help="Source image path.")
    analyze_parser.add_argument("--prompt", help="Question about the image.")

    generate_parser = subparsers.add_parser(
        "generate", help="Create an image from a text prompt."
    )
    generate_parser.add_argument("prompt", help="Text description of the image.")
    generate_parser.add_argument("-o", "--output", type=Path, required=True, help="Destination image path.")
    generate_parser.add_argument(
        "--aspect-ratio",
        choices=ASPECT_RATIOS,
        default="1:1",
        help="Output aspect ratio (default: 1:1).",
    )
    generate_parser.add_argument(
        "--quality",
        choices=QUALITY_TIERS,
        default="high",
        help="Quality tier (default: high).",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)
    logger = configure_from_config(config, verbose=args.verbose)
    logger.debug("Loaded configuration: %s", config.editor)

    handlers = {
        "compose": compose_project,
        "filter": filter_image,
        "analyze": analyze_image,
        "generate": generate_image,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.error(f"Unhandled command: {args.command}")
        return 2

    try:
        return handler(config, logger, args)
    except EditorError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1
    except (OSError, ValueError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
