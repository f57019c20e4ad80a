"""
HTTP client for the generative image service (generate, edit, analyze).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from lumina_editor.config import AISettings
from lumina_editor.encoding import mime_type_from_data_uri, strip_data_uri_prefix
from lumina_editor.errors import ServiceError

LOGGER = logging.getLogger(__name__)

ASPECT_RATIOS = ("1:1", "16:9", "9:16", "4:3", "3:4")
QUALITY_TIERS = ("low", "medium", "high")

DEFAULT_ANALYZE_PROMPT = "Describe this image in detail, identifying key objects, style, and mood."
REMOVE_BACKGROUND_PROMPT = (
    "Remove the background from this image. Isolate the main subject completely "
    "on a clean, transparent or white background."
)
UPSCALE_PROMPT = (
    "Upscale this image to high resolution. Enhance details, sharpness, and clarity "
    "significantly while maintaining the original content and composition."
)


@dataclass(frozen=True)
class ArtisticStyle:
    id: str
    label: str
    prompt: str

    def instruction(self) -> str:
        return (
            f"Transform this image into the style of {self.prompt}. Maintain the original "
            "composition and subject but apply the artistic style strongly."
        )


ARTISTIC_STYLES = (
    ArtisticStyle("vangogh", "Van Gogh", "Van Gogh Starry Night impressionist oil painting style"),
    ArtisticStyle("picasso", "Picasso", "Picasso cubism abstract art style"),
    ArtisticStyle("watercolor", "Watercolor", "soft artistic watercolor painting style"),
    ArtisticStyle("sketch", "Sketch", "detailed pencil sketch style"),
    ArtisticStyle("cyberpunk", "Cyberpunk", "futuristic cyberpunk neon noir style"),
    ArtisticStyle("anime", "Anime", "high quality anime manga style"),
    ArtisticStyle("pixel", "Pixel Art", "retro 8-bit pixel art style"),
)


def find_style(style_id: str) -> Optional[ArtisticStyle]:
    for style in ARTISTIC_STYLES:
        if style.id == style_id:
            return style
    return None


def _build_session(api_key: Optional[str]) -> requests.Session:
    session = requests.Session()
    headers = {
        "Content-Type": "application/json",
        "User-Agent": "lumina-editor",
    }
    if api_key:
        headers["x-goog-api-key"] = api_key
    session.headers.update(headers)
    return session


def _handle_response(response: requests.Response) -> dict:
    try:
        response.raise_for_status()
    except requests.HTTPError as exc:
        detail = _error_detail(response)
        raise ServiceError(detail or str(exc)) from exc

    try:
        return response.json()
    except ValueError as exc:
        raise ServiceError("Failed to parse image service response as JSON") from exc


def _error_detail(response: requests.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        return None
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return None


def _first_parts(payload: dict) -> List[Dict[str, Any]]:
    candidates = payload.get("candidates") or []
    if not candidates:
        return []
    content = candidates[0].get("content") or {}
    return list(content.get("parts") or [])


def _inline_image(payload: dict) -> Optional[str]:
    for part in _first_parts(payload):
        inline = part.get("inlineData") or part.get("inline_data")
        if inline and inline.get("data"):
            mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
            return f"data:{mime_type};base64,{inline['data']}"
    return None


def _text_parts(payload: dict) -> str:
    return "".join(part.get("text", "") for part in _first_parts(payload))


class ImageServiceClient:
    """Blocking client with ``*_async`` wrappers for the editor's event loop."""

    def __init__(
        self,
        settings: AISettings,
        *,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.settings = settings
        self.session = session or _build_session(settings.api_key)

    # ------------------------------------------------------------------
    # Blocking API
    # ------------------------------------------------------------------

    def generate(self, prompt: str, aspect_ratio: str = "1:1", quality: str = "high") -> str:
        """Create an image from text, returned as a data URI."""
        if aspect_ratio not in ASPECT_RATIOS:
            raise ServiceError(f"Unsupported aspect ratio: {aspect_ratio}")

        if quality == "high":
            try:
                return self._generate_with_imagen(prompt, aspect_ratio)
            except ServiceError as exc:
                LOGGER.warning("Imagen generation failed, falling back to %s: %s", self.settings.image_model, exc)

        enhanced = f"{prompt}. High quality, detailed image. Aspect ratio {aspect_ratio}."
        payload = self._generate_content(
            self.settings.image_model,
            [{"text": enhanced}],
            response_modalities=["IMAGE"],
        )
        image = _inline_image(payload)
        if image is None:
            raise ServiceError("No image returned from generation operation.")
        return image

    def edit(self, data_uri: str, instruction: str) -> str:
        """Send a flattened image plus an instruction; returns the new image."""
        payload = self._generate_content(
            self.settings.image_model,
            [self._inline_part(data_uri), {"text": instruction}],
            response_modalities=["IMAGE"],
        )
        image = _inline_image(payload)
        if image is None:
            raise ServiceError("No image returned from edit operation.")
        return image

    def analyze(self, data_uri: str, prompt: str = "") -> str:
        payload = self._generate_content(
            self.settings.analysis_model,
            [self._inline_part(data_uri), {"text": prompt or DEFAULT_ANALYZE_PROMPT}],
        )
        text = _text_parts(payload)
        if not text:
            raise ServiceError("No analysis text returned.")
        return text

    def remove_background(self, data_uri: str) -> str:
        return self.edit(data_uri, REMOVE_BACKGROUND_PROMPT)

    def upscale(self, data_uri: str) -> str:
        return self.edit(data_uri, UPSCALE_PROMPT)

    # ------------------------------------------------------------------
    # Async wrappers
    # ------------------------------------------------------------------

    async def generate_async(self, prompt: str, aspect_ratio: str = "1:1", quality: str = "high") -> str:
        return await asyncio.to_thread(self.generate, prompt, aspect_ratio, quality)

    async def edit_async(self, data_uri: str, instruction: str) -> str:
        return await asyncio.to_thread(self.edit, data_uri, instruction)

    async def analyze_async(self, data_uri: str, prompt: str = "") -> str:
        return await asyncio.to_thread(self.analyze, data_uri, prompt)

    async def remove_background_async(self, data_uri: str) -> str:
        return await asyncio.to_thread(self.remove_background, data_uri)

    async def upscale_async(self, data_uri: str) -> str:
        return await asyncio.to_thread(self.upscale, data_uri)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _generate_with_imagen(self, prompt: str, aspect_ratio: str) -> str:
        body = {
            "instances": [{"prompt": prompt}],
            "parameters": {
                "sampleCount": 1,
                "aspectRatio": aspect_ratio,
                "outputMimeType": "image/jpeg",
            },
        }
        payload = self._post(f"models/{self.settings.imagen_model}:predict", body)
        predictions = payload.get("predictions") or []
        if predictions and predictions[0].get("bytesBase64Encoded"):
            mime_type = predictions[0].get("mimeType") or "image/jpeg"
            return f"data:{mime_type};base64,{predictions[0]['bytesBase64Encoded']}"
        raise ServiceError("No image returned from Imagen.")

    def _generate_content(
        self,
        model: str,
        parts: List[Dict[str, Any]],
        *,
        response_modalities: Optional[List[str]] = None,
    ) -> dict:
        body: Dict[str, Any] = {"contents": [{"parts": parts}]}
        if response_modalities:
            body["generationConfig"] = {"responseModalities": response_modalities}
        return self._post(f"models/{model}:generateContent", body)

    def _post(self, path: str, body: Dict[str, Any]) -> dict:
        if not self.settings.api_key:
            LOGGER.error("API key is missing; set GEMINI_API_KEY to enable AI features.")
            raise ServiceError("API key is missing. Set GEMINI_API_KEY in your environment.")

        url = f"{self.settings.api_base}/{path}"
        try:
            response = self.session.post(url, json=body, timeout=self.settings.timeout)
        except requests.RequestException as exc:
            LOGGER.error("Image service request to %s failed: %s", path, exc)
            raise ServiceError(f"Image service request failed: {exc}") from exc
        return _handle_response(response)

    @staticmethod
    def _inline_part(data_uri: str) -> Dict[str, Any]:
        return {
            "inlineData": {
                "data": strip_data_uri_prefix(data_uri),
                "mimeType": mime_type_from_data_uri(data_uri),
            }
        }


__all__ = [
    "ARTISTIC_STYLES",
    "ASPECT_RATIOS",
    "ArtisticStyle",
    "ImageServiceClient",
    "QUALITY_TIERS",
    "find_style",
]
