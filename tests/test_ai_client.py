import asyncio
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lumina_editor.ai_client import ARTISTIC_STYLES, ImageServiceClient, find_style
from lumina_editor.config import AISettings
from lumina_editor.errors import ServiceError

IMAGE_URI = "data:image/png;base64,QUJD"


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


def image_payload(data="WFla", mime_type="image/png"):
    return {"candidates": [{"content": {"parts": [{"inlineData": {"data": data, "mimeType": mime_type}}]}}]}


def make_client(*responses, api_key="key"):
    session = MagicMock()
    session.post.side_effect = list(responses)
    client = ImageServiceClient(AISettings(api_key=api_key), session=session)
    return client, session


def test_edit_sends_inline_image_and_instruction():
    client, session = make_client(FakeResponse(image_payload()))

    result = client.edit(IMAGE_URI, "make it blue")

    assert result == "data:image/png;base64,WFla"
    url = session.post.call_args.args[0]
    body = session.post.call_args.kwargs["json"]
    assert url.endswith("models/gemini-2.5-flash-image:generateContent")
    parts = body["contents"][0]["parts"]
    assert parts[0]["inlineData"] == {"data": "QUJD", "mimeType": "image/png"}
    assert parts[1] == {"text": "make it blue"}
    assert body["generationConfig"]["responseModalities"] == ["IMAGE"]


def test_edit_without_image_in_reply_raises():
    client, _ = make_client(FakeResponse({"candidates": [{"content": {"parts": [{"text": "no"}]}}]}))
    with pytest.raises(ServiceError, match="No image returned"):
        client.edit(IMAGE_URI, "anything")


def test_high_quality_generation_uses_imagen():
    predictions = {"predictions": [{"bytesBase64Encoded": "SU1H", "mimeType": "image/jpeg"}]}
    client, session = make_client(FakeResponse(predictions))

    assert client.generate("a cat", "16:9", "high") == "data:image/jpeg;base64,SU1H"
    body = session.post.call_args.kwargs["json"]
    assert body["parameters"]["aspectRatio"] == "16:9"
    assert session.post.call_args.args[0].endswith(":predict")


def test_imagen_failure_falls_back_to_flash_model():
    client, session = make_client(
        FakeResponse({"error": {"message": "not allowed"}}, status_code=403),
        FakeResponse(image_payload("RkxBU0g=")),
    )

    assert client.generate("a cat", "1:1", "high") == "data:image/png;base64,RkxBU0g="
    assert session.post.call_count == 2
    prompt = session.post.call_args.kwargs["json"]["contents"][0]["parts"][0]["text"]
    assert prompt.startswith("a cat.")


def test_low_quality_generation_skips_imagen():
    client, session = make_client(FakeResponse(image_payload()))
    client.generate("a cat", "1:1", "low")
    assert session.post.call_count == 1
    assert ":generateContent" in session.post.call_args.args[0]


def test_unsupported_aspect_ratio_is_rejected():
    client, session = make_client()
    with pytest.raises(ServiceError):
        client.generate("a cat", "2:1")
    session.post.assert_not_called()


def test_analyze_joins_text_parts():
    payload = {"candidates": [{"content": {"parts": [{"text": "A red "}, {"text": "barn."}]}}]}
    client, session = make_client(FakeResponse(payload))

    assert client.analyze(IMAGE_URI) == "A red barn."
    parts = session.post.call_args.kwargs["json"]["contents"][0]["parts"]
    assert parts[1]["text"].startswith("Describe this image")


def test_http_error_message_is_surfaced():
    client, _ = make_client(FakeResponse({"error": {"message": "Quota exceeded"}}, status_code=429))
    with pytest.raises(ServiceError) as excinfo:
        client.edit(IMAGE_URI, "x")
    assert excinfo.value.message == "Quota exceeded"


def test_transport_errors_become_service_errors():
    client, _ = make_client(requests.ConnectionError("offline"))
    with pytest.raises(ServiceError, match="request failed"):
        asyncio.run(client.edit_async(IMAGE_URI, "x"))


def test_invalid_json_becomes_service_error():
    client, _ = make_client(FakeResponse(ValueError("bad json")))
    with pytest.raises(ServiceError):
        client.analyze(IMAGE_URI, "what?")


def test_missing_api_key_fails_before_any_request():
    client, session = make_client(api_key=None)
    with pytest.raises(ServiceError, match="API key"):
        client.remove_background(IMAGE_URI)
    session.post.assert_not_called()


def test_artistic_styles_are_addressable_by_id():
    assert len(ARTISTIC_STYLES) == 7
    style = find_style("watercolor")
    assert style.label == "Watercolor"
    assert "watercolor" in style.instruction()
    assert find_style("unknown") is None
