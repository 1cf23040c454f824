"""Tests for Gemini concept image generation."""

from __future__ import annotations

import asyncio
import base64
from types import SimpleNamespace

import pytest

from threshold.concept_image import GeminiConceptImageSource
from threshold.concept_image.gemini_image import extract_inline_image
from threshold.config import ConceptImageConfig
from threshold.error_handling.errors import ConceptImageUnavailable

pytestmark = pytest.mark.usefixtures("add_repo_to_path")

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + bytes(64)


def _response(*parts):
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=list(parts)))])


def _image_part(data=PNG_BYTES, mime_type="image/png"):
    return SimpleNamespace(inline_data=SimpleNamespace(data=data, mime_type=mime_type), text=None)


def _text_part(text="Here is your image"):
    return SimpleNamespace(inline_data=None, text=text)


class FakeModels:
    def __init__(self, result):
        self.result = result
        self.calls = []

    async def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


def _fake_client(result):
    models = FakeModels(result)
    return SimpleNamespace(aio=SimpleNamespace(models=models)), models


@pytest.fixture(autouse=True)
def _no_model_override(monkeypatch):
    monkeypatch.delenv("GEMINI_IMAGE_MODEL", raising=False)


@pytest.mark.unit
def test_generate_returns_first_inline_image():
    client, models = _fake_client(_response(_text_part(), _image_part()))
    source = GeminiConceptImageSource(client=client)

    image = asyncio.run(source.generate("Neon Cyberpunk Marketplace"))

    assert base64.b64decode(image.data_b64) == PNG_BYTES
    assert image.mime_type == "image/png"
    call = models.calls[0]
    assert call["model"] == "gemini-3-pro-image-preview"
    assert call["contents"] == (
        "A first-person view of Neon Cyberpunk Marketplace, immersive, cinematic lighting, 8k."
    )
    assert call["config"].response_modalities == ["IMAGE", "TEXT"]
    assert call["config"].image_config.aspect_ratio == "1:1"


@pytest.mark.unit
def test_missing_image_is_unavailable():
    client, _ = _fake_client(_response(_text_part()))
    source = GeminiConceptImageSource(client=client)

    with pytest.raises(ConceptImageUnavailable) as excinfo:
        asyncio.run(source.generate("Theme"))

    assert excinfo.value.context.step == "concept_image"


@pytest.mark.unit
def test_client_errors_are_wrapped():
    client, _ = _fake_client(RuntimeError("quota exhausted"))
    source = GeminiConceptImageSource(client=client)

    with pytest.raises(ConceptImageUnavailable) as excinfo:
        asyncio.run(source.generate("Theme"))

    assert isinstance(excinfo.value.cause, RuntimeError)
    assert "quota exhausted" in excinfo.value.message


@pytest.mark.unit
def test_model_override_and_custom_prompt(monkeypatch):
    monkeypatch.setenv("GEMINI_IMAGE_MODEL", "gemini-2.5-flash-image")
    client, models = _fake_client(_response(_image_part(mime_type="image/jpeg")))
    config = ConceptImageConfig(prompt_template="Postcard of {theme}")
    source = GeminiConceptImageSource(config=config, client=client)

    image = asyncio.run(source.generate("Mars"))

    assert image.mime_type == "image/jpeg"
    assert models.calls[0]["model"] == "gemini-2.5-flash-image"
    assert models.calls[0]["contents"] == "Postcard of Mars"


@pytest.mark.unit
def test_api_key_required_without_client(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)

    with pytest.raises(ValueError):
        GeminiConceptImageSource()


@pytest.mark.unit
def test_extract_inline_image_accepts_base64_strings():
    image = extract_inline_image(_response(_image_part(data="QUJD")))

    assert image.data_b64 == "QUJD"
    assert extract_inline_image(SimpleNamespace(candidates=None)) is None
