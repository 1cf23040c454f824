"""
Concept image generation with Gemini.

The image conditions the world request (an image prompt instead of a text
prompt) and doubles as the preview when the finished world has none.

Environment Variables:
    GEMINI_API_KEY: API key for Google Gemini
    GEMINI_IMAGE_MODEL: overrides the configured image model
"""

from __future__ import annotations

import base64
import logging
import os
import time
from typing import Any, Optional

from google import genai
from google.genai import types

from threshold.config import ConceptImageConfig
from threshold.error_handling.errors import ConceptImageUnavailable
from threshold.world_generation.models import PreparedImage

logger = logging.getLogger(__name__)


def extract_inline_image(response: Any) -> Optional[PreparedImage]:
    """First inline image part of a ``generate_content`` response."""
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if not inline or not inline.data:
                continue
            data = inline.data
            if isinstance(data, str):
                encoded = data
            else:
                encoded = base64.b64encode(data).decode("ascii")
            return PreparedImage(data_b64=encoded, mime_type=inline.mime_type or "image/png")
    return None


class GeminiConceptImageSource:
    """Generates a first-person concept image for a theme."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        config: Optional[ConceptImageConfig] = None,
        client: Optional[Any] = None,
    ):
        self.config = config or ConceptImageConfig()
        self.model = os.getenv("GEMINI_IMAGE_MODEL") or self.config.model
        if client is None:
            api_key = api_key or os.getenv("GEMINI_API_KEY")
            if not api_key:
                raise ValueError("GEMINI_API_KEY environment variable is required")
            client = genai.Client(api_key=api_key)
        self._client = client

    def build_prompt(self, theme: str) -> str:
        return self.config.prompt_template.format(theme=theme)

    def _generation_config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            response_modalities=["IMAGE", "TEXT"],
            image_config=types.ImageConfig(
                aspect_ratio=self.config.aspect_ratio,
                image_size=self.config.image_size,
            ),
        )

    async def generate(self, theme: str) -> PreparedImage:
        """
        Raises:
            ConceptImageUnavailable: the call failed or returned no image.
        """
        start_time = time.time()
        try:
            response = await self._client.aio.models.generate_content(
                model=self.model,
                contents=self.build_prompt(theme),
                config=self._generation_config(),
            )
        except Exception as e:
            raise ConceptImageUnavailable(
                f"Gemini image request failed: {e}", model=self.model, cause=e
            ) from e

        image = extract_inline_image(response)
        if image is None:
            raise ConceptImageUnavailable("Gemini returned no inline image", model=self.model)
        logger.info(
            f"Concept image for '{theme}' generated in {time.time() - start_time:.1f}s "
            f"({image.mime_type})"
        )
        return image
