"""Concept images that condition world requests."""

from .gemini_image import GeminiConceptImageSource, extract_inline_image

__all__ = ["GeminiConceptImageSource", "extract_inline_image"]
