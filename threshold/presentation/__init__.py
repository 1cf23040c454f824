"""Presentation mode selection for resolved worlds."""

from .selector import (
    FLAT_FALLBACK_NOTICE,
    NO_CONTENT_NOTICE,
    Presentation,
    PresentationMode,
    PresentationSelector,
)

__all__ = [
    "FLAT_FALLBACK_NOTICE",
    "NO_CONTENT_NOTICE",
    "Presentation",
    "PresentationMode",
    "PresentationSelector",
]
