"""
Locate asset references inside a completion payload.

For every category the resolver first reads the documented locations
(``known_paths``), then falls back to a depth-first search for any string
that looks like a reference and contains one of the category's signatures.
The known paths are best-effort guesses at a schema the service does not
guarantee; the generic search is what keeps resolution working when the
shape drifts.

The resolver never raises. An asset with no populated category is a data
condition for the orchestrator to handle.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Set

from threshold.config import ResolutionConfig
from threshold.world_generation.models import AssetCategory, NormalizedWorldAsset
from threshold.world_generation.payload import JsonValue, find_string, get_string

logger = logging.getLogger(__name__)

REFERENCE_PREFIXES = ("http://", "https://", "data:", "blob:")
ID_PATHS = ("id", "world_id", "world.id")


def looks_like_reference(value: str) -> bool:
    """Accept URLs and inline data, not prose that happens to mention ``.ply``."""
    lowered = value.lower()
    return lowered.startswith(REFERENCE_PREFIXES) or "://" in lowered


def _matches_signature(value: str, signatures: Sequence[str]) -> bool:
    if not looks_like_reference(value):
        return False
    lowered = value.lower()
    if lowered.startswith("data:"):
        return False
    return any(signature.lower() in lowered for signature in signatures)


class AssetResolver:
    """
    Turns a raw payload into a ``NormalizedWorldAsset``.

    Categories are resolved in the configured priority order and a string
    already chosen for one category is not reused for a later one.
    """

    def __init__(self, config: Optional[ResolutionConfig] = None):
        self.config = config or ResolutionConfig()

    def _category_order(self) -> List[AssetCategory]:
        order = [AssetCategory(name) for name in self.config.category_priority]
        order.extend(category for category in AssetCategory if category not in order)
        return order

    def _known_path_lookup(self, payload: JsonValue, category: AssetCategory, taken: Set[str]) -> Optional[str]:
        for path in self.config.known_paths.get(category.value, []):
            value = get_string(payload, path)
            if value and value not in taken and looks_like_reference(value):
                logger.debug(f"{category.value} found at known path '{path}'")
                return value
        return None

    def _generic_search(self, payload: JsonValue, category: AssetCategory, taken: Set[str]) -> Optional[str]:
        signatures = self.config.signatures.get(category.value, [])
        if not signatures:
            return None
        value = find_string(payload, lambda s: _matches_signature(s, signatures), exclude=taken)
        if value:
            logger.debug(f"{category.value} found by generic search")
        return value

    def resolve_category(self, payload: JsonValue, category: AssetCategory, taken: Set[str]) -> Optional[str]:
        """Known path first, generic search second."""
        return self._known_path_lookup(payload, category, taken) or self._generic_search(payload, category, taken)

    def _external_viewer(self, payload: JsonValue) -> Optional[str]:
        for path in self.config.external_viewer_paths:
            value = get_string(payload, path)
            if value and value.lower().startswith(("http://", "https://")):
                return value
        return None

    @staticmethod
    def _asset_id(payload: JsonValue, fallback_id: str) -> str:
        for path in ID_PATHS:
            value = get_string(payload, path)
            if value:
                return value
        return fallback_id

    def resolve(self, payload: JsonValue, asset_id: str, theme: str) -> NormalizedWorldAsset:
        found: Dict[AssetCategory, Optional[str]] = {}
        taken: Set[str] = set()
        for category in self._category_order():
            value = self.resolve_category(payload, category, taken)
            found[category] = value
            if value:
                taken.add(value)

        asset = NormalizedWorldAsset(
            id=self._asset_id(payload, asset_id),
            theme=theme,
            splat_url=found.get(AssetCategory.SPLAT),
            collider_mesh_url=found.get(AssetCategory.MESH),
            panorama_url=found.get(AssetCategory.PANORAMA),
            preview_image_url=found.get(AssetCategory.PREVIEW_IMAGE),
            external_viewer_url=self._external_viewer(payload),
        )
        populated = [category.value for category, value in found.items() if value]
        logger.info(f"Resolved world {asset.id}: {populated or 'no assets'}")
        return asset
