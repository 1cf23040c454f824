"""
Presentation mode selection.

Given a resolved world, pick the highest-fidelity mode whose asset can
actually be fetched: SPLAT, then MESH, then PANORAMA, then FLAT_IMAGE.
Candidates without a URL are skipped without any network call. If every
populated candidate fails, the selector still returns a renderable
degraded presentation, so callers never stay in a loading state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from threshold.asset_fetch.fetcher import BinaryAssetFetcher, FetchedAsset
from threshold.error_handling.errors import PipelineError
from threshold.error_handling.logging import log_pipeline_error
from threshold.world_generation.models import AssetCategory, NormalizedWorldAsset

logger = logging.getLogger(__name__)

FLAT_FALLBACK_NOTICE = "DIMENSION UNSTABLE (2D FALLBACK)"
NO_CONTENT_NOTICE = "LINK UNSTABLE"


class PresentationMode(str, Enum):
    SPLAT = "splat"
    MESH = "mesh"
    PANORAMA = "panorama"
    FLAT_IMAGE = "flat_image"
    UNSTABLE = "unstable"


MODE_FOR_CATEGORY = {
    AssetCategory.SPLAT: PresentationMode.SPLAT,
    AssetCategory.MESH: PresentationMode.MESH,
    AssetCategory.PANORAMA: PresentationMode.PANORAMA,
    AssetCategory.PREVIEW_IMAGE: PresentationMode.FLAT_IMAGE,
}


class Presentation:
    """
    The mode handed to the renderer plus the bytes backing it.

    The presentation owns ``fetched``; ``release`` drops it when the world
    is discarded or replaced. Degraded presentations may carry a URL but no
    bytes.
    """

    def __init__(
        self,
        mode: PresentationMode,
        asset: NormalizedWorldAsset,
        fetched: Optional[FetchedAsset] = None,
        source_url: Optional[str] = None,
        degraded: bool = False,
        notice: Optional[str] = None,
    ):
        self.mode = mode
        self.asset = asset
        self.fetched = fetched
        self.source_url = source_url
        self.degraded = degraded
        self.notice = notice
        self.released = False

    @property
    def data(self) -> Optional[bytes]:
        return self.fetched.data if self.fetched is not None else None

    def release(self) -> None:
        if self.released:
            return
        size = self.fetched.size if self.fetched is not None else 0
        self.fetched = None
        self.released = True
        logger.debug(f"Released {self.mode.value} presentation for {self.asset.id} ({size} bytes)")

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "source_url": self.source_url,
            "degraded": self.degraded,
            "notice": self.notice,
            "bytes": self.fetched.size if self.fetched is not None else 0,
            "fetched_via": self.fetched.path_name if self.fetched is not None else None,
        }

    def __repr__(self) -> str:
        return f"Presentation(mode={self.mode.value}, degraded={self.degraded}, released={self.released})"


@dataclass
class CandidateFailure:
    mode: PresentationMode
    url: str
    error: PipelineError


class PresentationSelector:
    """Chooses and fetches the presentation for a world."""

    def __init__(
        self,
        fetcher: BinaryAssetFetcher,
        category_priority: Optional[Sequence[str]] = None,
    ):
        self.fetcher = fetcher
        order = [AssetCategory(name) for name in (category_priority or [c.value for c in AssetCategory])]
        order.extend(category for category in AssetCategory if category not in order)
        self.category_order: List[AssetCategory] = order

    async def select(self, asset: NormalizedWorldAsset) -> Presentation:
        failures: List[CandidateFailure] = []
        for category in self.category_order:
            url = asset.url_for(category)
            if not url:
                continue
            mode = MODE_FOR_CATEGORY[category]
            try:
                fetched = await self.fetcher.fetch_asset(url)
            except PipelineError as e:
                failures.append(CandidateFailure(mode, url, e))
                log_pipeline_error(
                    e,
                    f"{mode.value} candidate unavailable, trying next mode",
                    logger=logger,
                    level=logging.WARNING,
                )
                continue
            logger.info(f"Presenting {asset.id} as {mode.value}")
            return Presentation(mode, asset, fetched=fetched, source_url=url, degraded=bool(failures))

        return self._degraded(asset, failures)

    @staticmethod
    def _degraded(asset: NormalizedWorldAsset, failures: List[CandidateFailure]) -> Presentation:
        if asset.preview_image_url:
            logger.warning(
                f"No candidate could be fetched for {asset.id}; showing the flat preview by reference"
            )
            return Presentation(
                PresentationMode.FLAT_IMAGE,
                asset,
                source_url=asset.preview_image_url,
                degraded=True,
                notice=FLAT_FALLBACK_NOTICE,
            )
        logger.warning(f"World {asset.id} has no presentable content ({len(failures)} failed candidates)")
        return Presentation(PresentationMode.UNSTABLE, asset, degraded=True, notice=NO_CONTENT_NOTICE)
