"""Data model for one world generation attempt."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class AssetCategory(str, Enum):
    """Asset categories in descending fidelity order."""
    SPLAT = "splat"
    MESH = "mesh"
    PANORAMA = "panorama"
    PREVIEW_IMAGE = "preview_image"


@dataclass(frozen=True)
class PreparedImage:
    """Inline image data (base64) used to condition a generation request."""
    data_b64: str
    mime_type: str = "image/png"

    @property
    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.data_b64}"


@dataclass(frozen=True)
class GenerationRequest:
    theme: str
    prepared_image: Optional[PreparedImage] = None

    def __post_init__(self) -> None:
        if not self.theme or not self.theme.strip():
            raise ValueError("GenerationRequest.theme must be a non-empty string")

    @property
    def is_image_conditioned(self) -> bool:
        return self.prepared_image is not None

    def text_only(self) -> "GenerationRequest":
        """Same theme without the image reference."""
        return GenerationRequest(theme=self.theme)


class OperationState(str, Enum):
    PENDING = "pending"
    DONE_SUCCESS = "done_success"
    DONE_FAILURE = "done_failure"


class Operation:
    """
    Handle for a remote long-running generation job.

    Created only by a successful start call. The state moves from PENDING
    to one of the DONE states exactly once and never goes back.
    """

    def __init__(
        self,
        operation_id: str,
        deadline_seconds: float,
        created_at: Optional[float] = None,
    ):
        if not operation_id:
            raise ValueError("operation_id must be non-empty")
        self.id = operation_id
        self.deadline_seconds = deadline_seconds
        self.created_at = time.monotonic() if created_at is None else created_at
        self._state = OperationState.PENDING

    @property
    def state(self) -> OperationState:
        return self._state

    @property
    def done(self) -> bool:
        return self._state is not OperationState.PENDING

    def deadline_at(self) -> float:
        return self.created_at + self.deadline_seconds

    def mark_succeeded(self) -> None:
        self._transition(OperationState.DONE_SUCCESS)

    def mark_failed(self) -> None:
        self._transition(OperationState.DONE_FAILURE)

    def _transition(self, target: OperationState) -> None:
        if self._state is not OperationState.PENDING:
            raise ValueError(
                f"Operation {self.id} already {self._state.value}; cannot move to {target.value}"
            )
        self._state = target

    def __repr__(self) -> str:
        return f"Operation(id={self.id!r}, state={self._state.value})"


@dataclass(frozen=True)
class NormalizedWorldAsset:
    """Stable output of the pipeline. Only ``id`` and ``theme`` are required."""

    id: str
    theme: str
    splat_url: Optional[str] = None
    collider_mesh_url: Optional[str] = None
    panorama_url: Optional[str] = None
    preview_image_url: Optional[str] = None
    external_viewer_url: Optional[str] = None

    @property
    def is_usable(self) -> bool:
        return any((self.splat_url, self.panorama_url, self.preview_image_url))

    def url_for(self, category: AssetCategory) -> Optional[str]:
        return {
            AssetCategory.SPLAT: self.splat_url,
            AssetCategory.MESH: self.collider_mesh_url,
            AssetCategory.PANORAMA: self.panorama_url,
            AssetCategory.PREVIEW_IMAGE: self.preview_image_url,
        }[category]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ProgressUpdate:
    """Human-readable progress line with the elapsed poll time."""
    message: str
    elapsed_seconds: float = 0.0
    operation_id: Optional[str] = None
    poll_count: int = field(default=0, compare=False)

    def __str__(self) -> str:
        return self.message
