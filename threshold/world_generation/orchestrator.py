"""
Generation orchestrator.

Drives one attempt through ``Idle -> Submitting -> Polling`` and on to
``Succeeded`` or ``Failed``, passing through ``Degrading`` when polling fails
or resolves to nothing usable. Degrading re-submits once with a text-only
prompt; the fallback depth is capped by ``fallback.max_depth`` (0 or 1).

Only one attempt runs at a time. A second ``generate`` call while an
attempt is active raises ``AttemptInProgress``. ``cancel`` marks the active
attempt so that its in-flight calls finish but their results are discarded.
"""

from __future__ import annotations

import dataclasses
import logging
import random
from typing import Optional, Protocol

from threshold.config import PipelineConfig
from threshold.error_handling.errors import (
    AttemptCancelled,
    AttemptInProgress,
    GenerationFailed,
    GenerationTimeout,
    PipelineError,
    PollFailure,
    ResolutionEmpty,
    StartFailure,
)
from threshold.error_handling.logging import log_pipeline_error
from threshold.tracing.correlation import bind_attempt_id, new_attempt_id
from threshold.world_generation.asset_resolver import AssetResolver
from threshold.world_generation.client import ProgressSink, WorldGenerationClient
from threshold.world_generation.models import GenerationRequest, NormalizedWorldAsset, PreparedImage
from threshold.world_generation.state import (
    AttemptStateMachine,
    GenerationState,
    TransitionListener,
)

logger = logging.getLogger(__name__)

DEGRADABLE_ERRORS = (PollFailure, GenerationTimeout, ResolutionEmpty)


class ConceptImageSource(Protocol):
    async def generate(self, theme: str) -> PreparedImage:
        ...


class GenerationOrchestrator:
    """
    Top-level state machine over one generation attempt.

    Example:
        orchestrator = GenerationOrchestrator(client, AssetResolver(config.resolution), config)
        world = await orchestrator.generate(on_progress=lambda u: print(u.message))
    """

    def __init__(
        self,
        client: WorldGenerationClient,
        asset_resolver: AssetResolver,
        config: Optional[PipelineConfig] = None,
        concept_source: Optional[ConceptImageSource] = None,
        rng: Optional[random.Random] = None,
    ):
        self.client = client
        self.asset_resolver = asset_resolver
        self.config = config or PipelineConfig()
        self.concept_source = concept_source
        self._rng = rng or random.Random()
        self._active_attempt: Optional[str] = None
        self._cancelled_attempt: Optional[str] = None

    @property
    def active_attempt_id(self) -> Optional[str]:
        return self._active_attempt

    @property
    def is_busy(self) -> bool:
        return self._active_attempt is not None

    def pick_theme(self) -> str:
        themes = self.config.themes
        if not themes:
            raise ValueError("No themes configured")
        return self._rng.choice(themes)

    def cancel(self) -> bool:
        """Discard the active attempt's results. Returns False when idle."""
        if self._active_attempt is None:
            return False
        self._cancelled_attempt = self._active_attempt
        logger.info(f"Attempt {self._active_attempt} cancelled")
        return True

    def _is_cancelled(self, attempt_id: str) -> bool:
        return self._cancelled_attempt == attempt_id

    def _check_cancelled(self, attempt_id: str) -> None:
        if self._is_cancelled(attempt_id):
            raise AttemptCancelled(attempt_id)

    async def generate(
        self,
        theme: Optional[str] = None,
        on_progress: Optional[ProgressSink] = None,
        on_transition: Optional[TransitionListener] = None,
    ) -> NormalizedWorldAsset:
        """
        Run one attempt and return a usable world.

        Raises:
            AttemptInProgress: another attempt is still active.
            AttemptCancelled: ``cancel`` was called during the attempt.
            GenerationFailed: the attempt failed after the fallback policy.
        """
        if self._active_attempt is not None:
            raise AttemptInProgress(self._active_attempt)

        attempt_id = new_attempt_id()
        self._active_attempt = attempt_id
        try:
            with bind_attempt_id(attempt_id):
                return await self._run(attempt_id, theme or self.pick_theme(), on_progress, on_transition)
        finally:
            self._active_attempt = None
            if self._cancelled_attempt == attempt_id:
                self._cancelled_attempt = None

    async def _prepare_request(self, theme: str) -> GenerationRequest:
        if self.concept_source is None or not self.config.concept_image.enabled:
            return GenerationRequest(theme)
        try:
            image = await self.concept_source.generate(theme)
        except Exception as e:
            logger.warning(f"Concept image unavailable, using a text prompt: {e}")
            return GenerationRequest(theme)
        return GenerationRequest(theme, prepared_image=image)

    def _can_retry(self, error: PipelineError, depth: int) -> bool:
        fallback = self.config.fallback
        if not fallback.text_prompt_retry or depth >= fallback.max_depth:
            return False
        if isinstance(error, GenerationTimeout) and not fallback.retry_on_timeout:
            return False
        return True

    def _fail(self, error: PipelineError, attempt_id: str, fallback_used: bool) -> GenerationFailed:
        failure = GenerationFailed(error, attempt_id=attempt_id, fallback_used=fallback_used)
        log_pipeline_error(failure, "World generation failed", logger=logger)
        return failure

    async def _run(
        self,
        attempt_id: str,
        theme: str,
        on_progress: Optional[ProgressSink],
        on_transition: Optional[TransitionListener],
    ) -> NormalizedWorldAsset:
        machine = AttemptStateMachine(attempt_id, on_transition)
        request = await self._prepare_request(theme)
        concept_image = request.prepared_image
        self._check_cancelled(attempt_id)
        depth = 0

        while True:
            machine.transition(GenerationState.SUBMITTING, f"Opening a portal to {theme}...")
            try:
                operation = await self.client.start_generation(request)
            except StartFailure as e:
                self._check_cancelled(attempt_id)
                machine.transition(GenerationState.FAILED, e.user_message)
                raise self._fail(e, attempt_id, fallback_used=depth > 0) from e
            self._check_cancelled(attempt_id)

            machine.transition(GenerationState.POLLING, "Materializing world...")
            try:
                payload = await self.client.poll_operation(
                    operation,
                    on_progress=on_progress,
                    is_cancelled=lambda: self._is_cancelled(attempt_id),
                )
                self._check_cancelled(attempt_id)
                world = self.asset_resolver.resolve(payload, operation.id, theme)
                if not world.preview_image_url and concept_image is not None:
                    world = dataclasses.replace(world, preview_image_url=concept_image.data_uri)
                if not world.is_usable:
                    raise ResolutionEmpty(
                        f"Operation {operation.id} produced no usable asset",
                        operation_id=operation.id,
                    )
            except DEGRADABLE_ERRORS as e:
                self._check_cancelled(attempt_id)
                machine.transition(GenerationState.DEGRADING, e.user_message)
                if self._can_retry(e, depth):
                    logger.warning(f"Retrying with a text-only prompt after: {e.message}")
                    request = request.text_only()
                    depth += 1
                    continue
                machine.transition(GenerationState.FAILED, e.user_message)
                raise self._fail(e, attempt_id, fallback_used=depth > 0) from e

            machine.transition(GenerationState.SUCCEEDED, f"World {world.id} ready")
            return world
