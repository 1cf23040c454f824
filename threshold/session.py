"""
Session state for the experience.

``SessionStore`` is a plain state container owned by whoever runs the
experience; nothing here is module-global. ``ExperienceSession`` wires the
orchestrator and the presentation selector to it: the portal trigger starts
an attempt, progress lands in ``status_message``, and the finished world is
handed over together with its presentation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from threshold.error_handling.errors import AttemptCancelled, AttemptInProgress, GenerationFailed
from threshold.presentation.selector import Presentation, PresentationSelector
from threshold.world_generation.models import NormalizedWorldAsset, ProgressUpdate
from threshold.world_generation.orchestrator import GenerationOrchestrator
from threshold.world_generation.state import StateTransition

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    LOBBY = "lobby"
    STAGING = "staging"
    GENERATING = "generating"
    EXPLORING = "exploring"
    ERROR = "error"


@dataclass(frozen=True)
class SessionEvent:
    kind: str
    phase: SessionPhase
    message: str = ""


SessionListener = Callable[[SessionEvent], None]


@dataclass
class SessionStore:
    """Explicit, injectable state container for one user session."""

    phase: SessionPhase = SessionPhase.LOBBY
    status_message: str = ""
    error_message: Optional[str] = None
    recovery_action: Optional[str] = None
    current_world: Optional[NormalizedWorldAsset] = None
    presentation: Optional[Presentation] = None
    history: List[NormalizedWorldAsset] = field(default_factory=list)
    _listeners: List[SessionListener] = field(default_factory=list, repr=False)

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, kind: str, message: str = "") -> None:
        event = SessionEvent(kind, self.phase, message)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.warning("Session listener raised", exc_info=True)

    def set_phase(self, phase: SessionPhase, message: str = "") -> None:
        self.phase = phase
        self.status_message = message
        if phase is not SessionPhase.ERROR:
            self.error_message = None
            self.recovery_action = None
        self._emit("phase", message)

    def set_status(self, message: str) -> None:
        self.status_message = message
        self._emit("status", message)

    def set_error(self, message: str, recovery_action: str) -> None:
        self.error_message = message
        self.recovery_action = recovery_action
        self.phase = SessionPhase.ERROR
        self.status_message = message
        self._emit("error", message)

    def show_world(self, world: NormalizedWorldAsset, presentation: Presentation) -> None:
        """Replace the current world, releasing the superseded presentation."""
        self.clear_world()
        self.current_world = world
        self.presentation = presentation
        self.history.append(world)
        self.set_phase(SessionPhase.EXPLORING, presentation.notice or "")

    def clear_world(self) -> None:
        if self.presentation is not None:
            self.presentation.release()
        self.presentation = None
        self.current_world = None


class ExperienceSession:
    """Connects the portal trigger to the acquisition pipeline."""

    def __init__(
        self,
        store: SessionStore,
        orchestrator: GenerationOrchestrator,
        selector: PresentationSelector,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.selector = selector
        self.last_theme: Optional[str] = None
        self._epoch = 0

    @property
    def is_busy(self) -> bool:
        return self.orchestrator.is_busy

    def enter_staging(self) -> None:
        if self.store.phase is SessionPhase.LOBBY:
            self.store.set_phase(SessionPhase.STAGING)

    def _on_progress(self, update: ProgressUpdate) -> None:
        self.store.set_status(update.message)

    def _on_transition(self, event: StateTransition) -> None:
        if event.message:
            self.store.set_status(event.message)

    async def enter_portal(self, theme: Optional[str] = None) -> Optional[Presentation]:
        """
        Start an attempt. Repeated triggers while one is running are ignored.

        Returns the committed presentation, or None when the attempt was
        ignored, cancelled or failed (the store then carries the error).
        """
        if self.is_busy:
            logger.debug("Portal trigger ignored: attempt already running")
            return None

        epoch = self._epoch
        theme = theme or self.orchestrator.pick_theme()
        self.last_theme = theme
        self.store.set_phase(SessionPhase.GENERATING, f"Opening a portal to {theme}...")

        try:
            world = await self.orchestrator.generate(
                theme,
                on_progress=self._on_progress,
                on_transition=self._on_transition,
            )
        except (AttemptCancelled, AttemptInProgress) as e:
            logger.info(f"Attempt discarded: {e.message}")
            return None
        except GenerationFailed as e:
            if epoch == self._epoch:
                self.store.set_error(e.user_message, e.recovery_action)
            return None

        if epoch != self._epoch:
            logger.info(f"Discarding world {world.id}: session returned to staging")
            return None

        presentation = await self.selector.select(world)
        if epoch != self._epoch:
            presentation.release()
            return None

        self.store.show_world(world, presentation)
        return presentation

    def return_to_staging(self) -> None:
        """Abort any running attempt and release the current world."""
        self._epoch += 1
        self.orchestrator.cancel()
        self.store.clear_world()
        self.store.set_phase(SessionPhase.STAGING)

    async def retry(self) -> Optional[Presentation]:
        """Fresh attempt after a failure, with the same theme."""
        if self.store.phase is not SessionPhase.ERROR:
            return None
        return await self.enter_portal(self.last_theme)
