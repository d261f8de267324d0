"""
Progress state machine exposed to callers while a dossier is analysed.

    idle -> classification -> extraction -> done
      \\__________\\______________\\______-> error

Transitions are pushed synchronously to every subscribed observer. A finished
machine (done / error) only leaves its terminal state through :meth:`reset`.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable

from app.analysis.errors import InvalidTransitionError

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    CLASSIFICATION = "classification"
    EXTRACTION = "extraction"
    DONE = "done"
    ERROR = "error"


_ALLOWED: dict[Phase, set[Phase]] = {
    Phase.IDLE: {Phase.CLASSIFICATION, Phase.ERROR},
    Phase.CLASSIFICATION: {Phase.CLASSIFICATION, Phase.EXTRACTION, Phase.ERROR},
    Phase.EXTRACTION: {Phase.DONE, Phase.ERROR},
    Phase.DONE: set(),
    Phase.ERROR: set(),
}


@dataclass(frozen=True)
class Progress:
    phase: Phase = Phase.IDLE
    current: int = 0
    total: int = 0
    message: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["phase"] = self.phase.value
        return data


Observer = Callable[[Progress], None]


class ProgressTracker:
    def __init__(self) -> None:
        self._state = Progress()
        self._observers: list[Observer] = []

    @property
    def state(self) -> Progress:
        return self._state

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def is_terminal(self) -> bool:
        return self._state.phase in (Phase.DONE, Phase.ERROR)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register *observer*; returns a callable that unsubscribes it."""
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def _set(self, new: Progress) -> None:
        if new.phase not in _ALLOWED[self._state.phase]:
            raise InvalidTransitionError(
                f"Cannot move from {self._state.phase.value} to {new.phase.value}"
            )
        self._state = new
        logger.debug("progress %s %s/%s: %s", new.phase.value, new.current, new.total, new.message)
        for observer in list(self._observers):
            try:
                observer(new)
            except Exception as exc:
                logger.warning("progress observer failed: %s", exc, exc_info=True)

    def reset(self) -> None:
        """Back to idle for a new run (observers are kept)."""
        self._state = Progress()
        for observer in list(self._observers):
            try:
                observer(self._state)
            except Exception as exc:
                logger.warning("progress observer failed: %s", exc, exc_info=True)

    # ---------------------------------------------------------------- phases
    def start_classification(self, pending: int, document_count: int) -> None:
        """Enter classification. With nothing pending the counters read total/total."""
        if pending > 0:
            self._set(Progress(
                Phase.CLASSIFICATION, 0, pending,
                f"Classification de {pending} document(s) restant(s)...",
            ))
        else:
            self._set(Progress(
                Phase.CLASSIFICATION, document_count, document_count,
                "Tous les documents sont déjà classifiés",
            ))

    def classification_step(self, current: int, total: int, filename: str) -> None:
        self._set(Progress(Phase.CLASSIFICATION, current, total, f"Classification: {filename}"))

    def start_extraction(self, document_count: int) -> None:
        self._set(Progress(
            Phase.EXTRACTION, 0, 1,
            f"Extraction des données ({document_count} documents)...",
        ))

    def finish(self) -> None:
        self._set(Progress(Phase.DONE, 1, 1, "Analyse terminée"))

    def fail(self, message: str) -> None:
        """Move to error from any non-terminal state.

        ``done`` is terminal: nothing runs after :meth:`finish`, so a late
        failure there (or a second failure) is logged and dropped.
        """
        if self.is_terminal:
            logger.warning("progress already terminal (%s); dropping error: %s", self.phase.value, message)
            return
        self._set(Progress(Phase.ERROR, 0, 0, f"Erreur: {message}"))
