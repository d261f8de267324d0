"""
Caller-facing analysis surface: ``is_running``, ``progress`` and
``start_analysis`` per dossier, kept in a registry so HTTP pollers see the
same tracker the background run updates.
"""
from __future__ import annotations

import asyncio
from typing import Any, Sequence

from app.analysis.coordinator import AnalysisCoordinator
from app.analysis.progress import ProgressTracker
from app.analysis.schema import AnalysisContext


class AnalysisSession:
    def __init__(self, dossier_id: str, coordinator: AnalysisCoordinator):
        self.dossier_id = str(dossier_id)
        self._coordinator = coordinator
        self.tracker = ProgressTracker()
        self.notifications: list[dict[str, Any]] = []

    @property
    def is_running(self) -> bool:
        return self._coordinator.is_running(self.dossier_id)

    @property
    def progress(self) -> dict[str, Any]:
        return self.tracker.state.to_dict()

    async def start_analysis(
        self, documents: Sequence[Any], context: AnalysisContext | None = None
    ) -> bool:
        if not self.is_running:
            self.notifications.clear()
        return await self._coordinator.start_analysis(
            self.dossier_id, documents, context,
            tracker=self.tracker, notifications=self.notifications,
        )

    def launch(
        self, documents: Sequence[Any], context: AnalysisContext | None = None
    ) -> asyncio.Task | None:
        """Start the run in the background; None when one is already in flight."""
        if self.is_running:
            return None
        self.notifications.clear()
        return self._coordinator.schedule_analysis(
            self.dossier_id, documents, context,
            tracker=self.tracker, notifications=self.notifications,
        )

    def snapshot(self) -> dict[str, Any]:
        return {
            "dossier_id": self.dossier_id,
            "is_running": self.is_running,
            "progress": self.progress,
            "notifications": list(self.notifications),
        }


class SessionRegistry:
    """One AnalysisSession per dossier id for the lifetime of the process."""

    def __init__(self, coordinator: AnalysisCoordinator):
        self.coordinator = coordinator
        self._sessions: dict[str, AnalysisSession] = {}

    def get(self, dossier_id: str) -> AnalysisSession:
        key = str(dossier_id)
        session = self._sessions.get(key)
        if session is None:
            session = AnalysisSession(key, self.coordinator)
            self._sessions[key] = session
        return session

    def __contains__(self, dossier_id: object) -> bool:
        return str(dossier_id) in self._sessions
