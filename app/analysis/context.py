"""
Analysis run context.

Run-scoped state shared by classification and extraction: the DB session,
the AI and storage collaborators, the progress tracker and the list of
user-facing notifications produced while the run goes on.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.analysis.config import AnalysisConfig
from app.analysis.db import log_ai_call
from app.analysis.progress import ProgressTracker
from app.services.ai_provider import DocumentAIProvider
from app.services.storage import DocumentStorage

logger = logging.getLogger(__name__)


@dataclass
class AnalysisRunContext:
    """Holds run-scoped state for one dossier analysis (or one upload classification)."""

    db: AsyncSession
    dossier_id: str
    provider: DocumentAIProvider
    storage: DocumentStorage
    config: AnalysisConfig = field(default_factory=AnalysisConfig)
    tracker: ProgressTracker = field(default_factory=ProgressTracker)

    notifications: list[dict[str, Any]] = field(default_factory=list)
    document_results: dict[str, dict[str, Any]] = field(default_factory=dict)

    # ---------------------------------------------------------------- notify
    def notify(self, level: str, message: str, **extra: Any) -> None:
        """Queue a lightweight notification for the caller (toast-style)."""
        entry: dict[str, Any] = {"level": level, "message": message}
        entry.update(extra)
        self.notifications.append(entry)
        logger.debug("[%s] notify %s: %s", self.dossier_id, level, message[:120])

    # ------------------------------------------------- document bookkeeping
    def record_document_result(
        self,
        document_id: str,
        *,
        status: str,
        document_type: str | None = None,
        error: str | None = None,
    ) -> None:
        entry: dict[str, Any] = {"document_id": document_id, "status": status}
        if document_type is not None:
            entry["document_type"] = document_type
        if error is not None:
            entry["error"] = error
        self.document_results[document_id] = entry

    @property
    def failed_documents(self) -> list[str]:
        return [k for k, v in self.document_results.items() if v.get("status") == "failed"]

    # ------------------------------------------------------------ AI logging
    async def log_ai_call(
        self,
        prompt_type: str,
        model: str,
        started: float,
        *,
        response: Any = None,
        error: str | None = None,
    ) -> None:
        """Best-effort row in pv_ai_logs; *started* is a ``time.monotonic()`` value."""
        latency_ms = int((time.monotonic() - started) * 1000)
        await log_ai_call(
            self.db,
            self.dossier_id,
            model=model,
            prompt_type=prompt_type,
            latency_ms=latency_ms,
            response=response,
            error=error,
        )
