"""
Analysis error types and the per-document failure helper.

Run-terminal failures are exceptions caught once by the coordinator.
Per-document classification failures never raise: they go through
:func:`record_document_error`, which logs and queues a user notification.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from app.analysis.context import AnalysisRunContext

logger = logging.getLogger(__name__)


class AnalysisError(Exception):
    """Base class for failures that abort an analysis run."""


class ExtractionFailedError(AnalysisError):
    """The joint extraction call failed."""


class EmptyExtractionError(AnalysisError):
    """The extraction call returned nothing usable (empty object, non-object)."""


class PersistenceError(AnalysisError):
    """Writing the dossier update failed."""


class InvalidTransitionError(Exception):
    """A progress transition not allowed by the state machine."""


async def record_document_error(
    ctx: AnalysisRunContext,
    document_id: str,
    filename: str,
    error: Exception | str,
    *,
    stage: str = "classification",
) -> None:
    """Log a per-document failure and surface it as a lightweight notification.

    The document stays unclassified; other documents and the run continue.
    """
    err_str = str(error)
    logger.error(
        "[%s] %s failed for %s (%s): %s",
        ctx.dossier_id, stage, filename, document_id, err_str[:300],
    )
    ctx.record_document_result(document_id, status="failed", error=err_str[:500])
    label = "Classification échouée" if stage == "classification" else "Document illisible"
    ctx.notify(
        "error",
        f"{label} : {filename}",
        document_id=document_id,
        detail=err_str[:200],
    )
