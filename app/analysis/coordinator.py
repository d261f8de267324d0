"""
Analysis coordinator.

Sequences one dossier analysis:

1. Take the per-dossier run guard (synchronously, before any await).
2. Set status ``analyzing``.
3. Classify the documents that have no type yet, one at a time.
4. Fetch content and run the single joint extraction.
5. Reconcile charges, flatten, persist with status ``pending_validation``.

Per-document classification failures are skipped. Anything failing from
extraction onwards ends the run: status ``error``, tracker ``error``.
The guard is released in every case.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from app.analysis import db as db_handler
from app.analysis.classification import (
    ClassificationOutcome,
    classify_document,
    collect_covered_diagnostics,
)
from app.analysis.config import AnalysisConfig
from app.analysis.context import AnalysisRunContext
from app.analysis.errors import PersistenceError, record_document_error
from app.analysis.extraction import deduplicate_documents, extract_dossier
from app.analysis.flatten import build_dossier_updates
from app.analysis.progress import Phase, ProgressTracker
from app.analysis.reconciliation import inputs_from_extraction, reconcile_charges
from app.analysis.schema import AnalysisContext
from app.services.ai_provider import DocumentAIProvider, ExtractionDocument
from app.services.storage import DocumentStorage

logger = logging.getLogger(__name__)


class RunGuard:
    """In-process set of dossier ids with a run in flight.

    ``try_acquire`` checks and inserts without awaiting, so on one event loop
    a second caller always sees the first one's entry.
    """

    def __init__(self) -> None:
        self._held: set[str] = set()

    def try_acquire(self, key: str) -> bool:
        if key in self._held:
            return False
        self._held.add(key)
        return True

    def release(self, key: str) -> None:
        self._held.discard(key)

    def is_held(self, key: str) -> bool:
        return key in self._held

    def __len__(self) -> int:
        return len(self._held)


class AnalysisCoordinator:
    def __init__(
        self,
        *,
        session_factory,
        provider: DocumentAIProvider,
        storage: DocumentStorage,
        config: AnalysisConfig | None = None,
        guard: RunGuard | None = None,
    ):
        self.session_factory = session_factory
        self.provider = provider
        self.storage = storage
        self.config = config or AnalysisConfig()
        self.guard = guard or RunGuard()
        self._tasks: set[asyncio.Task] = set()

    def is_running(self, dossier_id: str) -> bool:
        return self.guard.is_held(str(dossier_id))

    # ------------------------------------------------------------ entry points
    async def start_analysis(
        self,
        dossier_id: str,
        documents: Sequence[Any],
        context: AnalysisContext | None = None,
        *,
        tracker: ProgressTracker | None = None,
        notifications: list | None = None,
    ) -> bool:
        """Run the whole analysis; False when skipped (duplicate call, no documents) or failed."""
        if not dossier_id or not documents:
            return False
        key = str(dossier_id)
        if not self.guard.try_acquire(key):
            logger.warning("[%s] analysis already running, skipping duplicate", key)
            return False
        return await self._run_guarded(key, documents, context, tracker, notifications)

    def schedule_analysis(
        self,
        dossier_id: str,
        documents: Sequence[Any],
        context: AnalysisContext | None = None,
        *,
        tracker: ProgressTracker | None = None,
        notifications: list | None = None,
    ) -> asyncio.Task | None:
        """Take the guard now and run in a background task; None when not started."""
        if not dossier_id or not documents:
            return None
        key = str(dossier_id)
        if not self.guard.try_acquire(key):
            logger.warning("[%s] analysis already running, not scheduling", key)
            return None
        task = asyncio.create_task(
            self._run_guarded(key, documents, context, tracker, notifications),
            name=f"analysis-{key}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_guarded(
        self,
        dossier_id: str,
        documents: Sequence[Any],
        context: AnalysisContext | None,
        tracker: ProgressTracker | None,
        notifications: list | None,
    ) -> bool:
        try:
            tracker = tracker or ProgressTracker()
            if tracker.phase is not Phase.IDLE:
                tracker.reset()
            async with self.session_factory() as db:
                ctx = AnalysisRunContext(
                    db=db,
                    dossier_id=dossier_id,
                    provider=self.provider,
                    storage=self.storage,
                    config=self.config,
                    tracker=tracker,
                )
                if notifications is not None:
                    ctx.notifications = notifications
                return await self._run(ctx, documents, context or AnalysisContext())
        finally:
            self.guard.release(dossier_id)

    # -------------------------------------------------------------- pipeline
    async def _run(
        self,
        ctx: AnalysisRunContext,
        documents: Sequence[Any],
        context: AnalysisContext,
    ) -> bool:
        dossier_id = ctx.dossier_id
        logger.info("[%s] analysis started: %s document(s)", dossier_id, len(documents))
        if not await db_handler.update_dossier(ctx.db, dossier_id, {"status": "analyzing"}):
            logger.warning("[%s] could not set status analyzing", dossier_id)

        try:
            outcomes = await self._classify_pending(ctx, documents)

            extraction_docs, covered = await self._prepare_extraction(ctx, documents, outcomes)
            ctx.tracker.start_extraction(len(extraction_docs))
            if covered:
                logger.info("[%s] covered diagnostics: %s", dossier_id, ", ".join(covered))
            extraction = await extract_dossier(ctx, extraction_docs, context, covered_diagnostics=covered)

            reconciliation = reconcile_charges(inputs_from_extraction(extraction), ctx.config)
            logger.info(
                "[%s] charges: estimated=%s ai=%s final=%s",
                dossier_id, reconciliation.estimated_charge, reconciliation.ai_charge,
                reconciliation.final_charge,
            )
            if reconciliation.has_discrepancy:
                logger.warning(
                    "[%s] charges discrepancy %s%% (estimated=%s, ai=%s)",
                    dossier_id, reconciliation.discrepancy_pct,
                    reconciliation.estimated_charge, reconciliation.ai_charge,
                )
            for alert in reconciliation.alerts:
                logger.warning("[%s] %s", dossier_id, alert)
            extraction.add_alerts(reconciliation.alerts)

            updates = build_dossier_updates(extraction, reconciliation, context)
            if not await db_handler.update_dossier(ctx.db, dossier_id, updates):
                raise PersistenceError("Erreur sauvegarde des données extraites")

            ctx.tracker.finish()
            ctx.notify("success", "Analyse terminée avec succès")
            logger.info("[%s] analysis done", dossier_id)
            return True
        except Exception as exc:
            logger.error("[%s] analysis failed: %s", dossier_id, exc, exc_info=True)
            ctx.tracker.fail(str(exc))
            if not await db_handler.update_dossier(ctx.db, dossier_id, {"status": "error"}):
                logger.error("[%s] could not set status error", dossier_id)
            ctx.notify("error", "Erreur lors de l'analyse", detail=str(exc)[:200])
            return False

    async def _classify_pending(
        self, ctx: AnalysisRunContext, documents: Sequence[Any]
    ) -> dict[str, ClassificationOutcome]:
        """Classify untyped documents sequentially (rate limit); returns outcomes by document id."""
        pending = [d for d in documents if not d.document_type]
        ctx.tracker.start_classification(len(pending), len(documents))
        outcomes: dict[str, ClassificationOutcome] = {}
        for i, doc in enumerate(pending, start=1):
            ctx.tracker.classification_step(i, len(pending), doc.original_filename)
            outcome = await classify_document(ctx, doc)
            outcomes[outcome.document_id] = outcome
        if ctx.failed_documents:
            logger.warning(
                "[%s] %s document(s) left unclassified", ctx.dossier_id, len(ctx.failed_documents)
            )
        return outcomes

    async def _prepare_extraction(
        self,
        ctx: AnalysisRunContext,
        documents: Sequence[Any],
        outcomes: dict[str, ClassificationOutcome],
    ) -> tuple[list[ExtractionDocument], list[str]]:
        """Content + final type per unique document, and the diagnostics the classifier saw."""
        unique, _ = deduplicate_documents(documents)
        prepared: list[ExtractionDocument] = []
        raw_payloads: list[dict | None] = []
        for doc in unique:
            outcome = outcomes.get(str(doc.id))
            document_type = doc.document_type
            normalized_filename = getattr(doc, "normalized_filename", None)
            content = None
            if outcome is not None:
                raw_payloads.append(outcome.raw)
                document_type = outcome.document_type or document_type
                normalized_filename = outcome.normalized_filename or normalized_filename
                content = outcome.content
            else:
                raw_payloads.append(getattr(doc, "ai_classification_raw", None))
            if content is None:
                try:
                    content = await ctx.storage.download(doc.storage_path)
                except Exception as exc:
                    await record_document_error(ctx, str(doc.id), doc.original_filename, exc, stage="download")
                    continue
            prepared.append(ExtractionDocument(
                content=content,
                original_filename=doc.original_filename,
                document_type=document_type or "other",
                normalized_filename=normalized_filename,
                mime_type=getattr(doc, "mime_type", None) or "application/pdf",
            ))
        return prepared, collect_covered_diagnostics(raw_payloads)
