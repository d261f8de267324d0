"""
Per-document classification.

One file at a time: fetch bytes, ask the AI service for a category (retrying
rate-limited calls with backoff), derive sort rank and display filename,
write the result to the Document row. A failure only affects its document.
"""
from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from dataclasses import dataclass, field
from typing import Any, Iterable

from app.analysis import db as db_handler
from app.analysis.config import AnalysisConfig
from app.analysis.context import AnalysisRunContext
from app.analysis.errors import record_document_error
from app.services.ai_provider import AIServiceError, ClassificationResult, DocumentAIProvider
from app.services.coercion import to_iso_date
from app.services.prompts import DOCUMENT_TYPES
from app.services.storage import DocumentStorage

logger = logging.getLogger(__name__)

DEFAULT_SORT_ORDER = 50
COMBINED_SORT_ORDER = 10
COMBINED_LABEL = "DDT"

SORT_ORDER: dict[str, int] = {
    "reglement_copropriete": 1,
    "etat_descriptif_division": 2,
    "fiche_synthetique": 3,
    "pv_ag": 4,
    "appel_fonds": 5,
    "releve_charges": 6,
    "carnet_entretien": 7,
    "plan_pluriannuel": 8,
    "dtg": 9,
    "dpe": 10,
    "diagnostic_amiante": 11,
    "diagnostic_plomb": 12,
    "diagnostic_electricite": 13,
    "diagnostic_gaz": 14,
    "diagnostic_termites": 15,
    "diagnostic_erp": 16,
    "diagnostic_mesurage": 17,
    "audit_energetique": 18,
    "taxe_fonciere": 20,
    "bail": 21,
    "contrat_assurance": 22,
    "other": 99,
}

TYPE_LABELS: dict[str, str] = {
    "pv_ag": "PV_AG",
    "reglement_copropriete": "Reglement_Copropriete",
    "etat_descriptif_division": "Etat_Descriptif_Division",
    "appel_fonds": "Appel_Fonds",
    "releve_charges": "Releve_Charges",
    "carnet_entretien": "Carnet_Entretien",
    "dpe": "DPE",
    "diagnostic_amiante": "Diagnostic_Amiante",
    "diagnostic_plomb": "Diagnostic_Plomb",
    "diagnostic_termites": "Diagnostic_Termites",
    "diagnostic_electricite": "Diagnostic_Electricite",
    "diagnostic_gaz": "Diagnostic_Gaz",
    "diagnostic_erp": "ERP",
    "diagnostic_mesurage": "Mesurage_Carrez",
    "fiche_synthetique": "Fiche_Synthetique",
    "plan_pluriannuel": "Plan_Pluriannuel",
    "dtg": "DTG",
    "audit_energetique": "Audit_Energetique",
    "taxe_fonciere": "Taxe_Fonciere",
    "bail": "Bail",
    "contrat_assurance": "Contrat_Assurance",
    "other": "Autre",
}

# Diagnostic sub-types worth passing on to extraction; the classifier
# sometimes lists non-diagnostic types in diagnostics_couverts.
DIAGNOSTIC_TYPES = frozenset({
    "dpe",
    "diagnostic_amiante",
    "diagnostic_plomb",
    "diagnostic_termites",
    "diagnostic_electricite",
    "diagnostic_gaz",
    "diagnostic_erp",
    "diagnostic_mesurage",
    "audit_energetique",
    "dtg",
    "plan_pluriannuel",
})

_ENERGY_CERT_ID_RE = re.compile(r"^[A-Za-z0-9]+$")


@dataclass
class ClassificationOutcome:
    """What happened to one document; ``error`` is set when it stays unclassified."""

    document_id: str
    filename: str
    document_type: str | None = None
    normalized_filename: str | None = None
    result: ClassificationResult | None = None
    content: bytes | None = field(default=None, repr=False)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.document_type is not None

    @property
    def raw(self) -> dict[str, Any]:
        return self.result.raw if self.result else {}


# ---------------------------------------------------------------------------
# Rank / naming
# ---------------------------------------------------------------------------

def get_sort_order(document_type: str | None, is_combined: bool = False) -> int:
    if is_combined:
        return COMBINED_SORT_ORDER
    return SORT_ORDER.get(document_type or "", DEFAULT_SORT_ORDER)


def get_normalized_filename(
    document_type: str | None,
    document_date: Any,
    sort_order: int,
    is_combined: bool = False,
) -> str:
    """``{rank:02d}_{Label}[_{year}].pdf``; bundles are labelled DDT."""
    label = COMBINED_LABEL if is_combined else TYPE_LABELS.get(document_type or "", "Document")
    iso = to_iso_date(document_date)
    year = f"_{iso[:4]}" if iso else ""
    return f"{sort_order:02d}_{label}{year}.pdf"


def normalize_document_type(value: str | None) -> str | None:
    if not value:
        return None
    value = value.strip().lower()
    return value if value in DOCUMENT_TYPES else "other"


def extract_energy_certificate_id(value: Any, min_length: int = 10) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if len(value) >= min_length and _ENERGY_CERT_ID_RE.match(value):
        return value
    return None


def collect_covered_diagnostics(payloads: Iterable[dict[str, Any] | None]) -> list[str]:
    """Union of diagnostics_couverts across classifier payloads, first-seen order."""
    seen: list[str] = []
    for raw in payloads:
        if not isinstance(raw, dict):
            continue
        covered = raw.get("diagnostics_couverts") or []
        if not isinstance(covered, list):
            continue
        for d in covered:
            if d in DIAGNOSTIC_TYPES and d not in seen:
                seen.append(d)
    return seen


# ---------------------------------------------------------------------------
# Classification with retry
# ---------------------------------------------------------------------------

async def _classify_with_retry(
    ctx: AnalysisRunContext, content: bytes, filename: str
) -> ClassificationResult:
    """Call the classifier; rate-limited calls are retried with backoff, anything else raises."""
    cfg = ctx.config
    model = ctx.provider.classification_model
    attempt = 0
    while True:
        started = time.monotonic()
        try:
            result = await ctx.provider.classify(content, filename, ctx.dossier_id)
        except AIServiceError as exc:
            await ctx.log_ai_call("classification", model, started, error=str(exc))
            if not exc.retryable or attempt >= cfg.classification_max_retries:
                raise
            delay = cfg.backoff_floor(attempt) + random.random() * cfg.retry_jitter_seconds
            logger.warning(
                "[%s] rate-limited classifying %s, retry %s/%s in %.1fs",
                ctx.dossier_id, filename, attempt + 1, cfg.classification_max_retries, delay,
            )
            await asyncio.sleep(delay)
            attempt += 1
            continue
        await ctx.log_ai_call("classification", model, started, response=result.raw)
        return result


async def classify_document(
    ctx: AnalysisRunContext,
    document: Any,
    *,
    content: bytes | None = None,
    hint: str | None = None,
) -> ClassificationOutcome:
    """Classify *document* (a Document row or anything with id/original_filename/storage_path).

    *hint* is the category the user dropped the file on; it wins over the AI answer.
    Never raises: failures come back as ``outcome.error`` plus a notification.
    """
    doc_id = str(document.id)
    filename = document.original_filename
    outcome = ClassificationOutcome(document_id=doc_id, filename=filename)

    try:
        if content is None:
            content = await ctx.storage.download(document.storage_path)
        outcome.content = content
        result = await _classify_with_retry(ctx, content, filename)
    except Exception as exc:
        outcome.error = str(exc)
        await record_document_error(ctx, doc_id, filename, exc)
        return outcome

    final_type = hint or normalize_document_type(result.document_type) or "other"
    is_combined = len(result.covered_diagnostics) > 1
    sort_order = get_sort_order(final_type, is_combined)
    normalized = get_normalized_filename(final_type, result.date, sort_order, is_combined)

    saved = await db_handler.update_document(ctx.db, doc_id, {
        "document_type": final_type,
        "ai_confidence": result.confidence,
        "ai_classification_raw": result.raw,
        "normalized_filename": normalized,
        "sort_order": sort_order,
        "is_combined_diagnostic": is_combined,
    })
    if not saved:
        ctx.notify("error", f"Erreur sauvegarde classification : {filename}", document_id=doc_id)

    cert_id = extract_energy_certificate_id(
        result.energy_certificate_id, ctx.config.energy_certificate_min_length
    )
    if cert_id:
        logger.info("[%s] energy certificate id %s found in %s", ctx.dossier_id, cert_id, filename)
        await db_handler.update_dossier(ctx.db, ctx.dossier_id, {"dpe_ademe_number": cert_id})

    outcome.document_type = final_type
    outcome.normalized_filename = normalized
    outcome.result = result
    ctx.record_document_result(doc_id, status="classified", document_type=final_type)
    logger.info(
        "[%s] classified %s as %s (rank %s%s)",
        ctx.dossier_id, filename, final_type, sort_order, ", combined" if is_combined else "",
    )
    return outcome


# ---------------------------------------------------------------------------
# Background classification after upload
# ---------------------------------------------------------------------------

# Strong references so pending tasks are not garbage-collected
_background_tasks: set[asyncio.Task] = set()


async def _classify_later(
    delay: float,
    dossier_id: str,
    document: Any,
    hint: str | None,
    session_factory,
    provider: DocumentAIProvider,
    storage: DocumentStorage,
    config: AnalysisConfig,
) -> ClassificationOutcome:
    if delay > 0:
        await asyncio.sleep(delay)
    async with session_factory() as db:
        ctx = AnalysisRunContext(
            db=db, dossier_id=dossier_id, provider=provider, storage=storage, config=config,
        )
        return await classify_document(ctx, document, hint=hint)


def schedule_background_classification(
    dossier_id: str,
    documents: list[Any],
    *,
    hint: str | None = None,
    session_factory,
    provider: DocumentAIProvider,
    storage: DocumentStorage,
    config: AnalysisConfig | None = None,
) -> list[asyncio.Task]:
    """Start one classification task per uploaded file; file *i* waits ``i * stagger`` seconds."""
    config = config or AnalysisConfig()
    tasks: list[asyncio.Task] = []
    for i, document in enumerate(documents):
        delay = i * config.upload_stagger_seconds
        task = asyncio.create_task(
            _classify_later(delay, dossier_id, document, hint, session_factory, provider, storage, config),
            name=f"classify-{document.id}",
        )
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        tasks.append(task)
    logger.info(
        "[%s] scheduled background classification for %s file(s), stagger %.1fs",
        dossier_id, len(tasks), config.upload_stagger_seconds,
    )
    return tasks
