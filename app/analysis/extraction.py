"""
Joint extraction over a dossier's documents.

Deduplicate by original filename, send everything in one extraction call,
and turn whatever shape comes back (object, or one-element array of it) into a
single :class:`StructuredExtraction`.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Sequence, TypeVar

from app.analysis.context import AnalysisRunContext
from app.analysis.errors import EmptyExtractionError, ExtractionFailedError
from app.analysis.schema import AnalysisContext, StructuredExtraction
from app.services.ai_provider import ExtractionDocument

logger = logging.getLogger(__name__)

T = TypeVar("T")


def deduplicate_documents(documents: Sequence[T]) -> tuple[list[T], int]:
    """Keep the first document per original filename; returns (unique, duplicates_removed)."""
    seen: set[str] = set()
    unique: list[T] = []
    for doc in documents:
        key = getattr(doc, "original_filename")
        if key in seen:
            continue
        seen.add(key)
        unique.append(doc)
    return unique, len(documents) - len(unique)


def normalize_extraction_payload(payload: Any) -> StructuredExtraction:
    """Object or ``[object]`` -> StructuredExtraction. Anything empty raises EmptyExtractionError."""
    if isinstance(payload, list):
        payload = payload[0] if payload else None
    if not isinstance(payload, dict) or not payload:
        raise EmptyExtractionError("empty extraction")
    return StructuredExtraction.from_payload(payload)


async def extract_dossier(
    ctx: AnalysisRunContext,
    documents: Sequence[ExtractionDocument],
    context: AnalysisContext | None = None,
    *,
    covered_diagnostics: list[str] | None = None,
) -> StructuredExtraction:
    """Run the single extraction call for the dossier.

    Raises ExtractionFailedError when the call fails and EmptyExtractionError
    when it returns nothing usable.
    """
    context = context or AnalysisContext()
    unique, removed = deduplicate_documents(documents)
    if removed:
        logger.info(
            "[%s] dedup: %s documents -> %s unique (%s duplicate filename(s) dropped)",
            ctx.dossier_id, len(documents), len(unique), removed,
        )
    if not unique:
        raise ExtractionFailedError("extraction failed: no document content available")

    model = ctx.provider.extraction_model
    started = time.monotonic()
    try:
        payload = await ctx.provider.extract(
            list(unique),
            ctx.dossier_id,
            lot_number=context.lot_number,
            property_address=context.property_address,
            questionnaire=context.questionnaire,
            covered_diagnostics=covered_diagnostics,
        )
    except Exception as exc:
        await ctx.log_ai_call("extraction", model, started, error=str(exc))
        raise ExtractionFailedError(f"extraction failed: {exc}") from exc
    await ctx.log_ai_call("extraction", model, started, response=payload)

    extraction = normalize_extraction_payload(payload)
    logger.info(
        "[%s] extraction ok: %s documents, %s missing field(s), %s alert(s)",
        ctx.dossier_id, len(unique), len(extraction.meta.donnees_manquantes), len(extraction.alerts),
    )
    return extraction
