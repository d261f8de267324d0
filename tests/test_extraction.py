"""Unit tests for app.analysis.extraction and app.analysis.schema."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from app.analysis.context import AnalysisRunContext
from app.analysis.errors import EmptyExtractionError, ExtractionFailedError
from app.analysis.extraction import (
    deduplicate_documents,
    extract_dossier,
    normalize_extraction_payload,
)
from app.analysis.schema import AnalysisContext, StructuredExtraction
from app.services.ai_provider import AIServiceError, ExtractionDocument

_LOG_AI = "app.analysis.context.log_ai_call"

PAYLOAD = {
    "copropriete": {"nom": "Résidence Les Tilleuls", "tantiemes_totaux": 10000, "gardien": "oui"},
    "lot": {"numero": "12", "tantiemes_generaux": 120},
    "financier": {"budget_previsionnel_annuel": 45000, "charges_courantes_lot": 500},
    "juridique": {"procedures_en_cours": False},
    "diagnostics": {"dpe_classe_energie": "D"},
    "meta": {"documents_analyses": ["pv.pdf"], "donnees_manquantes": [], "alertes": ["x"], "confiance_globale": 0.8},
    "bail": {"loyer": 900},
}


def _docs(*names) -> list[ExtractionDocument]:
    return [ExtractionDocument(content=n.encode(), original_filename=n, document_type="pv_ag") for n in names]


def _make_ctx(extract_result=None, extract_error=None) -> AnalysisRunContext:
    provider = MagicMock(classification_model="flash", extraction_model="pro")
    provider.extract = AsyncMock(return_value=extract_result, side_effect=extract_error)
    return AnalysisRunContext(db=AsyncMock(), dossier_id=str(uuid4()), provider=provider, storage=MagicMock())


# ---------------------------------------------------------------------------
# Dedup
# ---------------------------------------------------------------------------

def test_dedup_keeps_first_occurrence():
    docs = _docs("a.pdf", "b.pdf", "a.pdf", "c.pdf", "b.pdf")
    unique, removed = deduplicate_documents(docs)
    assert [d.original_filename for d in unique] == ["a.pdf", "b.pdf", "c.pdf"]
    assert unique[0] is docs[0]
    assert removed == 2


def test_dedup_no_duplicates():
    unique, removed = deduplicate_documents(_docs("a.pdf", "b.pdf"))
    assert len(unique) == 2
    assert removed == 0


# ---------------------------------------------------------------------------
# Shape normalization
# ---------------------------------------------------------------------------

def test_array_and_object_yield_same_record():
    from_obj = normalize_extraction_payload(PAYLOAD)
    from_arr = normalize_extraction_payload([PAYLOAD])
    assert from_obj == from_arr
    assert from_obj.to_dict() == from_arr.to_dict()


@pytest.mark.parametrize("payload", [{}, [], [{}], None, "text", 42, ["not an object"]])
def test_empty_or_non_object_raises(payload):
    with pytest.raises(EmptyExtractionError, match="empty extraction"):
        normalize_extraction_payload(payload)


def test_schema_keeps_unknown_keys():
    ext = StructuredExtraction.from_payload(PAYLOAD)
    assert ext.copropriete.nom == "Résidence Les Tilleuls"
    assert ext.copropriete.extra == {"gardien": "oui"}
    assert ext.extra == {"bail": {"loyer": 900}}
    data = ext.to_dict()
    assert data["copropriete"]["gardien"] == "oui"
    assert data["bail"] == {"loyer": 900}


def test_schema_round_trips():
    ext = StructuredExtraction.from_payload(PAYLOAD)
    assert StructuredExtraction.from_payload(ext.to_dict()) == ext


def test_schema_missing_groups_default_empty():
    ext = StructuredExtraction.from_payload({"lot": {"numero": 3}})
    assert ext.financier.budget_previsionnel_annuel is None
    assert ext.meta.alertes == []


def test_meta_null_lists_become_empty():
    ext = StructuredExtraction.from_payload({"meta": {"alertes": None, "donnees_manquantes": "n/a"}})
    assert ext.meta.alertes == []
    assert ext.meta.donnees_manquantes == []


def test_non_dict_group_ignored():
    ext = StructuredExtraction.from_payload({"lot": "12", "financier": {"charges_courantes_lot": 1}})
    assert ext.lot.numero is None
    assert ext.financier.charges_courantes_lot == 1


def test_add_alerts_appends():
    ext = StructuredExtraction.from_payload(PAYLOAD)
    ext.add_alerts(["y"])
    assert ext.alerts == ["x", "y"]


# ---------------------------------------------------------------------------
# extract_dossier
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_extract_sends_unique_documents_once():
    ctx = _make_ctx(extract_result=[PAYLOAD])
    docs = _docs("a.pdf", "a.pdf", "b.pdf")
    context = AnalysisContext(lot_number="12", property_address="3 rue X", questionnaire={"occupation": {}})
    with patch(_LOG_AI, new_callable=AsyncMock) as mock_log:
        ext = await extract_dossier(ctx, docs, context, covered_diagnostics=["dpe"])

    ctx.provider.extract.assert_awaited_once()
    sent, dossier_id = ctx.provider.extract.await_args.args
    assert [d.original_filename for d in sent] == ["a.pdf", "b.pdf"]
    assert dossier_id == ctx.dossier_id
    kwargs = ctx.provider.extract.await_args.kwargs
    assert kwargs["lot_number"] == "12"
    assert kwargs["property_address"] == "3 rue X"
    assert kwargs["questionnaire"] == {"occupation": {}}
    assert kwargs["covered_diagnostics"] == ["dpe"]
    assert ext.lot.numero == "12"
    assert mock_log.await_args.kwargs["prompt_type"] == "extraction"


@pytest.mark.asyncio
async def test_extract_call_failure_raises_extraction_failed():
    ctx = _make_ctx(extract_error=AIServiceError("quota", code="RESOURCE_EXHAUSTED", retryable=True))
    with patch(_LOG_AI, new_callable=AsyncMock) as mock_log:
        with pytest.raises(ExtractionFailedError, match="extraction failed: quota"):
            await extract_dossier(ctx, _docs("a.pdf"))
    assert mock_log.await_args.kwargs["error"] == "quota"
    # Extraction is never retried
    ctx.provider.extract.assert_awaited_once()


@pytest.mark.asyncio
async def test_extract_empty_response_raises():
    ctx = _make_ctx(extract_result={})
    with patch(_LOG_AI, new_callable=AsyncMock):
        with pytest.raises(EmptyExtractionError):
            await extract_dossier(ctx, _docs("a.pdf"))


@pytest.mark.asyncio
async def test_extract_without_documents_raises():
    ctx = _make_ctx(extract_result=PAYLOAD)
    with patch(_LOG_AI, new_callable=AsyncMock):
        with pytest.raises(ExtractionFailedError):
            await extract_dossier(ctx, [])
    ctx.provider.extract.assert_not_awaited()
