"""Unit tests for app.services.ai_provider."""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.services import ai_provider
from app.services.ai_provider import (
    AIServiceError,
    ClassificationResult,
    ExtractionDocument,
    GeminiProvider,
    _to_service_error,
    get_ai_provider,
    list_providers,
    register_provider,
)


def _client(text):
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text=text))
    return client


# ---------------------------------------------------------------------------
# ClassificationResult
# ---------------------------------------------------------------------------

def test_classification_result_from_object():
    result = ClassificationResult.from_payload({
        "document_type": "dpe",
        "confidence": 0.9,
        "date": "2023-01-05",
        "dpe_ademe_number": "2375E0123456X",
        "diagnostics_couverts": ["dpe", "diagnostic_amiante", None],
    })
    assert result.document_type == "dpe"
    assert result.confidence == 0.9
    assert result.energy_certificate_id == "2375E0123456X"
    assert result.covered_diagnostics == ["dpe", "diagnostic_amiante"]


def test_classification_result_unwraps_array():
    result = ClassificationResult.from_payload([{"document_type": "pv_ag"}])
    assert result.document_type == "pv_ag"
    assert result.raw == {"document_type": "pv_ag"}


def test_classification_result_tolerates_bad_fields():
    result = ClassificationResult.from_payload(
        {"document_type": "", "confidence": "high", "date": 2024, "diagnostics_couverts": "dpe"}
    )
    assert result.document_type is None
    assert result.confidence is None
    assert result.date is None
    assert result.covered_diagnostics == []


@pytest.mark.parametrize("payload", ["pv_ag", None, [], ["x"]])
def test_classification_result_rejects_non_object(payload):
    with pytest.raises(AIServiceError) as exc_info:
        ClassificationResult.from_payload(payload)
    assert exc_info.value.code == "INVALID_RESPONSE"
    assert exc_info.value.retryable is False


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

def test_rate_limit_by_http_code():
    err = _to_service_error(SimpleNamespace(code=429, status=None, message="Quota exceeded"))
    assert err.retryable is True
    assert err.code == "RESOURCE_EXHAUSTED"
    assert err.status_code == 429


def test_rate_limit_by_status():
    err = _to_service_error(SimpleNamespace(code=None, status="resource_exhausted", message="slow down"))
    assert err.retryable is True


def test_other_errors_not_retryable():
    err = _to_service_error(SimpleNamespace(code=400, status="INVALID_ARGUMENT", message="bad pdf"))
    assert err.retryable is False
    assert err.code == "INVALID_ARGUMENT"
    assert err.status_code == 400
    assert "bad pdf" in str(err)


def test_rate_limited_constructor():
    err = AIServiceError.rate_limited()
    assert err.retryable is True
    assert err.status_code == 429


# ---------------------------------------------------------------------------
# GeminiProvider
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_classify_parses_fenced_json():
    client = _client('```json\n{"document_type": "appel_fonds", "confidence": 0.8}\n```')
    provider = GeminiProvider(client, classification_model="flash-test")
    result = await provider.classify(b"%PDF", "appel.pdf", "d1")
    assert result.document_type == "appel_fonds"
    assert client.aio.models.generate_content.await_args.kwargs["model"] == "flash-test"


@pytest.mark.asyncio
async def test_empty_response_raises():
    provider = GeminiProvider(_client(""))
    with pytest.raises(AIServiceError) as exc_info:
        await provider.classify(b"%PDF", "a.pdf", "d1")
    assert exc_info.value.code == "EMPTY_RESPONSE"


@pytest.mark.asyncio
async def test_unparseable_response_raises():
    provider = GeminiProvider(_client("no json here"))
    with pytest.raises(AIServiceError) as exc_info:
        await provider.classify(b"%PDF", "a.pdf", "d1")
    assert exc_info.value.code == "INVALID_JSON"


@pytest.mark.asyncio
async def test_extract_sends_prompt_then_labelled_documents():
    client = _client('[{"lot": {"numero": "12"}}]')
    provider = GeminiProvider(client, extraction_model="pro-test")
    docs = [
        ExtractionDocument(content=b"1", original_filename="pv.pdf", document_type="pv_ag",
                           normalized_filename="04_PV_AG_2024.pdf"),
        ExtractionDocument(content=b"2", original_filename="x.pdf"),
    ]
    with patch.object(ai_provider, "build_extraction_prompt", return_value="PROMPT") as mock_prompt:
        payload = await provider.extract(docs, "d1", lot_number="12", covered_diagnostics=["dpe"])

    assert payload == [{"lot": {"numero": "12"}}]
    assert mock_prompt.call_args.kwargs["lot_number"] == "12"
    assert mock_prompt.call_args.kwargs["covered_diagnostics"] == ["dpe"]
    kwargs = client.aio.models.generate_content.await_args.kwargs
    assert kwargs["model"] == "pro-test"
    # prompt + (bytes, label) per document
    assert len(kwargs["contents"]) == 5


def test_extraction_document_label():
    assert ExtractionDocument(content=b"", original_filename="a.pdf").label == "a.pdf"
    assert ExtractionDocument(content=b"", original_filename="a.pdf", normalized_filename="04_PV_AG.pdf").label == "04_PV_AG.pdf"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def test_gemini_registered():
    assert "gemini" in list_providers()


def test_register_provider_requires_name():
    with pytest.raises(ValueError):
        register_provider("  ", lambda cfg: None)


def test_get_ai_provider_uses_registry():
    fake = MagicMock()
    register_provider("fake-test", lambda cfg: fake)
    with patch("app.config.AI_PROVIDER", "FAKE-TEST"):
        assert get_ai_provider() is fake


def test_get_ai_provider_unknown():
    with patch("app.config.AI_PROVIDER", "nope"):
        with pytest.raises(ValueError, match="Unknown AI provider"):
            get_ai_provider()


def test_gemini_factory_requires_credentials():
    with pytest.raises(ValueError):
        ai_provider._gemini_factory({"api_key": None, "vertex": {}})


def test_gemini_factory_with_api_key():
    with patch.object(ai_provider.genai, "Client") as mock_client:
        provider = ai_provider._gemini_factory({"api_key": "k", "classification_model": "m1"})
    mock_client.assert_called_once_with(api_key="k")
    assert isinstance(provider, GeminiProvider)
    assert provider.classification_model == "m1"
    assert provider.extraction_model == "gemini-2.5-pro"
