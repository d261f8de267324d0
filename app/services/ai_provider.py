"""AI document service abstraction (classification + joint extraction).

To add a new backend:
1. Subclass DocumentAIProvider and implement classify() and extract().
2. Call register_provider("name", factory) where factory is a callable (config_dict) -> DocumentAIProvider.
3. Set AI_PROVIDER=name.

Providers raise AIServiceError for every service-side failure. Rate limiting is
reported through ``error.retryable`` so callers never inspect message text.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict
import logging

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from app.services.prompts import CLASSIFICATION_PROMPT, build_extraction_prompt
from app.services.utils import parse_json_payload

logger = logging.getLogger(__name__)

RATE_LIMIT_CODE = "RESOURCE_EXHAUSTED"

# Registry: provider name -> factory(config: dict) -> DocumentAIProvider
_PROVIDER_REGISTRY: Dict[str, Callable[[Dict[str, Any]], "DocumentAIProvider"]] = {}


class AIServiceError(Exception):
    """Failure reported by the AI document service.

    ``code`` is the service status (``RESOURCE_EXHAUSTED``, ``INVALID_ARGUMENT``,
    ``EMPTY_RESPONSE``...) and ``retryable`` is True only for rate limiting.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "UNKNOWN",
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.retryable = retryable

    @classmethod
    def rate_limited(cls, message: str = "Rate limit exceeded") -> "AIServiceError":
        return cls(message, code=RATE_LIMIT_CODE, status_code=429, retryable=True)


@dataclass
class ClassificationResult:
    """Parsed classifier answer for one file."""

    document_type: str | None
    confidence: float | None = None
    title: str | None = None
    date: str | None = None
    summary: str | None = None
    covered_diagnostics: list[str] = field(default_factory=list)
    energy_certificate_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "ClassificationResult":
        if isinstance(payload, list) and payload and isinstance(payload[0], dict):
            payload = payload[0]
        if not isinstance(payload, dict):
            raise AIServiceError("Classification response is not an object", code="INVALID_RESPONSE")
        covered = payload.get("diagnostics_couverts") or []
        if not isinstance(covered, list):
            covered = []
        confidence = payload.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = None
        return cls(
            document_type=payload.get("document_type") or None,
            confidence=float(confidence) if confidence is not None else None,
            title=payload.get("title"),
            date=payload.get("date") if isinstance(payload.get("date"), str) else None,
            summary=payload.get("summary"),
            covered_diagnostics=[str(d) for d in covered if d],
            energy_certificate_id=payload.get("dpe_ademe_number"),
            raw=payload,
        )


@dataclass
class ExtractionDocument:
    """One file sent to the joint extraction call, with its content already resolved."""

    content: bytes
    original_filename: str
    document_type: str | None = None
    normalized_filename: str | None = None
    mime_type: str = "application/pdf"

    @property
    def label(self) -> str:
        return self.normalized_filename or self.original_filename


class DocumentAIProvider(ABC):
    """Abstract base class for AI document services."""

    classification_model: str = ""
    extraction_model: str = ""

    @abstractmethod
    async def classify(self, content: bytes, filename: str, dossier_id: str) -> ClassificationResult:
        """Classify one PDF into a disclosure-document category."""

    @abstractmethod
    async def extract(
        self,
        documents: list[ExtractionDocument],
        dossier_id: str,
        *,
        lot_number: str | None = None,
        property_address: str | None = None,
        questionnaire: dict | None = None,
        covered_diagnostics: list[str] | None = None,
    ) -> Any:
        """Return the structured extraction (an object, or a one-element array of it)."""


def _to_service_error(exc: genai_errors.APIError) -> AIServiceError:
    status = (getattr(exc, "status", None) or "").upper()
    code = getattr(exc, "code", None)
    message = getattr(exc, "message", None) or str(exc)
    if code == 429 or status == RATE_LIMIT_CODE:
        return AIServiceError(f"Gemini rate limit: {message}", code=RATE_LIMIT_CODE, status_code=429, retryable=True)
    return AIServiceError(
        f"Gemini API error ({code}): {message}",
        code=status or "UNKNOWN",
        status_code=code if isinstance(code, int) else None,
    )


class GeminiProvider(DocumentAIProvider):
    """Gemini via google-genai (public API key or Vertex AI project)."""

    def __init__(
        self,
        client: genai.Client,
        *,
        classification_model: str = "gemini-2.0-flash",
        extraction_model: str = "gemini-2.5-pro",
        temperature: float = 0.1,
    ):
        self._client = client
        self.classification_model = classification_model
        self.extraction_model = extraction_model
        self.temperature = temperature

    async def _generate_json(self, model: str, parts: list) -> Any:
        try:
            response = await self._client.aio.models.generate_content(
                model=model,
                contents=parts,
                config=genai_types.GenerateContentConfig(
                    response_mime_type="application/json",
                    temperature=self.temperature,
                ),
            )
        except genai_errors.APIError as exc:
            raise _to_service_error(exc) from exc

        text = response.text
        if not text:
            raise AIServiceError("No text in Gemini response", code="EMPTY_RESPONSE")
        try:
            return parse_json_payload(text)
        except ValueError as exc:
            raise AIServiceError(f"Unparseable Gemini response: {exc}", code="INVALID_JSON") from exc

    async def classify(self, content: bytes, filename: str, dossier_id: str) -> ClassificationResult:
        parts = [
            genai_types.Part.from_text(text=f"{CLASSIFICATION_PROMPT}\n\nFichier: {filename}"),
            genai_types.Part.from_bytes(data=content, mime_type="application/pdf"),
        ]
        payload = await self._generate_json(self.classification_model, parts)
        result = ClassificationResult.from_payload(payload)
        logger.info(
            "[classify] %s: %s -> %s (%s)",
            dossier_id, filename, result.document_type, result.confidence,
        )
        return result

    async def extract(
        self,
        documents: list[ExtractionDocument],
        dossier_id: str,
        *,
        lot_number: str | None = None,
        property_address: str | None = None,
        questionnaire: dict | None = None,
        covered_diagnostics: list[str] | None = None,
    ) -> Any:
        prompt = build_extraction_prompt(
            lot_number=lot_number,
            property_address=property_address,
            questionnaire=questionnaire,
            covered_diagnostics=covered_diagnostics,
        )
        parts: list = [genai_types.Part.from_text(text=prompt)]
        for doc in documents:
            parts.append(genai_types.Part.from_bytes(data=doc.content, mime_type=doc.mime_type))
            parts.append(
                genai_types.Part.from_text(
                    text=f"[Document: {doc.label} - Type: {doc.document_type or 'other'}]"
                )
            )
        logger.info("[extract] %s: %s documents -> %s", dossier_id, len(documents), self.extraction_model)
        return await self._generate_json(self.extraction_model, parts)


def register_provider(name: str, factory: Callable[[Dict[str, Any]], "DocumentAIProvider"]) -> None:
    """Register an AI provider. factory(config_dict) must return a DocumentAIProvider instance."""
    name = (name or "").lower().strip()
    if not name:
        raise ValueError("Provider name must be non-empty")
    _PROVIDER_REGISTRY[name] = factory


def list_providers() -> list[str]:
    """Return registered provider names."""
    return sorted(_PROVIDER_REGISTRY.keys())


def _gemini_factory(config: Dict[str, Any]) -> DocumentAIProvider:
    """Build GeminiProvider: Vertex AI when a project is configured, else the API key endpoint."""
    vertex = config.get("vertex") or {}
    if vertex.get("project_id"):
        client = genai.Client(
            vertexai=True,
            project=vertex["project_id"],
            location=vertex.get("location") or "europe-west1",
        )
    elif config.get("api_key"):
        client = genai.Client(api_key=config["api_key"])
    else:
        raise ValueError("Gemini requires GEMINI_API_KEY or VERTEX_PROJECT_ID")
    return GeminiProvider(
        client,
        classification_model=config.get("classification_model") or "gemini-2.0-flash",
        extraction_model=config.get("extraction_model") or "gemini-2.5-pro",
        temperature=float(config.get("temperature", 0.1)),
    )


register_provider("gemini", _gemini_factory)


def get_ai_provider() -> DocumentAIProvider:
    """Get the AI provider configured in app.config."""
    from app.config import (
        AI_PROVIDER,
        AI_TEMPERATURE,
        CLASSIFICATION_MODEL,
        EXTRACTION_MODEL,
        GEMINI_API_KEY,
        VERTEX_LOCATION,
        VERTEX_PROJECT_ID,
    )
    cfg = {
        "provider": AI_PROVIDER,
        "api_key": GEMINI_API_KEY,
        "vertex": {"project_id": VERTEX_PROJECT_ID, "location": VERTEX_LOCATION},
        "classification_model": CLASSIFICATION_MODEL,
        "extraction_model": EXTRACTION_MODEL,
        "temperature": AI_TEMPERATURE,
    }
    factory = _PROVIDER_REGISTRY.get((AI_PROVIDER or "").lower())
    if factory:
        return factory(cfg)
    raise ValueError(f"Unknown AI provider: {AI_PROVIDER}. Registered: {list_providers()}")
