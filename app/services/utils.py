"""Utility functions for parsing model responses and naming files."""
import json
import logging
import re
import unicodedata
from typing import Any

import json_repair

logger = logging.getLogger(__name__)


def _preprocess_response(response: str) -> str:
    """Strip markdown fences and preamble; return content from the first '{' or '['."""
    response = (response or "").strip()
    if response.startswith("```json"):
        response = response[7:]
    if response.startswith("```"):
        response = response[3:]
    if response.endswith("```"):
        response = response[:-3]
    response = response.strip()
    starts = [i for i in (response.find("{"), response.find("[")) if i >= 0]
    if starts:
        response = response[min(starts):]
    return response


def parse_json_payload(response: str) -> Any:
    """Parse a JSON object or array from a model response.

    Tries: 1) strict parse (ignoring trailing text), 2) json_repair on the
    preprocessed string. Raises ValueError when neither yields an object or array.
    """
    preprocessed = _preprocess_response(response)
    if not preprocessed:
        raise ValueError("Empty model response")

    try:
        obj, _ = json.JSONDecoder().raw_decode(preprocessed)
        if isinstance(obj, (dict, list)):
            return obj
    except json.JSONDecodeError as e:
        logger.warning("Strict JSON parse failed (%s); trying json_repair. Response was: %s", e, response[:300])

    try:
        obj = json_repair.loads(preprocessed)
    except Exception as repair_err:
        raise ValueError(f"Failed to parse JSON: {repair_err}") from repair_err
    if isinstance(obj, (dict, list)):
        logger.warning("Recovered JSON using json_repair after strict parse failed")
        return obj
    raise ValueError("Failed to parse JSON: no object or array in response")


def sanitize_filename(name: str) -> str:
    """ASCII-only storage-safe filename: accents stripped, specials -> '_', runs collapsed."""
    normalized = unicodedata.normalize("NFD", name or "")
    ascii_only = "".join(c for c in normalized if not unicodedata.combining(c))
    safe = re.sub(r"[^a-zA-Z0-9._-]", "_", ascii_only)
    return re.sub(r"_+", "_", safe)


def preview_payload(payload: Any, limit: int = 500) -> dict | None:
    """Short JSON preview stored alongside AI call logs."""
    if payload is None:
        return None
    try:
        text = json.dumps(payload, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        text = str(payload)
    return {"preview": text[:limit]}
