"""
Analysis pipeline configuration.

Single source of truth for retry/backoff timing, upload stagger and the
financial cross-check thresholds. Loaded once per process from ``ANALYSIS_*``
environment variables.
"""
from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class AnalysisConfig:
    """Immutable analysis configuration."""

    # --- Classification retry on rate limiting ---
    classification_max_retries: int = 2
    retry_backoff_seconds: tuple[float, ...] = (5.0, 15.0)
    retry_jitter_seconds: float = 2.0

    # --- Upload fan-out: file i starts classifying after i * stagger ---
    upload_stagger_seconds: float = 2.0

    # --- Financial reconciliation ---
    charges_discrepancy_pct: float = 5.0
    prior_year_discrepancy_pct: float = 20.0
    provisions_ratio_limit: float = 1.1

    # --- Energy certificate id detection ---
    energy_certificate_min_length: int = 10

    # --- Logging ---
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    def backoff_floor(self, attempt: int) -> float:
        """Nominal delay before retry number *attempt* (0-based); last value repeats."""
        if not self.retry_backoff_seconds:
            return 0.0
        idx = min(attempt, len(self.retry_backoff_seconds) - 1)
        return self.retry_backoff_seconds[idx]


def load_analysis_config() -> AnalysisConfig:
    """Build AnalysisConfig from environment variables (with defaults)."""
    def _float(key: str, default: float) -> float:
        raw = os.getenv(key)
        if raw is None:
            return default
        try:
            return float(raw)
        except (TypeError, ValueError):
            return default

    def _int(key: str, default: int) -> int:
        raw = os.getenv(key)
        if raw is None:
            return default
        try:
            return int(raw)
        except (TypeError, ValueError):
            return default

    def _floats(key: str, default: tuple[float, ...]) -> tuple[float, ...]:
        raw = os.getenv(key)
        if not raw:
            return default
        try:
            return tuple(float(p) for p in raw.split(",") if p.strip())
        except (TypeError, ValueError):
            return default

    return AnalysisConfig(
        classification_max_retries=_int("ANALYSIS_CLASSIFY_MAX_RETRIES", 2),
        retry_backoff_seconds=_floats("ANALYSIS_RETRY_BACKOFF", (5.0, 15.0)),
        retry_jitter_seconds=_float("ANALYSIS_RETRY_JITTER", 2.0),
        upload_stagger_seconds=_float("ANALYSIS_UPLOAD_STAGGER", 2.0),
        charges_discrepancy_pct=_float("ANALYSIS_CHARGES_DISCREPANCY_PCT", 5.0),
        prior_year_discrepancy_pct=_float("ANALYSIS_PRIOR_YEAR_DISCREPANCY_PCT", 20.0),
        provisions_ratio_limit=_float("ANALYSIS_PROVISIONS_RATIO_LIMIT", 1.1),
        energy_certificate_min_length=_int("ANALYSIS_DPE_ID_MIN_LENGTH", 10),
        log_level=os.getenv("ANALYSIS_LOG_LEVEL", "INFO"),
        log_format=os.getenv(
            "ANALYSIS_LOG_FORMAT",
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        ),
    )
