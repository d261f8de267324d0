"""Dossier analysis pipeline: classification, extraction, reconciliation, progress."""
