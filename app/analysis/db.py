"""
Analysis database handler.

All pipeline persistence goes through this module: reads and partial
updates of Dossier and Document, and the AI call log. Classification and
the coordinator never call ``db.add()`` or build statements themselves.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import AiCallLog, Document, Dossier
from app.services.utils import preview_payload

logger = logging.getLogger(__name__)


def _utc_now_naive() -> datetime:
    """Naive UTC datetime for DB (TIMESTAMP WITHOUT TIME ZONE)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_uuid(value: str | UUID) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def _known_columns(model, updates: dict[str, Any]) -> dict[str, Any]:
    """Keep only keys that are columns of *model*; unknown keys are logged and dropped."""
    columns = set(model.__table__.columns.keys())
    unknown = [k for k in updates if k not in columns]
    if unknown:
        logger.warning("[db] %s: ignoring unknown fields %s", model.__tablename__, unknown)
    return {k: v for k, v in updates.items() if k in columns and k != "id"}


# ---------------------------------------------------------------------------
# Dossier
# ---------------------------------------------------------------------------

async def get_dossier(db: AsyncSession, dossier_id: str | UUID) -> Dossier | None:
    result = await db.execute(select(Dossier).where(Dossier.id == _as_uuid(dossier_id)))
    return result.scalar_one_or_none()


async def update_dossier(db: AsyncSession, dossier_id: str | UUID, updates: dict[str, Any]) -> bool:
    """Merge *updates* into the dossier row (columns not named are left alone).

    Returns True on success, False when the row is missing or the write failed
    (session is rolled back).
    """
    values = _known_columns(Dossier, updates)
    values["updated_at"] = _utc_now_naive()
    try:
        result = await db.execute(
            update(Dossier).where(Dossier.id == _as_uuid(dossier_id)).values(**values)
        )
        if result.rowcount == 0:
            logger.warning("[db] update_dossier: dossier %s not found", dossier_id)
            await safe_rollback(db)
            return False
    except Exception as exc:
        logger.error("[db] update_dossier(%s) failed: %s", dossier_id, exc, exc_info=True)
        await safe_rollback(db)
        return False
    return await safe_commit(db)


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------

async def list_documents(db: AsyncSession, dossier_id: str | UUID) -> list[Document]:
    """Documents of a dossier in display order (sort_order, then upload time)."""
    result = await db.execute(
        select(Document)
        .where(Document.dossier_id == _as_uuid(dossier_id))
        .order_by(Document.sort_order.asc(), Document.created_at.asc())
    )
    return list(result.scalars().all())


async def create_document(db: AsyncSession, dossier_id: str | UUID, **values: Any) -> Document | None:
    """Insert a freshly uploaded Document row; None on failure."""
    doc = Document(dossier_id=_as_uuid(dossier_id), **_known_columns(Document, values))
    db.add(doc)
    if not await safe_commit(db):
        return None
    return doc


async def update_document(db: AsyncSession, document_id: str | UUID, updates: dict[str, Any]) -> bool:
    values = _known_columns(Document, updates)
    if not values:
        return True
    try:
        await db.execute(
            update(Document).where(Document.id == _as_uuid(document_id)).values(**values)
        )
    except Exception as exc:
        logger.error("[db] update_document(%s) failed: %s", document_id, exc, exc_info=True)
        await safe_rollback(db)
        return False
    return await safe_commit(db)


# ---------------------------------------------------------------------------
# AI call log
# ---------------------------------------------------------------------------

async def log_ai_call(
    db: AsyncSession,
    dossier_id: str | UUID,
    *,
    model: str,
    prompt_type: str,
    latency_ms: int,
    response: Any = None,
    error: str | None = None,
) -> None:
    """Persist one AiCallLog row. Never raises: a logging failure must not break a run."""
    try:
        db.add(AiCallLog(
            dossier_id=_as_uuid(dossier_id),
            model=model,
            prompt_type=prompt_type,
            latency_ms=latency_ms,
            response_payload=preview_payload(response) if response is not None else None,
            error=error[:1000] if error else None,
        ))
        await db.commit()
    except Exception as exc:
        logger.warning("[db] log_ai_call(%s, %s) failed: %s", dossier_id, prompt_type, exc)
        await safe_rollback(db)


# ---------------------------------------------------------------------------
# Commit helpers
# ---------------------------------------------------------------------------

async def safe_commit(db: AsyncSession) -> bool:
    """Commit; on failure rollback and return False."""
    try:
        await db.commit()
        return True
    except Exception as exc:
        logger.error("[db] commit failed, rolling back: %s", exc, exc_info=True)
        await db.rollback()
        return False


async def safe_rollback(db: AsyncSession) -> None:
    """Rollback; never raises."""
    try:
        await db.rollback()
    except Exception as exc:
        logger.error("[db] rollback failed: %s", exc, exc_info=True)
