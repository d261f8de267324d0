"""Unit tests for app.analysis.db (session mocked)."""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from app.analysis import db as db_handler
from app.models import AiCallLog, Document, Dossier


def _session(rowcount=1, execute_error=None, commit_error=None):
    db = MagicMock()
    db.execute = AsyncMock(return_value=SimpleNamespace(rowcount=rowcount), side_effect=execute_error)
    db.commit = AsyncMock(side_effect=commit_error)
    db.rollback = AsyncMock()
    return db


def test_known_columns_drops_unknown_and_id():
    values = db_handler._known_columns(Dossier, {"id": uuid4(), "status": "analyzing", "bogus": 1})
    assert values == {"status": "analyzing"}


@pytest.mark.asyncio
async def test_update_dossier_commits():
    db = _session()
    assert await db_handler.update_dossier(db, str(uuid4()), {"status": "analyzing"}) is True
    db.execute.assert_awaited_once()
    db.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_update_dossier_missing_row():
    db = _session(rowcount=0)
    assert await db_handler.update_dossier(db, str(uuid4()), {"status": "analyzing"}) is False
    db.rollback.assert_awaited_once()
    db.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_dossier_execute_error():
    db = _session(execute_error=RuntimeError("connection reset"))
    assert await db_handler.update_dossier(db, str(uuid4()), {"status": "error"}) is False
    db.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_update_document_commit_failure_rolls_back():
    db = _session(commit_error=RuntimeError("deadlock"))
    assert await db_handler.update_document(db, uuid4(), {"document_type": "pv_ag"}) is False
    db.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_update_document_nothing_to_write():
    db = _session()
    assert await db_handler.update_document(db, uuid4(), {"unknown": 1}) is True
    db.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_create_document_adds_row():
    db = _session()
    dossier_id = uuid4()
    doc = await db_handler.create_document(
        db, str(dossier_id), original_filename="pv.pdf", storage_path="x/uploads/1_pv.pdf", file_size_bytes=3,
    )
    assert isinstance(doc, Document)
    assert doc.dossier_id == dossier_id
    assert doc.document_type is None
    db.add.assert_called_once_with(doc)


@pytest.mark.asyncio
async def test_create_document_commit_failure_returns_none():
    db = _session(commit_error=RuntimeError("disk full"))
    doc = await db_handler.create_document(db, uuid4(), original_filename="pv.pdf", storage_path="p")
    assert doc is None


@pytest.mark.asyncio
async def test_log_ai_call_writes_preview():
    db = _session()
    await db_handler.log_ai_call(
        db, uuid4(), model="m", prompt_type="classification", latency_ms=12,
        response={"document_type": "pv_ag"},
    )
    row = db.add.call_args.args[0]
    assert isinstance(row, AiCallLog)
    assert row.latency_ms == 12
    assert "pv_ag" in row.response_payload["preview"]
    assert row.error is None


@pytest.mark.asyncio
async def test_log_ai_call_never_raises():
    db = _session(commit_error=RuntimeError("db down"))
    await db_handler.log_ai_call(db, uuid4(), model="m", prompt_type="extraction", latency_ms=1, error="x")
    db.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_safe_rollback_swallows_errors():
    db = MagicMock()
    db.rollback = AsyncMock(side_effect=RuntimeError("closed"))
    await db_handler.safe_rollback(db)
