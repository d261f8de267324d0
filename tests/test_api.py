"""API tests for the dossier analysis endpoints."""
import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

_DB = "app.main.db_handler"


def _dossier(**kw):
    base = dict(id=uuid.uuid4(), property_lot_number=None, property_address=None)
    base.update(kw)
    return SimpleNamespace(**base)


def _doc(name="pv.pdf"):
    return SimpleNamespace(
        id=uuid.uuid4(), original_filename=name, storage_path=f"d/uploads/1_{name}",
        document_type=None, file_size_bytes=3,
    )


def test_health(client: TestClient):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

def test_start_analysis_schedules_run(client: TestClient, registry):
    dossier_id = uuid.uuid4()
    registry.coordinator.schedule_analysis = MagicMock(return_value=MagicMock())
    docs = [_doc()]
    with patch(_DB) as mock_db:
        mock_db.get_dossier = AsyncMock(return_value=_dossier(property_lot_number="7", property_address="1 place X"))
        mock_db.list_documents = AsyncMock(return_value=docs)
        r = client.post(f"/dossiers/{dossier_id}/analysis", json={"lot_number": "12"})

    assert r.status_code == 202
    assert r.json()["started"] is True
    args = registry.coordinator.schedule_analysis.call_args
    assert args.args[0] == str(dossier_id)
    assert args.args[1] == docs
    context = args.args[2]
    assert context.lot_number == "12"
    assert context.property_address == "1 place X"


def test_start_analysis_conflict_when_running(client: TestClient, registry):
    dossier_id = uuid.uuid4()
    registry.coordinator.guard.try_acquire(str(dossier_id))
    with patch(_DB) as mock_db:
        mock_db.get_dossier = AsyncMock()
        r = client.post(f"/dossiers/{dossier_id}/analysis")
    assert r.status_code == 409
    mock_db.get_dossier.assert_not_awaited()


def test_start_analysis_unknown_dossier(client: TestClient):
    with patch(_DB) as mock_db:
        mock_db.get_dossier = AsyncMock(return_value=None)
        r = client.post(f"/dossiers/{uuid.uuid4()}/analysis")
    assert r.status_code == 404


def test_start_analysis_without_documents(client: TestClient):
    with patch(_DB) as mock_db:
        mock_db.get_dossier = AsyncMock(return_value=_dossier())
        mock_db.list_documents = AsyncMock(return_value=[])
        r = client.post(f"/dossiers/{uuid.uuid4()}/analysis")
    assert r.status_code == 400


def test_start_analysis_invalid_uuid(client: TestClient):
    r = client.post("/dossiers/not-a-uuid/analysis")
    assert r.status_code == 422


def test_get_analysis_snapshot(client: TestClient):
    dossier_id = uuid.uuid4()
    r = client.get(f"/dossiers/{dossier_id}/analysis")
    assert r.status_code == 200
    data = r.json()
    assert data["dossier_id"] == str(dossier_id)
    assert data["is_running"] is False
    assert data["progress"]["phase"] == "idle"
    assert data["notifications"] == []


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------

def test_upload_rejects_unknown_hint(client: TestClient):
    r = client.post(
        f"/dossiers/{uuid.uuid4()}/documents",
        files=[("files", ("pv.pdf", b"%PDF", "application/pdf"))],
        data={"hint": "not_a_type"},
    )
    assert r.status_code == 400


def test_upload_stores_and_schedules_classification(client: TestClient, storage):
    dossier_id = uuid.uuid4()
    created = [_doc("pv.pdf"), _doc("dpe.pdf")]
    with patch(_DB) as mock_db, \
         patch("app.main.schedule_background_classification") as mock_schedule:
        mock_db.get_dossier = AsyncMock(return_value=_dossier())
        mock_db.create_document = AsyncMock(side_effect=created)
        r = client.post(
            f"/dossiers/{dossier_id}/documents",
            files=[
                ("files", ("pv.pdf", b"%PDF-1", "application/pdf")),
                ("files", ("dpe.pdf", b"%PDF-2", "application/pdf")),
            ],
            data={"hint": "dpe"},
        )

    assert r.status_code == 201
    body = r.json()
    assert [d["original_filename"] for d in body["uploaded"]] == ["pv.pdf", "dpe.pdf"]
    assert body["failed"] == []
    assert storage.upload_document.await_count == 2
    # Hint is handed to classification, not stored on the row
    assert "document_type" not in mock_db.create_document.await_args.kwargs
    assert mock_schedule.call_args.args == (str(dossier_id), created)
    assert mock_schedule.call_args.kwargs["hint"] == "dpe"


def test_upload_db_failure_removes_object(client: TestClient, storage):
    with patch(_DB) as mock_db, \
         patch("app.main.schedule_background_classification") as mock_schedule:
        mock_db.get_dossier = AsyncMock(return_value=_dossier())
        mock_db.create_document = AsyncMock(return_value=None)
        r = client.post(
            f"/dossiers/{uuid.uuid4()}/documents",
            files=[("files", ("pv.pdf", b"%PDF", "application/pdf"))],
        )

    assert r.status_code == 201
    assert r.json()["failed"] == [{"filename": "pv.pdf", "error": "Database insert failed"}]
    storage.remove.assert_awaited_once()
    mock_schedule.assert_not_called()


def test_upload_unknown_dossier(client: TestClient):
    with patch(_DB) as mock_db:
        mock_db.get_dossier = AsyncMock(return_value=None)
        r = client.post(
            f"/dossiers/{uuid.uuid4()}/documents",
            files=[("files", ("pv.pdf", b"%PDF", "application/pdf"))],
        )
    assert r.status_code == 404
