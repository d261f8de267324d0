"""Pytest fixtures for the analysis API tests."""
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.analysis.coordinator import AnalysisCoordinator
from app.analysis.session import SessionRegistry
from app.database import get_db
from app.main import app, get_session_registry, get_storage


@pytest.fixture
def storage() -> MagicMock:
    storage = MagicMock()
    storage.download = AsyncMock(return_value=b"%PDF-1.7")
    storage.upload_document = AsyncMock(side_effect=lambda dossier_id, name, data, ct: f"{dossier_id}/uploads/1_{name}")
    storage.remove = AsyncMock()
    return storage


@pytest.fixture
def registry(storage) -> SessionRegistry:
    coordinator = AnalysisCoordinator(session_factory=MagicMock(), provider=MagicMock(), storage=storage)
    return SessionRegistry(coordinator)


@pytest.fixture
def client(registry, storage):
    """FastAPI test client with DB, storage and sessions replaced by fakes."""
    async def _fake_db():
        yield AsyncMock()

    app.dependency_overrides[get_db] = _fake_db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_session_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()
