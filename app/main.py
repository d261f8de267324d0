import asyncio
import logging
from typing import List, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.analysis import db as db_handler
from app.analysis.classification import schedule_background_classification
from app.analysis.config import load_analysis_config
from app.analysis.coordinator import AnalysisCoordinator
from app.analysis.schema import AnalysisContext
from app.analysis.session import SessionRegistry
from app.config import CORS_ORIGINS, ENV
from app.database import AsyncSessionLocal, get_db
from app.services.ai_provider import get_ai_provider
from app.services.prompts import DOCUMENT_TYPES
from app.services.storage import DocumentStorage, StorageError, get_document_storage

analysis_config = load_analysis_config()

# Set up logging
logging.basicConfig(
    level=getattr(logging, analysis_config.log_level.upper(), logging.INFO),
    format=analysis_config.log_format,
)
logger = logging.getLogger(__name__)
# Set specific loggers to appropriate levels
logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)  # Reduce SQLAlchemy verbosity
logging.getLogger('uvicorn').setLevel(logging.INFO)
logging.getLogger('httpx').setLevel(logging.WARNING)

app = FastAPI(title="Pre-etat date analysis", version="0.1.0")


@app.on_event("startup")
async def create_tables_on_startup():
    """Create tables in background so the server binds to PORT immediately (Cloud Run)."""
    asyncio.create_task(_create_tables_background())


async def _create_tables_background():
    from app.init_db import init_db
    try:
        await init_db()
    except Exception as e:
        logger.error("Startup table creation failed: %s", e, exc_info=True)


# CORS - in dev allow any origin so the Vite front-end works on any port
cors_origins = ["*"] if ENV == "dev" else [o for o in CORS_ORIGINS if o != "*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,  # must be False when allow_origins=["*"]
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

_registry: Optional[SessionRegistry] = None
_storage: Optional[DocumentStorage] = None


def get_storage() -> DocumentStorage:
    global _storage
    if _storage is None:
        _storage = get_document_storage()
    return _storage


def get_session_registry() -> SessionRegistry:
    """Process-wide sessions and coordinator (one run guard for the whole app)."""
    global _registry
    if _registry is None:
        coordinator = AnalysisCoordinator(
            session_factory=AsyncSessionLocal,
            provider=get_ai_provider(),
            storage=get_storage(),
            config=analysis_config,
        )
        _registry = SessionRegistry(coordinator)
    return _registry


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/health")
def health_check():
    return {"status": "ok"}


class AnalysisStartBody(BaseModel):
    """Values the seller typed in the first step; they win over the extraction."""
    lot_number: Optional[str] = None
    property_address: Optional[str] = None
    questionnaire: Optional[dict] = None


@app.post("/dossiers/{dossier_id}/analysis", status_code=202)
async def start_dossier_analysis(
    dossier_id: UUID,
    body: Optional[AnalysisStartBody] = None,
    db: AsyncSession = Depends(get_db),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Schedule classification + extraction for every document of the dossier."""
    session = registry.get(dossier_id)
    if session.is_running:
        raise HTTPException(status_code=409, detail="Analysis already in progress for this dossier")

    dossier = await db_handler.get_dossier(db, dossier_id)
    if dossier is None:
        raise HTTPException(status_code=404, detail="Dossier not found")
    documents = await db_handler.list_documents(db, dossier_id)
    if not documents:
        raise HTTPException(status_code=400, detail="No documents to analyse")

    body = body or AnalysisStartBody()
    context = AnalysisContext(
        lot_number=body.lot_number or dossier.property_lot_number,
        property_address=body.property_address or dossier.property_address,
        questionnaire=body.questionnaire,
    )
    if session.launch(documents, context) is None:
        raise HTTPException(status_code=409, detail="Analysis already in progress for this dossier")

    logger.info("[%s] analysis scheduled for %s document(s)", dossier_id, len(documents))
    return JSONResponse(
        status_code=202,
        content={"started": True, "is_running": session.is_running, "progress": session.progress},
    )


@app.get("/dossiers/{dossier_id}/analysis")
async def get_dossier_analysis(
    dossier_id: UUID,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Poll run state: is_running, progress {phase, current, total, message}, notifications."""
    return registry.get(dossier_id).snapshot()


@app.post("/dossiers/{dossier_id}/documents", status_code=201)
async def upload_dossier_documents(
    dossier_id: UUID,
    files: List[UploadFile] = File(...),
    hint: Optional[str] = Form(None),
    db: AsyncSession = Depends(get_db),
    storage: DocumentStorage = Depends(get_storage),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Store files, create Document rows, then classify them in the background (staggered).

    *hint* is the checklist slot the files were dropped on; it overrides the AI category.
    """
    if hint is not None and hint not in DOCUMENT_TYPES:
        raise HTTPException(status_code=400, detail=f"Unknown document type: {hint}")
    dossier = await db_handler.get_dossier(db, dossier_id)
    if dossier is None:
        raise HTTPException(status_code=404, detail="Dossier not found")

    created = []
    failed = []
    for file in files:
        if not file.filename:
            failed.append({"filename": None, "error": "No filename provided"})
            continue
        contents = await file.read()
        content_type = file.content_type or "application/pdf"
        try:
            path = await storage.upload_document(str(dossier_id), file.filename, contents, content_type)
        except StorageError as e:
            logger.error("[%s] upload %s failed: %s", dossier_id, file.filename, e)
            failed.append({"filename": file.filename, "error": str(e)})
            continue

        document = await db_handler.create_document(
            db,
            dossier_id,
            original_filename=file.filename,
            storage_path=path,
            file_size_bytes=len(contents),
            mime_type=content_type,
        )
        if document is None:
            await storage.remove(path)
            failed.append({"filename": file.filename, "error": "Database insert failed"})
            continue
        created.append(document)

    if created:
        coordinator = registry.coordinator
        schedule_background_classification(
            str(dossier_id),
            created,
            hint=hint,
            session_factory=coordinator.session_factory,
            provider=coordinator.provider,
            storage=storage,
            config=coordinator.config,
        )

    logger.info("[%s] upload: %s stored, %s failed", dossier_id, len(created), len(failed))
    return {
        "uploaded": [
            {
                "document_id": str(d.id),
                "original_filename": d.original_filename,
                "storage_path": d.storage_path,
                "file_size_bytes": d.file_size_bytes,
            }
            for d in created
        ],
        "failed": failed,
    }
