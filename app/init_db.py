import asyncio
import logging

from app.database import Base, engine
import app.models  # noqa: F401  register Dossier, Document, AiCallLog with Base.metadata

logger = logging.getLogger(__name__)


async def init_db():
    """Create pv_dossiers, pv_documents and pv_ai_logs when missing."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready: %s", ", ".join(sorted(Base.metadata.tables)))


async def _main():
    await init_db()
    await engine.dispose()
    print("Database tables created successfully!")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(_main())
