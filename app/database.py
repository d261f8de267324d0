"""
Async engine and session factory.

The HTTP layer (get_db), the analysis coordinator and background classification
tasks all draw from the same pool. Each analysis run and each background
classification opens its own session so a long run never holds a request session.
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.config import DATABASE_URL

# Fail fast on an unreachable DB instead of hanging a Cloud Run request
_connect_args = {"timeout": 15} if "asyncpg" in DATABASE_URL else {}
# Room for a request session, one analysis run and staggered upload
# classifications at once; overflow covers bursts of uploads.
engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    connect_args=_connect_args,
    pool_size=5,
    max_overflow=5,
    pool_pre_ping=True,
    pool_recycle=300,
)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def get_db():
    async with AsyncSessionLocal() as session:
        yield session
