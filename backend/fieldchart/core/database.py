"""Database connection and session management for the encounter service."""

from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from fieldchart.core.config import settings


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    Pool sizing only applies to server databases; SQLite (tests, the
    on-device store) uses SQLAlchemy's default pool for its dialect.
    """
    options: dict[str, Any] = {"echo": echo}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_RECYCLE,
            pool_pre_ping=True,  # Verify connections before using them
        )
    return create_async_engine(url, **options)


engine = build_engine(settings.DATABASE_URL, echo=settings.APP_DEBUG)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a request-scoped session.

    Usage:
        @router.get("/encounters/{encounter_id}")
        async def get_encounter(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_maker() as session:
        yield session


async def init_models(target: AsyncEngine = engine) -> None:
    """Create server tables that do not exist yet."""
    from fieldchart.models import Base

    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
