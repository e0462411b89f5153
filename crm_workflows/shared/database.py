from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from crm_workflows.shared.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_timeout=settings.DB_POOL_TIMEOUT,
    pool_pre_ping=True,
)
async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    """Creates missing tables. Existing tables are left untouched."""
    from crm_workflows.adapters.secondary.persistence.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
