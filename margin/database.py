from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from .settings.config import settings

raw_url = settings.DATABASE_URL
if raw_url.startswith("sqlite:///") or raw_url == "sqlite://":
    # if someone provided a sync URL by mistake, upgrade it to async
    DATABASE_URL = raw_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
else:
    DATABASE_URL = raw_url


def make_engine(url: str = DATABASE_URL):
    """Build an async engine; in-memory SQLite shares one connection across sessions."""
    if url in ("sqlite+aiosqlite://", "sqlite+aiosqlite:///:memory:"):
        return create_async_engine(
            url,
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(url, echo=False, future=True)


engine = make_engine()
async_session_maker = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
Base = declarative_base()

async def get_db():
    async with async_session_maker() as session:
        yield session

async def init_db():
    # Local store is embedded; Alembic owns the schema only when explicitly disabled here
    if settings.RUN_DB_CREATE_ALL:
        from . import models  # noqa: F401  registers tables on Base
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
