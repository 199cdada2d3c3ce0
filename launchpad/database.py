"""Async SQLAlchemy: engine, session factory, table creation."""
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from launchpad.config import settings
from launchpad.models import Base

engine = create_async_engine(settings.database_url, echo=False)


def make_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


async_session_maker = make_session_maker(engine)


async def init_db(bind: AsyncEngine | None = None) -> None:
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
