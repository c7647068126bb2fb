from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    pass


def is_memory_url(database_url: str) -> bool:
    return ":memory:" in database_url or database_url.rstrip("/").endswith("sqlite+aiosqlite:")


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine for the trade ledger.

    In-memory SQLite needs a single shared connection, otherwise every pooled
    connection would see its own empty database.
    """
    kwargs = {"echo": echo}
    if "sqlite" in database_url:
        kwargs["connect_args"] = {"check_same_thread": False}
    if is_memory_url(database_url):
        kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
    return create_async_engine(database_url, **kwargs)


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False  # Disable autoflush to avoid greenlet issues
    )


async def init_db(engine: AsyncEngine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
