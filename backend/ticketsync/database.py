"""Database setup with SQLAlchemy async."""

from collections.abc import AsyncGenerator, Callable
from typing import Any

from sqlalchemy import text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from ticketsync.config import get_settings

settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=10,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

REQUIRED_TABLES = (
    "tickets",
    "organizations",
    "agents",
    "groups",
    "sync_checkpoints",
    "aggregation_log",
    "analytics_daily",
    "analytics_agent_weekly",
    "analytics_org_monthly",
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def upsert(
    db: AsyncSession,
    model: type[Base],
    values: dict[str, Any],
    index_elements: list[str],
    on_conflict: Callable[[Any], dict[str, Any]] | None = None,
):
    """
    Build an INSERT ... ON CONFLICT DO UPDATE for the session's dialect.

    PostgreSQL in production, SQLite in tests. By default every column not in
    ``index_elements`` is overwritten with the incoming value. ``on_conflict``
    replaces that: it receives the statement's ``excluded`` namespace and
    returns the SET clause, so updates can be computed from the stored row.
    """
    dialect = db.get_bind().dialect.name
    insert = sqlite_insert if dialect == "sqlite" else pg_insert

    stmt = insert(model).values(**values)
    if on_conflict is None:
        set_ = {k: v for k, v in values.items() if k not in index_elements}
    else:
        set_ = on_conflict(stmt.excluded)

    return stmt.on_conflict_do_update(index_elements=index_elements, set_=set_)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db() -> None:
    """Create all tables (development helper; production uses migrations)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_db_ready() -> None:
    """Verify database connectivity and that the sync tables exist."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))

        columns = ", ".join(f"to_regclass('public.{t}') AS {t}" for t in REQUIRED_TABLES)
        result = await conn.execute(text(f"SELECT {columns}"))
        row = result.mappings().first()

        missing = [t for t in REQUIRED_TABLES if row is None or row[t] is None]
        if missing:
            raise RuntimeError(
                f"Database schema is missing tables: {', '.join(missing)} "
                "(run database init or check migrations)."
            )
