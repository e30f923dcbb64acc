"""
Async SQLAlchemy engine + session factory. PostgreSQL in production; SQLite
(aiosqlite) serves as the development and test database.

The engine is created once at import time and reused across all requests.
Each request gets its own short-lived AsyncSession through `get_db`.

Relationship rows (likes, follows) and first-login users are written with
`insert_ignore`, which compiles to "insert ... on conflict (primary key) do
nothing" so that repeated requests never duplicate rows.
"""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from murmur.config import settings

logger = logging.getLogger(__name__)

# SQLSTATE codes (PostgreSQL)
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"


def _engine_kwargs(url: str) -> dict:
    if url.startswith("postgresql"):
        return {
            "pool_pre_ping": True,
            "pool_size": settings.db_pool_size,
            "max_overflow": settings.db_max_overflow,
        }
    return {}


engine = create_async_engine(
    settings.sqlalchemy_url,
    echo=False,
    **_engine_kwargs(settings.sqlalchemy_url),
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def init_db() -> None:
    """Create all tables if they don't exist (development only, idempotent)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def get_db():
    """FastAPI dependency that yields an async DB session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ─────────────────────────── Idempotent writes ────────────────────────────

def _insert_for(session: AsyncSession):
    # SQLite is the development and test database (DATABASE_URL=sqlite+aiosqlite://)
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"insert_ignore is not supported on {dialect}")
    return insert


async def insert_ignore(session: AsyncSession, model, **values) -> bool:
    """
    Insert a row unless its primary key already exists.
    Returns True when a row was actually written.
    Conflicts on other unique columns and foreign key violations still
    raise IntegrityError.
    """
    insert = _insert_for(session)
    primary_key = [column.name for column in model.__table__.primary_key.columns]
    stmt = insert(model).values(**values).on_conflict_do_nothing(index_elements=primary_key)
    result = await session.execute(stmt)
    return result.rowcount > 0


# ─────────────────────────── Error classification ─────────────────────────

# PostgreSQL SQLSTATE codes, plus the extended result codes of the SQLite
# development database (sqlite3.Error.sqlite_errorname)
_UNIQUE_CODES = {UNIQUE_VIOLATION, "SQLITE_CONSTRAINT_UNIQUE", "SQLITE_CONSTRAINT_PRIMARYKEY"}
_FOREIGN_KEY_CODES = {FOREIGN_KEY_VIOLATION, "SQLITE_CONSTRAINT_FOREIGNKEY"}


def _error_code(exc: IntegrityError) -> str | None:
    orig = exc.orig
    return (
        getattr(orig, "sqlstate", None)
        or getattr(orig, "pgcode", None)
        or getattr(orig, "sqlite_errorname", None)
    )


def is_unique_violation(exc: IntegrityError) -> bool:
    return _error_code(exc) in _UNIQUE_CODES


def is_foreign_key_violation(exc: IntegrityError) -> bool:
    return _error_code(exc) in _FOREIGN_KEY_CODES
