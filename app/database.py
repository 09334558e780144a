import asyncio
import logging

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.config import (
    DATABASE_URL,
    DB_ECHO,
    DB_LOCK_TIMEOUT,
    DB_MAX_RETRIES,
    DB_RETRY_BACKOFF,
)
from app.errors import Busy, ParkingError, StorageFailure

Base = declarative_base()

# lock_not_available, serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"55P03", "40001", "40P01"}


def build_engine(url: str, lock_timeout: float = DB_LOCK_TIMEOUT, echo: bool = DB_ECHO):
    """Create an async engine whose lock waits are bounded by ``lock_timeout`` seconds."""
    if url.startswith("sqlite"):
        connect_args = {"timeout": lock_timeout}
    elif url.startswith("postgresql+asyncpg"):
        connect_args = {"server_settings": {"lock_timeout": str(int(lock_timeout * 1000))}}
    else:
        connect_args = {}
    return create_async_engine(url, echo=echo, connect_args=connect_args)


engine = build_engine(DATABASE_URL)
async_session = async_sessionmaker(engine, expire_on_commit=False)


async def init_db(bind=None):
    import app.models  # noqa: F401  registers the tables on Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db():
    async with async_session() as session:
        yield session


def is_contention(exc: DBAPIError) -> bool:
    orig = exc.orig
    if getattr(orig, "sqlstate", None) in RETRYABLE_SQLSTATES:
        return True
    text = str(orig).lower()
    return "database is locked" in text or "database is busy" in text


async def run_in_transaction(db: AsyncSession, work, retries: int = DB_MAX_RETRIES,
                             backoff: float = DB_RETRY_BACKOFF):
    """Run ``work(db)`` inside one transaction, retrying on lock contention.

    The transaction commits when ``work`` returns and rolls back on any exception.
    Contention that outlasts ``retries`` attempts surfaces as Busy; any other
    store error surfaces as StorageFailure.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            async with db.begin():
                return await work(db)
        except ParkingError:
            raise
        except DBAPIError as e:
            if not is_contention(e):
                raise StorageFailure(f"Transaction aborted: {e.orig}") from e
            if attempt > retries:
                raise Busy("Store is busy, retry the request") from e
            logging.warning(f"Transaction contention (attempt {attempt}/{retries}): {e.orig}")
            await asyncio.sleep(backoff * attempt)
        except SQLAlchemyError as e:
            raise StorageFailure(f"Store unavailable: {e}") from e
