from __future__ import annotations

import logging
from collections.abc import Callable, Generator
from typing import TypeVar

from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from clockin.errors import TransactionAborted
from clockin.settings import get_settings

MAX_TRANSACTION_ATTEMPTS = 5

T = TypeVar("T")

logger = logging.getLogger("clockin.db")

engine = create_engine(get_settings().database_url, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False)

# JSONB on PostgreSQL, generic JSON on other dialects.
JsonColumn = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


def get_db() -> Generator[Session, None, None]:
    with SessionLocal() as db:
        yield db


def run_in_transaction(
    db: Session,
    work: Callable[[], T],
    *,
    max_attempts: int = MAX_TRANSACTION_ATTEMPTS,
    label: str = "transaction",
) -> T:
    """Run ``work`` and commit, retrying on optimistic-concurrency conflicts.

    ``work`` must read everything it needs from ``db`` on every call: after a
    conflict the session is rolled back and all loaded state is expired, so a
    retried attempt observes the winning writer's data.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            result = work()
            db.commit()
            return result
        except (StaleDataError, IntegrityError) as exc:
            db.rollback()
            logger.warning(
                "transaction_conflict",
                extra={
                    "label": label,
                    "attempt": attempt,
                    "error": exc.__class__.__name__,
                },
            )
        except Exception:
            db.rollback()
            raise
    raise TransactionAborted()
