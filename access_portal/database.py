"""
Database engine and SQL-backed pending-login store.
Lets several portal instances behind a load balancer share pending logins.
"""
import logging
import time
from typing import Callable

from sqlalchemy import create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from access_portal.config import STATE_TTL_SECONDS
from access_portal.flow_store import PendingAuthorization, StateStore
from access_portal.models import Base, PendingAuthorizationRecord

logger = logging.getLogger(__name__)


def make_engine(url: str) -> Engine:
    """Create engine; SQLite in-memory needs StaticPool so all connections share the same DB."""
    if url.startswith("sqlite:///:memory:"):
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


class SqlStateStore(StateStore):
    def __init__(
        self,
        engine: Engine,
        ttl_seconds: int = STATE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._ttl = ttl_seconds
        self._clock = clock
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        init_db(engine)

    def put(self, pending: PendingAuthorization) -> None:
        with self._session_factory() as db:
            self._purge(db)
            db.add(
                PendingAuthorizationRecord(
                    state=pending.state,
                    code_verifier=pending.code_verifier,
                    nonce=pending.nonce,
                    return_url=pending.return_url,
                    created_at=pending.created_at,
                )
            )
            db.commit()

    def take_and_validate(self, state: str) -> PendingAuthorization | None:
        with self._session_factory() as db:
            row = db.scalars(
                select(PendingAuthorizationRecord).where(PendingAuthorizationRecord.state == state)
            ).first()
            if row is None:
                return None
            pending = PendingAuthorization(
                state=row.state,
                code_verifier=row.code_verifier,
                nonce=row.nonce,
                return_url=row.return_url,
                created_at=row.created_at,
            )
            # Only the caller whose delete removed the row may use it
            deleted = db.execute(
                delete(PendingAuthorizationRecord).where(PendingAuthorizationRecord.state == state)
            ).rowcount
            db.commit()
        if deleted != 1:
            logger.info("Pending authorization consumed concurrently")
            return None
        if pending.expired(self._clock(), self._ttl):
            return None
        return pending

    def purge(self) -> int:
        with self._session_factory() as db:
            removed = self._purge(db)
            db.commit()
        return removed

    def _purge(self, db) -> int:
        cutoff = self._clock() - self._ttl
        result = db.execute(
            delete(PendingAuthorizationRecord).where(PendingAuthorizationRecord.created_at < cutoff)
        )
        return result.rowcount or 0
