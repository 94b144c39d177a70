# database/state_store.py
# Leaderboard Scoring — StateStore backed by the scoring_state table.
# Lets several API replicas share usage caps, rate windows and event histories.
# Imports from: database/db.py, database/models.py, scoring/state_store.py, utils/logger.py

import json
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import update as sql_update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from database.db import SessionLocal, db_session
from database.models import ScoringState
from scoring.state_store import StateStore, Updater
from utils.logger import get_logger

log = get_logger("database.state_store")

# One retry covers two replicas racing to insert the same new key
_UPDATE_ATTEMPTS: int = 2


class SqlStateStore(StateStore):
    """
    Each call runs in its own short transaction.

    update() holds the row's write lock from its first statement until
    commit, so replicas sharing the database serialise read-modify-write
    cycles on the same key instead of overwriting each other.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self.session_factory = session_factory

    def get(self, namespace: str, key: str) -> Optional[dict[str, Any]]:
        with db_session(self.session_factory) as db:
            row = self._find(db, namespace, key)
            return json.loads(row.payload) if row else None

    def put(self, namespace: str, key: str, value: dict[str, Any]) -> None:
        with db_session(self.session_factory) as db:
            self._write(db, self._find(db, namespace, key), namespace, key, value)

    def update(self, namespace: str, key: str, fn: Updater) -> dict[str, Any]:
        attempt = 1
        while True:
            try:
                with db_session(self.session_factory) as db:
                    self._lock_key(db, namespace, key)
                    row = self._find(db, namespace, key, for_update=True)
                    value = fn(json.loads(row.payload) if row else None)
                    self._write(db, row, namespace, key, value)
                return value
            except IntegrityError:
                if attempt >= _UPDATE_ATTEMPTS:
                    raise
                log.warning("state_update_retry", namespace=namespace, key=key, attempt=attempt)
                attempt += 1

    def delete(self, namespace: str, key: str) -> None:
        with db_session(self.session_factory) as db:
            (
                db.query(ScoringState)
                .filter(ScoringState.namespace == namespace, ScoringState.state_key == key)
                .delete()
            )

    def keys(self, namespace: str) -> list[str]:
        with db_session(self.session_factory) as db:
            rows = (
                db.query(ScoringState.state_key)
                .filter(ScoringState.namespace == namespace)
                .all()
            )
            return [row.state_key for row in rows]

    # ── Internals ─────────────────────────────

    @staticmethod
    def _lock_key(db: Session, namespace: str, key: str) -> None:
        # A write as the first statement takes SQLite's database write lock
        # up front; SQLite ignores FOR UPDATE.
        db.execute(
            sql_update(ScoringState)
            .where(ScoringState.namespace == namespace, ScoringState.state_key == key)
            .values(updated_at=ScoringState.updated_at)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def _find(db: Session, namespace: str, key: str, for_update: bool = False) -> Optional[ScoringState]:
        query = db.query(ScoringState).filter(
            ScoringState.namespace == namespace,
            ScoringState.state_key == key,
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def _write(
        db: Session,
        row: Optional[ScoringState],
        namespace: str,
        key: str,
        value: dict[str, Any],
    ) -> None:
        payload = json.dumps(value, default=str)
        if row:
            row.payload    = payload
            row.updated_at = datetime.now(timezone.utc)
        else:
            db.add(ScoringState(
                namespace=namespace,
                state_key=key,
                payload=payload,
                updated_at=datetime.now(timezone.utc),
            ))
