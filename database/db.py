# database/db.py
# Leaderboard Scoring — Engine, session factory, and table initialisation.
# Imports from: database/models.py, utils/logger.py
# All other modules obtain a DB session via get_db() or db_session().

import os
from contextlib import contextmanager
from typing import Generator

from dotenv import load_dotenv
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from database.models import Base
from utils.logger import get_logger

load_dotenv()

log = get_logger("database.db")

# ─────────────────────────────────────────────
# Engine configuration
# ─────────────────────────────────────────────

DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./leaderboard.db")


def build_engine(url: str, **kwargs) -> Engine:
    """SQLite engines get cross-thread access plus WAL and foreign keys."""
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True, **kwargs)

    engine = create_engine(url, connect_args={"check_same_thread": False}, **kwargs)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()

    return engine


engine = build_engine(DATABASE_URL)

SessionLocal: sessionmaker[Session] = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)


# ─────────────────────────────────────────────
# FastAPI dependency
#   def my_route(db: Session = Depends(get_db)): ...
# ─────────────────────────────────────────────

def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def db_session(factory: sessionmaker = SessionLocal) -> Generator[Session, None, None]:
    """Context-manager variant for non-route code such as the SQL state store."""
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind: Engine = engine) -> None:
    """Creates missing tables. Safe on every startup."""
    log.info("db_init_start", database_url=str(bind.url))
    try:
        Base.metadata.create_all(bind=bind)
        log.info("db_tables_created")
    except Exception as exc:
        log.exception("db_init_failed", error=str(exc))
        raise


def check_db_health() -> bool:
    try:
        with db_session() as db:
            db.execute(text("SELECT 1"))
        return True
    except Exception as exc:
        log.error("db_health_check_failed", error=str(exc))
        return False
