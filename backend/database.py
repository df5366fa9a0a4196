from sqlalchemy import create_engine, Column, String, Text, DateTime
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol
import copy
import json
import os
import logging

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./cryptovision.db")

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=False, pool_pre_ping=True, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# Persisted slices of the simulator state
STATE_KEYS = ("portfolio", "alerts", "profile")


# ── Models ───────────────────────────────────────────────────────
class StoredState(Base):
    """One JSON document per state slice, last write wins."""

    __tablename__ = "stored_state"

    key = Column(String(64), primary_key=True)
    payload = Column(Text, nullable=False)
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


# ── Persistence port ─────────────────────────────────────────────
class StateStore(Protocol):
    def load(self, key: str) -> Optional[object]: ...

    def save(self, key: str, payload: object) -> None: ...


class MemoryStateStore:
    """Process-local store; used by tests and throwaway sessions."""

    def __init__(self):
        self._data: Dict[str, object] = {}

    def load(self, key: str) -> Optional[object]:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    def save(self, key: str, payload: object) -> None:
        self._data[key] = copy.deepcopy(payload)


class SqlStateStore:
    """StateStore backed by the stored_state table."""

    def __init__(self, db: Session):
        self.db = db

    def load(self, key: str) -> Optional[object]:
        row = self.db.get(StoredState, key)
        if not row:
            return None
        try:
            return json.loads(row.payload)
        except ValueError as exc:
            logger.warning("Discarding corrupt state %s: %s", key, exc)
            return None

    def save(self, key: str, payload: object) -> None:
        row = self.db.get(StoredState, key)
        body = json.dumps(payload)
        if row:
            row.payload = body
        else:
            self.db.add(StoredState(key=key, payload=body))
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise


# ── DB helpers ───────────────────────────────────────────────────
def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
