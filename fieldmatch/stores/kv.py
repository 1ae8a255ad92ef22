"""Key/value persistence used for cache snapshots."""
from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Protocol

from sqlalchemy import Column, DateTime, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ..config import Settings, get_settings
from ..models import utcnow

logger = logging.getLogger(__name__)

Base = declarative_base()


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


class MemoryKeyValueStore:
    """Process-local store, mostly for tests and one-shot CLI runs."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self.values: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    async def set(self, key: str, value: str) -> None:
        self.values[key] = value

    async def delete(self, key: str) -> None:
        self.values.pop(key, None)


class KeyValueEntry(Base):
    """One persisted key/value pair."""

    __tablename__ = "kv_entries"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def as_dict(self) -> dict:
        return {
            "key": self.key,
            "size": len(self.value or ""),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class SqlKeyValueStore:
    """SQLAlchemy-backed store; blocking calls run in a worker thread."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        Base.metadata.create_all(bind=engine)

    @classmethod
    def from_url(cls, url: str) -> "SqlKeyValueStore":
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        return cls(create_engine(url, pool_pre_ping=True, connect_args=connect_args))

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SqlKeyValueStore":
        settings = settings or get_settings()
        return cls.from_url(settings.resolved_database_url())

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""

        session: Session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_sync(self, key: str) -> Optional[str]:
        with self.session() as session:
            entry = session.get(KeyValueEntry, key)
            return entry.value if entry is not None else None

    def set_sync(self, key: str, value: str) -> None:
        with self.session() as session:
            entry = session.get(KeyValueEntry, key)
            if entry is None:
                session.add(KeyValueEntry(key=key, value=value))
            else:
                entry.value = value
        logger.debug("Stored key", extra={"key": key, "size": len(value)})

    def delete_sync(self, key: str) -> None:
        with self.session() as session:
            entry = session.get(KeyValueEntry, key)
            if entry is not None:
                session.delete(entry)

    def entries(self) -> list[dict]:
        with self.session() as session:
            return [entry.as_dict() for entry in session.query(KeyValueEntry).order_by(KeyValueEntry.key)]

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self.get_sync, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self.set_sync, key, value)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self.delete_sync, key)

    def dispose(self) -> None:
        self._engine.dispose()


__all__ = [
    "Base",
    "KeyValueEntry",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SqlKeyValueStore",
]
