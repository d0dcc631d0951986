"""SQLAlchemy record store backend."""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import JSON, DateTime, Engine, String, create_engine, func, select
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from engagement.store.base import RecordStore, Transaction

logger = structlog.get_logger()


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class RecordRow(Base):
    """Entity snapshot keyed by kind and id."""

    __tablename__ = "records"

    kind: Mapped[str] = mapped_column(String(32), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSON)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class _SQLTransaction(Transaction):
    def __init__(self, session: Session) -> None:
        super().__init__()
        self._session = session

    def _read(self, kind: str, record_id: str) -> dict[str, Any] | None:
        row = self._session.get(RecordRow, (kind, record_id))
        return None if row is None else row.data

    def _read_all(self, kind: str) -> Iterator[dict[str, Any]]:
        rows = self._session.scalars(select(RecordRow).where(RecordRow.kind == kind))
        for row in rows:
            yield row.data


class SQLRecordStore(RecordStore):
    """Record store persisting snapshots through SQLAlchemy.

    Each transaction runs in its own session; every staged write is merged
    and committed together, or rolled back if anything fails.
    """

    def __init__(self, database_url: str | None = None, engine: Engine | None = None) -> None:
        if engine is None:
            if not database_url:
                raise ValueError("database_url or engine is required")
            engine = create_engine(database_url, pool_pre_ping=True)
        self.engine = engine
        Base.metadata.create_all(self.engine)
        self._session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        session = self._session_factory()
        try:
            tx = _SQLTransaction(session)
            yield tx
            for (kind, record_id), entity in tx.staged.items():
                session.merge(
                    RecordRow(kind=kind, id=record_id, data=entity.model_dump(mode="json"))
                )
            session.commit()
        except Exception:
            session.rollback()
            logger.warning("Rolled back record transaction")
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()
