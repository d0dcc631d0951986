"""In-process record store backend."""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import orjson
import structlog

from engagement.store.base import RecordStore, Transaction

logger = structlog.get_logger()


class _MemoryTransaction(Transaction):
    def __init__(self, records: dict[str, dict[str, bytes]]) -> None:
        super().__init__()
        self._records = records

    def _read(self, kind: str, record_id: str) -> dict[str, Any] | None:
        raw = self._records.get(kind, {}).get(record_id)
        return None if raw is None else orjson.loads(raw)

    def _read_all(self, kind: str) -> Iterator[dict[str, Any]]:
        for raw in list(self._records.get(kind, {}).values()):
            yield orjson.loads(raw)


class MemoryRecordStore(RecordStore):
    """Record store keeping serialized snapshots in memory.

    Snapshots are stored as JSON bytes so callers never share mutable
    state with the store.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict[str, bytes]] = {}
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        with self._lock:
            tx = _MemoryTransaction(self._records)
            yield tx
            for (kind, record_id), entity in tx.staged.items():
                self._records.setdefault(kind, {})[record_id] = orjson.dumps(
                    entity.model_dump(mode="json")
                )
            if tx.staged:
                logger.debug("Committed records", count=len(tx.staged))

    def count(self, kind: str) -> int:
        """Number of committed records of a kind."""
        return len(self._records.get(kind, {}))
