"""Record store interface."""

from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import AbstractContextManager
from typing import Any, TypeVar

from pydantic import BaseModel

from engagement.errors import NotFoundError

ModelT = TypeVar("ModelT", bound=BaseModel)


class Transaction(ABC):
    """Unit of work over a record store.

    Reads see the transaction's own staged writes. Staged writes reach the
    store only when the owning ``transaction()`` block exits without an
    exception, and then all of them are applied together.
    """

    def __init__(self) -> None:
        self._staged: dict[tuple[str, str], BaseModel] = {}

    @abstractmethod
    def _read(self, kind: str, record_id: str) -> dict[str, Any] | None:
        """Read one committed snapshot."""

    @abstractmethod
    def _read_all(self, kind: str) -> Iterator[dict[str, Any]]:
        """Read every committed snapshot of a kind."""

    def get(self, model: type[ModelT], record_id: str) -> ModelT | None:
        """Get an entity snapshot, or None if it doesn't exist."""
        key = (model.record_kind, record_id)
        if key in self._staged:
            return self._staged[key].model_copy(deep=True)  # type: ignore[return-value]
        data = self._read(model.record_kind, record_id)
        return None if data is None else model.model_validate(data)

    def require(self, model: type[ModelT], record_id: str) -> ModelT:
        """Get an entity snapshot.

        Raises:
            NotFoundError: If the entity doesn't exist
        """
        entity = self.get(model, record_id)
        if entity is None:
            raise NotFoundError(model.record_kind, record_id)
        return entity

    def list(self, model: type[ModelT]) -> list[ModelT]:
        """List every snapshot of a kind, staged writes included."""
        kind = model.record_kind
        entities: dict[str, ModelT] = {}
        for data in self._read_all(kind):
            entity = model.model_validate(data)
            entities[entity.id] = entity  # type: ignore[attr-defined]
        for (staged_kind, record_id), entity in self._staged.items():
            if staged_kind == kind:
                entities[record_id] = entity.model_copy(deep=True)  # type: ignore[assignment]
        return list(entities.values())

    def put(self, entity: BaseModel) -> None:
        """Stage a snapshot for writing."""
        key = (entity.record_kind, entity.id)  # type: ignore[attr-defined]
        self._staged[key] = entity.model_copy(deep=True)

    @property
    def staged(self) -> dict[tuple[str, str], BaseModel]:
        return self._staged


class RecordStore(ABC):
    """Abstract record store.

    The store is the single source of truth for appointments, payments
    and cases. Backends must apply a transaction's writes atomically.
    """

    @abstractmethod
    def transaction(self) -> AbstractContextManager[Transaction]:
        """Open a transaction; writes commit on clean exit.

        Raises:
            Any exception raised inside the block, after discarding writes
        """

    def get(self, model: type[ModelT], record_id: str) -> ModelT | None:
        with self.transaction() as tx:
            return tx.get(model, record_id)

    def list(self, model: type[ModelT]) -> list[ModelT]:
        with self.transaction() as tx:
            return tx.list(model)
