"""
canonical entity store contract

records are plain dicts carrying an ``id`` (str) and a store-assigned
``created_at``; children of a sub-collection also carry ``parent_id``.
business code talks to this interface only, never to a concrete backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator


class EntityStore(ABC):
    """collection-oriented CRUD with sub-collections and atomic increments"""

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self.clock = clock

    # top-level collections
    @abstractmethod
    def get(self, collection: str, id: str) -> dict:
        """return record or raise NotFoundError"""

    @abstractmethod
    def list(self, collection: str, where: dict | None = None) -> list[dict]:
        """return records matching all equality filters, in insertion order"""

    def count(self, collection: str, where: dict | None = None) -> int:
        return len(self.list(collection, where))

    @abstractmethod
    def create(self, collection: str, data: dict) -> str:
        """insert a record; the store assigns id and created_at"""

    @abstractmethod
    def update(self, collection: str, id: str, changes: dict) -> None:
        """partial update; NotFoundError if the record is absent"""

    @abstractmethod
    def increment(self, collection: str, id: str, deltas: dict) -> None:
        """atomically add deltas to numeric fields"""

    @abstractmethod
    def delete(self, collection: str, id: str) -> None:
        """delete a record; deleting an absent record is a no-op"""

    # sub-collections
    @abstractmethod
    def get_child(self, collection: str, parent_id: str, child: str, id: str) -> dict: ...

    @abstractmethod
    def list_children(self, collection: str, parent_id: str, child: str,
                      where: dict | None = None) -> list[dict]: ...

    @abstractmethod
    def create_child(self, collection: str, parent_id: str, child: str, data: dict) -> str: ...

    @abstractmethod
    def update_child(self, collection: str, parent_id: str, child: str, id: str,
                     changes: dict) -> None: ...

    @abstractmethod
    def delete_child(self, collection: str, parent_id: str, child: str, id: str) -> None: ...

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """group writes; backends without transactions just run them in order"""
        yield

    def close(self) -> None:
        pass
