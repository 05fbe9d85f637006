from __future__ import annotations

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional

from shared.errors import IndexMissingError, NotFoundError

from .base import Filter, OrderBy, Record, Store, Transaction, matches, new_doc_id, sort_records, with_id


logger = logging.getLogger(__name__)


class MemoryStore(Store):
    """Process-local document store.

    ``composite_indexes=False`` makes filtered queries that order on another
    field fail with IndexMissingError, the way a document database does
    before the composite index is built.
    """

    supports_transactions = True

    def __init__(self, *, composite_indexes: bool = True):
        super().__init__()
        self.composite_indexes = composite_indexes
        self._data: dict[str, dict[str, Record]] = {}
        self._lock = asyncio.Lock()

    def _collection(self, collection: str) -> dict[str, Record]:
        return self._data.setdefault(str(collection), {})

    async def insert(self, collection: str, record: Mapping[str, Any]) -> str:
        doc_id = new_doc_id()
        async with self._lock:
            self._collection(collection)[doc_id] = with_id(doc_id, record)
        logger.debug("memory insert", extra={"collection": collection, "id": doc_id})
        self._notify(collection)
        return doc_id

    async def get_all(self, collection: str) -> list[Record]:
        async with self._lock:
            return [copy.deepcopy(r) for r in self._collection(collection).values()]

    async def get_by_id(self, collection: str, doc_id: str) -> Optional[Record]:
        async with self._lock:
            rec = self._collection(collection).get(str(doc_id))
            return copy.deepcopy(rec) if rec is not None else None

    async def update(self, collection: str, doc_id: str, partial: Mapping[str, Any]) -> None:
        async with self._lock:
            _apply_update(self._collection(collection), collection, doc_id, partial)
        logger.debug("memory update", extra={"collection": collection, "id": doc_id, "fields": sorted(partial)})
        self._notify(collection)

    async def delete(self, collection: str, doc_id: str) -> None:
        async with self._lock:
            removed = self._collection(collection).pop(str(doc_id), None)
        if removed is not None:
            logger.debug("memory delete", extra={"collection": collection, "id": doc_id})
            self._notify(collection)

    async def query(
        self,
        collection: str,
        where: Optional[Filter] = None,
        order_by: Optional[OrderBy] = None,
    ) -> list[Record]:
        if where and order_by is not None and not self.composite_indexes:
            if set(where) != {order_by.field}:
                raise IndexMissingError(
                    "index_missing",
                    f"query on {collection} filtered by {sorted(where)} ordered by {order_by.field} requires an index",
                )
        async with self._lock:
            rows = [copy.deepcopy(r) for r in self._collection(collection).values() if matches(r, where)]
        return sort_records(rows, order_by)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        async with self._lock:
            tx = _MemoryTransaction(self._data)
            yield tx
            for name, docs in tx.staged.items():
                self._data[name] = docs
        logger.debug("memory transaction committed", extra={"collections": sorted(tx.staged)})
        for name in tx.staged:
            self._notify(name)


def _apply_update(docs: dict[str, Record], collection: str, doc_id: str, partial: Mapping[str, Any]) -> None:
    rec = docs.get(str(doc_id))
    if rec is None:
        raise NotFoundError(str(collection), str(doc_id))
    for k, v in partial.items():
        if k == "id":
            continue
        rec[k] = copy.deepcopy(v)


class _MemoryTransaction(Transaction):
    def __init__(self, data: dict[str, dict[str, Record]]):
        self._data = data
        self.staged: dict[str, dict[str, Record]] = {}

    def _docs(self, collection: str) -> dict[str, Record]:
        name = str(collection)
        if name not in self.staged:
            self.staged[name] = copy.deepcopy(self._data.get(name, {}))
        return self.staged[name]

    async def get_by_id(self, collection: str, doc_id: str) -> Optional[Record]:
        name = str(collection)
        docs = self.staged.get(name, self._data.get(name, {}))
        rec = docs.get(str(doc_id))
        return copy.deepcopy(rec) if rec is not None else None

    async def insert(self, collection: str, record: Mapping[str, Any]) -> str:
        doc_id = new_doc_id()
        self._docs(collection)[doc_id] = with_id(doc_id, record)
        return doc_id

    async def update(self, collection: str, doc_id: str, partial: Mapping[str, Any]) -> None:
        _apply_update(self._docs(collection), collection, doc_id, partial)

    async def delete(self, collection: str, doc_id: str) -> None:
        self._docs(collection).pop(str(doc_id), None)
