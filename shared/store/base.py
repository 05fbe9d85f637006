"""Document store contract used by the scheduling core.

Four logical collections hold plain key/value records. Backends implement
the async CRUD/query primitives; live subscriptions are provided here on
top of ``query`` and are driven by the backend calling ``_notify`` after
each committed write.
"""
from __future__ import annotations

import asyncio
import copy
import inspect
import logging
import secrets
import string
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncContextManager, Awaitable, Callable, Mapping, Optional, Union

from shared.errors import IndexMissingError, StoreError


logger = logging.getLogger(__name__)

Record = dict[str, Any]
Filter = Mapping[str, Any]
Callback = Callable[[list[Any]], Union[None, Awaitable[None]]]
Transform = Callable[[list[Record]], Awaitable[list[Any]]]
ErrorHandler = Callable[[BaseException], None]

_ID_ALPHABET = string.ascii_letters + string.digits


def new_doc_id(length: int = 20) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


def matches(record: Mapping[str, Any], where: Optional[Filter]) -> bool:
    if not where:
        return True
    for k, v in where.items():
        if record.get(k) != v:
            return False
    return True


def sort_records(records: list[Record], order_by: Optional[OrderBy]) -> list[Record]:
    """Stable sort; records missing the field go last.

    Descending order is the exact reverse of ascending, so ties come out
    newest first.
    """
    if order_by is None:
        return list(records)
    present = [r for r in records if r.get(order_by.field) is not None]
    missing = [r for r in records if r.get(order_by.field) is None]
    present.sort(key=lambda r: r[order_by.field])
    if order_by.descending:
        present.reverse()
    return present + missing


def with_id(doc_id: str, data: Mapping[str, Any]) -> Record:
    rec = copy.deepcopy(dict(data))
    rec.pop("id", None)
    rec["id"] = str(doc_id)
    return rec


async def query_with_fallback(
    store: "Store",
    collection: str,
    where: Optional[Filter],
    order_by: Optional[OrderBy],
) -> list[Record]:
    """Filtered+ordered query; sorts client side when the backend lacks the index."""
    try:
        return await store.query(collection, where, order_by)
    except IndexMissingError:
        logger.warning(
            "index missing, using client-side sort",
            extra={"collection": collection, "where": dict(where or {}), "order_by": getattr(order_by, "field", None)},
        )
        rows = await store.query(collection, where, None)
        return sort_records(rows, order_by)


class Subscription:
    """One live view over a collection.

    Every change schedules a re-query; deliveries are sequential and a burst
    of changes collapses into one snapshot. After ``cancel`` nothing is
    delivered, including snapshots whose transform is still in flight.
    """

    def __init__(
        self,
        store: "Store",
        collection: str,
        where: Optional[Filter],
        order_by: Optional[OrderBy],
        callback: Callback,
        transform: Optional[Transform] = None,
        on_error: Optional[ErrorHandler] = None,
    ):
        self._store = store
        self.collection = str(collection)
        self.where = dict(where or {})
        self.order_by = order_by
        self._callback = callback
        self._transform = transform
        self._on_error = on_error
        self.active = True
        self.deliveries = 0
        self._dirty = False
        self._task: asyncio.Task | None = None

    def notify(self) -> None:
        if not self.active:
            return
        self._dirty = True
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while self.active and self._dirty:
            self._dirty = False
            try:
                rows = await query_with_fallback(self._store, self.collection, self.where or None, self.order_by)
                payload = await self._transform(rows) if self._transform is not None else rows
            except Exception as e:
                # consumer keeps its previous snapshot
                logger.exception("subscription refresh failed", extra={"collection": self.collection})
                if self._on_error is not None:
                    self._on_error(e)
                continue

            if not self.active:
                return

            try:
                res = self._callback(payload)
                if inspect.isawaitable(res):
                    await res
                self.deliveries += 1
            except Exception:
                logger.exception("subscription callback failed", extra={"collection": self.collection})

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self._store._unsubscribe(self)
        task = self._task
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()
        logger.debug("subscription cancelled", extra={"collection": self.collection})

    async def wait_idle(self) -> None:
        """Wait until pending deliveries are done (used by tests and shutdown)."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})


class Transaction(ABC):
    """Writes staged inside ``Store.transaction()``; applied together or not at all."""

    @abstractmethod
    async def get_by_id(self, collection: str, doc_id: str) -> Optional[Record]:
        ...

    @abstractmethod
    async def insert(self, collection: str, record: Mapping[str, Any]) -> str:
        ...

    @abstractmethod
    async def update(self, collection: str, doc_id: str, partial: Mapping[str, Any]) -> None:
        ...

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        ...


class Store(ABC):
    supports_transactions: bool = False
    # writes reach subscribers of other processes sharing the same backend
    shares_changes: bool = False

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = {}

    @abstractmethod
    async def insert(self, collection: str, record: Mapping[str, Any]) -> str:
        ...

    @abstractmethod
    async def get_all(self, collection: str) -> list[Record]:
        ...

    @abstractmethod
    async def get_by_id(self, collection: str, doc_id: str) -> Optional[Record]:
        ...

    @abstractmethod
    async def update(self, collection: str, doc_id: str, partial: Mapping[str, Any]) -> None:
        """Merge ``partial`` into an existing record; NotFoundError if absent."""

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Remove a record; deleting a missing id is a no-op."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        where: Optional[Filter] = None,
        order_by: Optional[OrderBy] = None,
    ) -> list[Record]:
        ...

    def transaction(self) -> AsyncContextManager[Transaction]:
        raise StoreError("transactions_unsupported", f"{type(self).__name__} has no transactions")

    def subscribe(
        self,
        collection: str,
        where: Optional[Filter],
        order_by: Optional[OrderBy],
        callback: Callback,
        *,
        transform: Optional[Transform] = None,
        on_error: Optional[ErrorHandler] = None,
    ) -> Subscription:
        sub = Subscription(self, collection, where, order_by, callback, transform=transform, on_error=on_error)
        self._subscriptions.setdefault(sub.collection, []).append(sub)
        # initial snapshot
        sub.notify()
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.collection, [])
        if sub in subs:
            subs.remove(sub)

    def _notify(self, collection: str) -> None:
        for sub in list(self._subscriptions.get(str(collection), [])):
            sub.notify()

    async def close(self) -> None:
        for subs in list(self._subscriptions.values()):
            for sub in list(subs):
                sub.cancel()
        self._subscriptions.clear()
