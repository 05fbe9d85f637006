"""Document store over PostgreSQL.

Every committed write also appends a row to ``document_changes`` in the
same transaction. Each store instance polls that feed and refreshes its
own live views for writes made by other processes (web, bot), so a swap
accepted from Telegram reaches the dashboards served by the web process.
"""
from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator, Mapping, Optional

from sqlalchemy import Select, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.config import settings
from shared.db import get_sessionmaker
from shared.errors import NotFoundError, StoreError
from shared.models import Document, DocumentChange

from .base import Filter, OrderBy, Record, Store, Subscription, Transaction, new_doc_id, with_id


logger = logging.getLogger(__name__)

# writes older than this are assumed to be seen; covers transactions that commit late
CHANGE_LOOKBACK = timedelta(seconds=30)
PRUNE_EVERY_POLLS = 60


def build_query(collection: str, where: Optional[Filter] = None, order_by: Optional[OrderBy] = None) -> Select:
    q = select(Document).where(Document.collection == str(collection))
    if where:
        # JSONB containment is exact equality for scalar values
        q = q.where(Document.data.contains(dict(where)))
    if order_by is not None:
        col = Document.data[order_by.field].astext
        if order_by.descending:
            q = q.order_by(col.desc().nullslast(), Document.seq.desc())
        else:
            q = q.order_by(col.asc().nullslast(), Document.seq.asc())
    else:
        q = q.order_by(Document.seq.asc())
    return q


def recent_changes_query(lookback: timedelta = CHANGE_LOOKBACK) -> Select:
    return (
        select(DocumentChange.id, DocumentChange.collection, DocumentChange.origin)
        .where(DocumentChange.created_at >= func.now() - lookback)
        .order_by(DocumentChange.id.asc())
    )


class SqlDocumentStore(Store):
    """Documents kept as JSONB rows of one table."""

    supports_transactions = True
    shares_changes = True

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession] | None = None,
        *,
        poll_interval: float | None = None,
        retention_minutes: int | None = None,
    ):
        super().__init__()
        self._sessionmaker = sessionmaker
        self.origin = uuid.uuid4().hex
        self.poll_interval = float(
            settings.STORE_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        )
        self.retention = timedelta(
            minutes=int(settings.STORE_CHANGE_RETENTION_MINUTES if retention_minutes is None else retention_minutes)
        )
        # change ids inside the lookback window already handled; None until the first poll
        self._seen: set[int] | None = None
        self._polls = 0
        self._poller: asyncio.Task | None = None

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        maker = self._sessionmaker or get_sessionmaker()
        session = maker()
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.exception("document store error")
            raise StoreError("sql_error", str(e)) from e
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def insert(self, collection: str, record: Mapping[str, Any]) -> str:
        async with self._session() as session:
            doc_id = await _insert(session, collection, record)
            _record_change(session, self.origin, collection, doc_id, "insert")
        logger.debug("sql insert", extra={"collection": collection, "id": doc_id})
        self._notify(collection)
        return doc_id

    async def get_all(self, collection: str) -> list[Record]:
        return await self.query(collection)

    async def get_by_id(self, collection: str, doc_id: str) -> Optional[Record]:
        async with self._session() as session:
            row = await _load(session, collection, doc_id)
            return with_id(row.doc_id, row.data) if row is not None else None

    async def update(self, collection: str, doc_id: str, partial: Mapping[str, Any]) -> None:
        async with self._session() as session:
            await _update(session, collection, doc_id, partial)
            _record_change(session, self.origin, collection, doc_id, "update")
        logger.debug("sql update", extra={"collection": collection, "id": doc_id, "fields": sorted(partial)})
        self._notify(collection)

    async def delete(self, collection: str, doc_id: str) -> None:
        async with self._session() as session:
            removed = await _delete(session, collection, doc_id)
            if removed:
                _record_change(session, self.origin, collection, doc_id, "delete")
        if removed:
            logger.debug("sql delete", extra={"collection": collection, "id": doc_id})
            self._notify(collection)

    async def query(
        self,
        collection: str,
        where: Optional[Filter] = None,
        order_by: Optional[OrderBy] = None,
    ) -> list[Record]:
        async with self._session() as session:
            rows = (await session.execute(build_query(collection, where, order_by))).scalars().all()
            return [with_id(r.doc_id, r.data) for r in rows]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        async with self._session() as session:
            tx = _SqlTransaction(session, self.origin)
            yield tx
        logger.debug("sql transaction committed", extra={"collections": sorted(tx.touched)})
        for name in tx.touched:
            self._notify(name)

    # ========== Change feed ==========

    def subscribe(self, *args, **kwargs) -> Subscription:
        sub = super().subscribe(*args, **kwargs)
        if self._poller is None or self._poller.done():
            self._poller = asyncio.get_running_loop().create_task(self._poll_loop())
        return sub

    async def poll_changes(self) -> set[str]:
        """Notify live views of collections changed by other store instances.

        The first call only marks what is already in the feed as seen.
        """
        async with self._session() as session:
            rows = (await session.execute(recent_changes_query())).all()

        ids = {int(r.id) for r in rows}
        if self._seen is None:
            self._seen = ids
            return set()

        changed = {str(r.collection) for r in rows if int(r.id) not in self._seen and r.origin != self.origin}
        self._seen = ids
        if changed:
            logger.debug("change feed", extra={"collections": sorted(changed)})
        for name in changed:
            self._notify(name)
        return changed

    async def prune_changes(self) -> int:
        async with self._session() as session:
            res = await session.execute(
                delete(DocumentChange).where(DocumentChange.created_at < func.now() - self.retention)
            )
        if res.rowcount:
            logger.info("change feed pruned", extra={"removed": int(res.rowcount)})
        return int(res.rowcount or 0)

    async def _poll_loop(self) -> None:
        logger.info("change feed polling started", extra={"origin": self.origin, "interval": self.poll_interval})
        while True:
            try:
                await self.poll_changes()
                self._polls += 1
                if self._polls % PRUNE_EVERY_POLLS == 0:
                    await self.prune_changes()
            except Exception:
                # live views keep their last snapshot until the next successful poll
                logger.exception("change feed poll failed")
            await asyncio.sleep(self.poll_interval)

    async def close(self) -> None:
        poller, self._poller = self._poller, None
        if poller is not None and not poller.done():
            poller.cancel()
            try:
                await poller
            except asyncio.CancelledError:
                pass
        await super().close()


def _record_change(session: AsyncSession, origin: str, collection: str, doc_id: str, op: str) -> None:
    session.add(DocumentChange(collection=str(collection), doc_id=str(doc_id), op=op, origin=origin))


async def _load(session: AsyncSession, collection: str, doc_id: str, *, for_update: bool = False) -> Document | None:
    q = select(Document).where(Document.collection == str(collection)).where(Document.doc_id == str(doc_id))
    if for_update:
        q = q.with_for_update()
    return (await session.execute(q)).scalar_one_or_none()


async def _insert(session: AsyncSession, collection: str, record: Mapping[str, Any]) -> str:
    doc_id = new_doc_id()
    data = with_id(doc_id, record)
    data.pop("id", None)
    session.add(Document(collection=str(collection), doc_id=doc_id, data=data))
    await session.flush()
    return doc_id


async def _update(session: AsyncSession, collection: str, doc_id: str, partial: Mapping[str, Any]) -> None:
    row = await _load(session, collection, doc_id, for_update=True)
    if row is None:
        raise NotFoundError(str(collection), str(doc_id))
    data = copy.deepcopy(dict(row.data or {}))
    for k, v in partial.items():
        if k == "id":
            continue
        data[k] = copy.deepcopy(v)
    # reassign so the JSONB change is detected
    row.data = data
    await session.flush()


async def _delete(session: AsyncSession, collection: str, doc_id: str) -> bool:
    res = await session.execute(
        delete(Document).where(Document.collection == str(collection)).where(Document.doc_id == str(doc_id))
    )
    return bool(res.rowcount)


class _SqlTransaction(Transaction):
    def __init__(self, session: AsyncSession, origin: str):
        self._session = session
        self._origin = origin
        self.touched: set[str] = set()

    async def get_by_id(self, collection: str, doc_id: str) -> Optional[Record]:
        row = await _load(self._session, collection, doc_id, for_update=True)
        return with_id(row.doc_id, row.data) if row is not None else None

    async def insert(self, collection: str, record: Mapping[str, Any]) -> str:
        doc_id = await _insert(self._session, collection, record)
        _record_change(self._session, self._origin, collection, doc_id, "insert")
        self.touched.add(str(collection))
        return doc_id

    async def update(self, collection: str, doc_id: str, partial: Mapping[str, Any]) -> None:
        await _update(self._session, collection, doc_id, partial)
        _record_change(self._session, self._origin, collection, doc_id, "update")
        self.touched.add(str(collection))

    async def delete(self, collection: str, doc_id: str) -> None:
        if await _delete(self._session, collection, doc_id):
            _record_change(self._session, self._origin, collection, doc_id, "delete")
            self.touched.add(str(collection))
