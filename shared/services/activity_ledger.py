from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from shared.enums import ActivityType, Collection
from shared.schemas import ActivityLogEntry
from shared.store.base import ErrorHandler, OrderBy, Record, Store, Subscription, Transaction
from shared.utils import iso_now


logger = logging.getLogger(__name__)

NEWEST_FIRST = OrderBy("timestamp", descending=True)


class ActivityLedger:
    """Append-only log of mutating actions."""

    def __init__(self, store: Store):
        self.store = store

    async def record(
        self,
        kind: ActivityType,
        description: str,
        *,
        user_id: str = "",
        user_name: str = "",
        details: Optional[dict[str, Any]] = None,
        tx: Optional[Transaction] = None,
    ) -> ActivityLogEntry:
        """Append one entry. Inside a transaction the entry commits or rolls back with it."""
        entry = ActivityLogEntry(
            type=ActivityType(kind),
            description=str(description),
            user_id=str(user_id or ""),
            user_name=str(user_name or ""),
            timestamp=iso_now(),
            details=details,
        )
        writer = tx if tx is not None else self.store
        entry.id = await writer.insert(Collection.ACTIVITY_LOGS, entry.to_record())
        logger.info("activity recorded", extra={"kind": entry.type.value, "entry_id": entry.id, "user_id": entry.user_id})
        return entry

    async def list_recent(self, limit: int | None = None) -> list[ActivityLogEntry]:
        rows = await self.store.query(Collection.ACTIVITY_LOGS, None, NEWEST_FIRST)
        if limit is not None:
            rows = rows[: max(0, int(limit))]
        return [ActivityLogEntry.from_record(r) for r in rows]

    def subscribe(
        self,
        callback: Callable[[list[ActivityLogEntry]], Any],
        on_error: ErrorHandler | None = None,
    ) -> Subscription:
        async def _convert(rows: list[Record]) -> list[ActivityLogEntry]:
            return [ActivityLogEntry.from_record(r) for r in rows]

        return self.store.subscribe(
            Collection.ACTIVITY_LOGS, None, NEWEST_FIRST, callback, transform=_convert, on_error=on_error
        )
