from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Mapping, Optional

from shared.enums import Collection, ShiftType
from shared.errors import NotFoundError, ValidationError
from shared.schemas import Shift
from shared.store.base import ErrorHandler, OrderBy, Record, Store, Subscription, query_with_fallback
from shared.utils import format_day, format_hhmm, parse_day, parse_hhmm


logger = logging.getLogger(__name__)

BY_DATE = OrderBy("date")

# attribute name -> stored field name
_UPDATABLE_FIELDS = {
    "employee_id": "employeeId",
    "employee_name": "employeeName",
    "date": "date",
    "type": "type",
    "start_time": "startTime",
    "end_time": "endTime",
}


def _to_stored(field: str, value: Any) -> Any:
    if field == "date":
        return format_day(parse_day(value))
    if field == "type":
        try:
            return ShiftType(value).value
        except ValueError as e:
            raise ValidationError("invalid_shift_type", f"unknown shift type {value!r}") from e
    if field in ("start_time", "end_time"):
        return format_hhmm(parse_hhmm(value))
    return str(value)


def _shifts(rows: list[Record]) -> list[Shift]:
    return [Shift.from_record(r) for r in rows]


class ShiftStore:
    """Shift records keyed by owner short id and date."""

    def __init__(self, store: Store):
        self.store = store

    async def create(self, shift: Shift) -> Shift:
        doc_id = await self.store.insert(Collection.SHIFTS, shift.to_record())
        logger.info(
            "shift created",
            extra={"shift_id": doc_id, "owner": shift.employee_id, "date": format_day(shift.date), "type": shift.type.value},
        )
        return shift.model_copy(update={"id": doc_id})

    async def get(self, shift_id: str) -> Optional[Shift]:
        rec = await self.store.get_by_id(Collection.SHIFTS, str(shift_id))
        return Shift.from_record(rec) if rec is not None else None

    async def require(self, shift_id: str) -> Shift:
        shift = await self.get(shift_id)
        if shift is None:
            raise NotFoundError(Collection.SHIFTS, str(shift_id), code="shift_not_found")
        return shift

    async def list_all(self) -> list[Shift]:
        return _shifts(await self.store.query(Collection.SHIFTS, None, BY_DATE))

    async def list_by_owner(self, owner_short_id: str) -> list[Shift]:
        rows = await query_with_fallback(
            self.store, Collection.SHIFTS, {"employeeId": str(owner_short_id)}, BY_DATE
        )
        return _shifts(rows)

    async def list_by_date(self, day: date) -> list[Shift]:
        return _shifts(await self.store.query(Collection.SHIFTS, {"date": format_day(day)}))

    async def update(self, shift_id: str, fields: Mapping[str, Any]) -> None:
        unknown = set(fields) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError("unknown_shift_fields", f"cannot update fields: {sorted(unknown)}")
        partial = {_UPDATABLE_FIELDS[k]: _to_stored(k, v) for k, v in fields.items()}
        try:
            await self.store.update(Collection.SHIFTS, str(shift_id), partial)
        except NotFoundError as e:
            raise NotFoundError(Collection.SHIFTS, str(shift_id), code="shift_not_found") from e
        logger.info("shift updated", extra={"shift_id": shift_id, "fields": sorted(partial)})

    async def delete(self, shift_id: str) -> None:
        await self.store.delete(Collection.SHIFTS, str(shift_id))
        logger.info("shift deleted", extra={"shift_id": shift_id})

    def subscribe_all(
        self,
        callback: Callable[[list[Shift]], Any],
        on_error: ErrorHandler | None = None,
    ) -> Subscription:
        async def _convert(rows: list[Record]) -> list[Shift]:
            return _shifts(rows)

        return self.store.subscribe(
            Collection.SHIFTS, None, BY_DATE, callback, transform=_convert, on_error=on_error
        )
