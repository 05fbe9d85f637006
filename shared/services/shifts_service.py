from __future__ import annotations

import logging
import random
from datetime import date
from typing import Mapping, Optional, Sequence

from shared.enums import ActivityType, ShiftType
from shared.errors import ValidationError
from shared.schemas import Employee, Shift
from shared.services.activity_ledger import ActivityLedger
from shared.services.consistency import find_double_bookings
from shared.services.shift_generator import DistributionSummary, generate_balanced_shifts, make_shift, summarize_distribution
from shared.services.shift_store import ShiftStore
from shared.utils import format_day, format_hhmm, iter_days, parse_hhmm


logger = logging.getLogger(__name__)


class ShiftService:
    """Manager-side shift actions; each one leaves a ledger entry."""

    def __init__(self, shifts: ShiftStore, ledger: ActivityLedger):
        self.shifts = shifts
        self.ledger = ledger

    async def create(
        self,
        *,
        actor: Employee,
        owner: Employee,
        day: date,
        shift_type: ShiftType,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
    ) -> Shift:
        shift = make_shift(owner, day, ShiftType(shift_type))
        if start_time:
            shift.start_time = format_hhmm(parse_hhmm(start_time))
        if end_time:
            shift.end_time = format_hhmm(parse_hhmm(end_time))

        same_day = await self.shifts.list_by_owner(shift.employee_id)
        if any(s.date == shift.date for s in same_day):
            # not blocked, reported by the consistency check
            logger.warning(
                "shift creates a double booking",
                extra={"owner": shift.employee_id, "date": format_day(shift.date)},
            )

        shift = await self.shifts.create(shift)
        await self.ledger.record(
            ActivityType.SHIFT_CREATED,
            f"{actor.name} created {shift.describe()} for {owner.name}",
            user_id=actor.id,
            user_name=actor.name,
            details={"shiftId": shift.id, "owner": shift.employee_id},
        )
        return shift

    async def delete(self, *, actor: Employee, shift_id: str) -> Shift:
        shift = await self.shifts.require(shift_id)
        await self.shifts.delete(shift.id)
        await self.ledger.record(
            ActivityType.SHIFT_DELETED,
            f"{actor.name} deleted {shift.describe()} of {shift.employee_name}",
            user_id=actor.id,
            user_name=actor.name,
            details={"shiftId": shift.id, "owner": shift.employee_id},
        )
        return shift

    async def move(
        self,
        *,
        actor: Employee,
        shift_id: str,
        new_owner: Employee,
        new_day: Optional[date] = None,
    ) -> Shift:
        """Reassign a shift to another employee and/or date (calendar drag)."""
        shift = await self.shifts.require(shift_id)
        fields: dict = {"employee_id": new_owner.short_id, "employee_name": new_owner.name}
        if new_day is not None:
            fields["date"] = new_day
        await self.shifts.update(shift.id, fields)
        moved = shift.model_copy(
            update={"employee_id": new_owner.short_id, "employee_name": new_owner.name, "date": new_day or shift.date}
        )

        if find_double_bookings(await self.shifts.list_by_owner(moved.employee_id), moved.date):
            logger.warning(
                "shift move creates a double booking",
                extra={"owner": moved.employee_id, "date": format_day(moved.date)},
            )

        await self.ledger.record(
            ActivityType.SHIFT_UPDATED,
            f"{actor.name} moved {shift.describe()} from {shift.employee_name} to {new_owner.name}"
            + (f" on {format_day(new_day)}" if new_day is not None and new_day != shift.date else ""),
            user_id=actor.id,
            user_name=actor.name,
            details={
                "shiftId": shift.id,
                "fromOwner": shift.employee_id,
                "toOwner": moved.employee_id,
                "fromDate": format_day(shift.date),
                "toDate": format_day(moved.date),
            },
        )
        return moved

    async def generate(
        self,
        *,
        actor: Employee,
        start: date,
        end: date,
        employees: Sequence[Employee],
        per_day: Optional[Mapping[str, int]] = None,
        seed: Optional[int] = None,
    ) -> tuple[list[Shift], DistributionSummary]:
        """Fill the open slots of [start, end]; already scheduled shifts are kept."""
        if not employees:
            raise ValidationError("no_employees", "no employees to schedule")
        if end < start:
            raise ValidationError("invalid_range", f"end {end} is before start {start}")
        existing: list[Shift] = []
        for day in iter_days(start, end):
            existing.extend(await self.shifts.list_by_date(day))

        planned = generate_balanced_shifts(start, end, employees, per_day, random.Random(seed), existing=existing)
        created = [await self.shifts.create(s) for s in planned]
        summary = summarize_distribution(existing + created, per_day)

        logger.info(
            "schedule generated",
            extra={
                "start": format_day(start),
                "end": format_day(end),
                "shifts": len(created),
                "kept": len(existing),
            },
        )
        await self.ledger.record(
            ActivityType.SHIFT_CREATED,
            f"{actor.name} generated {len(created)} shifts for {format_day(start)}..{format_day(end)}",
            user_id=actor.id,
            user_name=actor.name,
            details={"start": format_day(start), "end": format_day(end), "count": len(created)},
        )
        return created, summary
