from __future__ import annotations

import logging
import random
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Mapping, Optional, Sequence

from shared.enums import SHIFT_TIMES, ShiftType
from shared.errors import ValidationError
from shared.schemas import Employee, Shift
from shared.utils import format_hhmm, iter_days


logger = logging.getLogger(__name__)

DEFAULT_PER_DAY: dict[str, int] = {
    ShiftType.DAY.value: 2,
    ShiftType.AFTERNOON.value: 2,
    ShiftType.NIGHT.value: 1,
}


def make_shift(owner: Employee, day: date, shift_type: ShiftType) -> Shift:
    start, end = SHIFT_TIMES[ShiftType(shift_type)]
    return Shift(
        employee_id=owner.short_id,
        employee_name=owner.name,
        date=day,
        type=ShiftType(shift_type),
        start_time=format_hhmm(start),
        end_time=format_hhmm(end),
    )


def _unique_by_short_id(employees: Sequence[Employee]) -> list[Employee]:
    # colliding short ids are one identity for shift ownership; first one wins
    seen: dict[str, Employee] = {}
    for emp in employees:
        sid = emp.short_id
        if sid in seen:
            logger.warning(
                "short id collision, employee left out of generation",
                extra={"short_id": sid, "kept": seen[sid].id, "skipped": emp.id},
            )
            continue
        seen[sid] = emp
    return list(seen.values())


def generate_balanced_shifts(
    start: date,
    end: date,
    employees: Sequence[Employee],
    per_day: Optional[Mapping[str, int]] = None,
    rng: Optional[random.Random] = None,
    existing: Sequence[Shift] = (),
) -> list[Shift]:
    """Uniform random roster for every date in [start, end].

    Employees are shuffled each day and take the open day, afternoon and
    night slots in that order; everyone left over is off. ``existing``
    shifts already fill their slots and keep their owners busy for that
    date, so nobody (by short id) ends up with two shifts on one date.
    """
    if end < start:
        raise ValidationError("invalid_range", f"end {end} is before start {start}")
    per_day = dict(per_day or DEFAULT_PER_DAY)
    target: dict[ShiftType, int] = {}
    for t in ShiftType:
        n = int(per_day.get(t.value, 0) or 0)
        if n < 0:
            raise ValidationError("invalid_staffing", f"negative count for {t.value}")
        target[t] = n

    pool = _unique_by_short_id(employees)
    needed = sum(target.values())
    if len(pool) < needed:
        raise ValidationError(
            "not_enough_employees",
            f"{needed} shifts per day need at least {needed} employees, got {len(pool)}",
        )

    filled: dict[date, Counter] = defaultdict(Counter)
    booked: dict[date, set[str]] = defaultdict(set)
    for s in existing:
        filled[s.date][s.type] += 1
        booked[s.date].add(s.employee_id)

    rng = rng or random.Random()
    out: list[Shift] = []
    for day in iter_days(start, end):
        slots: list[ShiftType] = []
        for t, n in target.items():
            slots.extend([t] * max(0, n - filled[day][t]))
        if not slots:
            continue
        free = [e for e in pool if e.short_id not in booked[day]]
        if len(free) < len(slots):
            raise ValidationError(
                "not_enough_employees",
                f"{day.isoformat()} has {len(slots)} open shifts but only {len(free)} free employees",
            )
        rng.shuffle(free)
        for emp, t in zip(free, slots):
            out.append(make_shift(emp, day, t))
    return out


@dataclass
class DistributionSummary:
    per_employee: dict[str, int] = field(default_factory=dict)
    per_type: dict[str, int] = field(default_factory=dict)
    per_employee_type: dict[str, dict[str, int]] = field(default_factory=dict)
    # date -> {type: actual count} for dates that differ from the target
    staffing_deviations: dict[str, dict[str, int]] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "perEmployee": dict(self.per_employee),
            "perType": dict(self.per_type),
            "perEmployeeType": {k: dict(v) for k, v in self.per_employee_type.items()},
            "staffingDeviations": {k: dict(v) for k, v in self.staffing_deviations.items()},
        }


def summarize_distribution(shifts: Sequence[Shift], per_day: Optional[Mapping[str, int]] = None) -> DistributionSummary:
    per_day = dict(per_day or DEFAULT_PER_DAY)
    per_employee = Counter(s.employee_id for s in shifts)
    per_type = Counter(s.type.value for s in shifts)

    per_employee_type: dict[str, Counter] = defaultdict(Counter)
    per_date: dict[str, Counter] = defaultdict(Counter)
    for s in shifts:
        per_employee_type[s.employee_id][s.type.value] += 1
        per_date[s.date.isoformat()][s.type.value] += 1

    deviations: dict[str, dict[str, int]] = {}
    for d, counts in sorted(per_date.items()):
        actual = {t.value: int(counts.get(t.value, 0)) for t in ShiftType}
        if any(actual[t.value] != int(per_day.get(t.value, 0) or 0) for t in ShiftType):
            deviations[d] = actual

    return DistributionSummary(
        per_employee=dict(per_employee),
        per_type=dict(per_type),
        per_employee_type={k: dict(v) for k, v in per_employee_type.items()},
        staffing_deviations=deviations,
    )
