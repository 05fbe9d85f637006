"""Read-only diagnostics over employees, shifts and swap requests.

Works on raw records so that malformed data is still reported instead of
failing validation. Nothing here writes to the store.
"""
from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Optional

from shared.enums import Collection, SwapRequestStatus, WarningKind
from shared.errors import ConsistencyWarning, ValidationError
from shared.schemas import Employee, Shift
from shared.services.identity import ShortIdIndex, short_id
from shared.store.base import Record, Store
from shared.utils import iso_now


logger = logging.getLogger(__name__)


@dataclass
class ConsistencyReport:
    generated_at: str
    warnings: list[ConsistencyWarning] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.warnings

    def by_kind(self, kind: WarningKind | str) -> list[ConsistencyWarning]:
        return [w for w in self.warnings if w.kind == str(kind)]

    def as_dict(self) -> dict[str, Any]:
        return {
            "generatedAt": self.generated_at,
            "ok": self.ok,
            "warnings": [
                {"kind": w.kind, "identifier": w.identifier, "message": w.message, "details": dict(w.details)}
                for w in self.warnings
            ],
            "stats": dict(self.stats),
        }


def find_double_bookings(
    shifts: Iterable[Shift],
    day: Optional[date] = None,
) -> dict[tuple[str, date], list[Shift]]:
    """(owner, date) pairs holding more than one shift, optionally for one date."""
    groups: dict[tuple[str, date], list[Shift]] = defaultdict(list)
    for s in shifts:
        if day is not None and s.date != day:
            continue
        groups[(s.employee_id, s.date)].append(s)
    return {k: v for k, v in groups.items() if len(v) > 1}


class ConsistencyChecker:
    def __init__(self, store: Store):
        self.store = store

    async def run(self) -> ConsistencyReport:
        employee_rows = await self.store.get_all(Collection.EMPLOYEES)
        shift_rows = await self.store.get_all(Collection.SHIFTS)
        request_rows = await self.store.get_all(Collection.SWAP_REQUESTS)
        report = check(employee_rows, shift_rows, request_rows)
        if report.warnings:
            logger.warning(
                "consistency check found problems",
                extra={"warnings": len(report.warnings), "kinds": sorted({w.kind for w in report.warnings})},
            )
        else:
            logger.info("consistency check clean", extra={"shifts": len(shift_rows), "requests": len(request_rows)})
        return report


def _employees(rows: list[Record]) -> list[Employee]:
    out: list[Employee] = []
    for r in rows:
        try:
            out.append(Employee.from_record(r))
        except ValueError:
            logger.warning("skipping malformed employee record", extra={"employee_id": r.get("id")})
    return out


def _token(name: str) -> Optional[str]:
    try:
        return short_id(name)
    except ValidationError:
        return None


def check(employee_rows: list[Record], shift_rows: list[Record], request_rows: list[Record]) -> ConsistencyReport:
    warnings: list[ConsistencyWarning] = []
    employees = _employees(employee_rows)
    index = ShortIdIndex(employees)
    employee_tokens = index.tokens()

    owners = [str(s.get("employeeId") or "") for s in shift_rows]
    owner_set = {o for o in owners if o}

    # identifiers referenced by swap requests but owning no shift
    swap_ids: dict[str, list[str]] = {}
    for r in request_rows:
        for fld in ("fromEmployeeId", "toEmployeeId"):
            ident = str(r.get(fld) or "")
            if ident:
                swap_ids.setdefault(ident, []).append(str(r.get("id")))
    for ident in sorted(set(swap_ids) - owner_set):
        warnings.append(
            ConsistencyWarning(
                kind=WarningKind.CORRELATION_FAILURE.value,
                identifier=ident,
                message=f"swap requests reference '{ident}', which owns no shift",
                details={"requestIds": sorted(set(swap_ids[ident])), "isEmployee": ident in employee_tokens},
            )
        )

    per_pair: dict[tuple[str, str], list[str]] = defaultdict(list)
    for s in shift_rows:
        per_pair[(str(s.get("employeeId") or ""), str(s.get("date") or ""))].append(str(s.get("id")))
    for (owner, day), ids in sorted(per_pair.items()):
        if len(ids) > 1:
            warnings.append(
                ConsistencyWarning(
                    kind=WarningKind.DUPLICATE_SHIFT.value,
                    identifier=f"{owner}@{day}",
                    message=f"{owner} has {len(ids)} shifts on {day}",
                    details={"owner": owner, "date": day, "shiftIds": ids},
                )
            )

    for emp in employees:
        token = _token(emp.name)
        if token is not None and token not in owner_set:
            warnings.append(
                ConsistencyWarning(
                    kind=WarningKind.EMPLOYEE_WITHOUT_SHIFTS.value,
                    identifier=token,
                    message=f"{emp.name} has no shifts",
                    details={"employeeId": emp.id},
                )
            )

    for owner in sorted(owner_set - employee_tokens):
        warnings.append(
            ConsistencyWarning(
                kind=WarningKind.UNKNOWN_SHIFT_OWNER.value,
                identifier=owner,
                message=f"shifts owned by '{owner}' match no employee",
                details={"shifts": owners.count(owner)},
            )
        )

    for token, group in sorted(index.collisions().items()):
        warnings.append(
            ConsistencyWarning(
                kind=WarningKind.SHORT_ID_COLLISION.value,
                identifier=token,
                message=f"{len(group)} employees share the short id '{token}'; {group[0].name} wins lookups",
                details={"employeeIds": [e.id for e in group]},
            )
        )

    pending_pairs: dict[tuple[str, str], list[str]] = defaultdict(list)
    for r in request_rows:
        if r.get("status") == SwapRequestStatus.PENDING.value:
            pending_pairs[(str(r.get("fromEmployeeId") or ""), str(r.get("toEmployeeId") or ""))].append(str(r.get("id")))
    for (frm, to), ids in sorted(pending_pairs.items()):
        if len(ids) > 1:
            warnings.append(
                ConsistencyWarning(
                    kind=WarningKind.DUPLICATE_PENDING_SWAP.value,
                    identifier=f"{frm}->{to}",
                    message=f"{len(ids)} pending swap requests from {frm} to {to}",
                    details={"requestIds": ids},
                )
            )

    shift_ids = {str(s.get("id")) for s in shift_rows}
    for r in request_rows:
        ref = str(r.get("shiftId") or "")
        if ref not in shift_ids:
            warnings.append(
                ConsistencyWarning(
                    kind=WarningKind.MISSING_SHIFT_REFERENCE.value,
                    identifier=str(r.get("id")),
                    message=f"swap request {r.get('id')} references missing shift '{ref}'",
                    details={"shiftId": ref, "status": r.get("status")},
                )
            )

    stats = {
        "employees": len(employee_rows),
        "shifts": len(shift_rows),
        "swapRequests": len(request_rows),
        "pendingSwapRequests": sum(1 for r in request_rows if r.get("status") == SwapRequestStatus.PENDING.value),
        "shiftsByType": dict(Counter(str(s.get("type") or "") for s in shift_rows)),
        "shiftsPerOwner": dict(Counter(o for o in owners if o)),
    }
    return ConsistencyReport(generated_at=iso_now(), warnings=warnings, stats=stats)


def format_report(report: ConsistencyReport) -> str:
    lines = [f"Consistency check at {report.generated_at}"]
    st = report.stats
    lines.append(
        f"employees: {st.get('employees', 0)}, shifts: {st.get('shifts', 0)}, "
        f"swap requests: {st.get('swapRequests', 0)} ({st.get('pendingSwapRequests', 0)} pending)"
    )
    if report.ok:
        lines.append("No problems found.")
        return "\n".join(lines)

    lines.append(f"{len(report.warnings)} warning(s):")
    for kind in WarningKind:
        items = report.by_kind(kind)
        if not items:
            continue
        lines.append(f"[{kind.value}] {len(items)}")
        for w in items:
            lines.append(f"  - {w.message}")
    return "\n".join(lines)
