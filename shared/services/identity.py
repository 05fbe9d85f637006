"""Short identifier derivation and lookup.

The short identifier is the lowercase first whitespace-delimited token of
an employee's display name ("John Smith" -> "john"). It is the only key
used to correlate employees with shifts and swap requests; the durable
account id is never stored in those fields.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

from shared.errors import ValidationError

if TYPE_CHECKING:
    from shared.schemas import Employee


logger = logging.getLogger(__name__)


def short_id(display_name: str) -> str:
    parts = str(display_name or "").split()
    if not parts:
        raise ValidationError("empty_display_name", "display name must contain at least one non-blank character")
    return parts[0].lower()


def employee_for_short_id(token: str, employees: Iterable["Employee"]) -> Optional["Employee"]:
    """Linear scan; first employee whose name derives ``token`` wins."""
    t = str(token or "").strip().lower()
    if not t:
        return None
    for emp in employees:
        try:
            if short_id(emp.name) == t:
                return emp
        except ValidationError:
            continue
    return None


def _snapshot_key(employees: Sequence["Employee"]) -> tuple[tuple[str, str], ...]:
    return tuple((str(e.id), str(e.name)) for e in employees)


class ShortIdIndex:
    """token -> employee map cached for one employee list snapshot.

    ``refresh`` rebuilds only when ids or names changed. On a collision the
    first employee in list order keeps the token, which matches
    ``employee_for_short_id``.
    """

    def __init__(self, employees: Sequence["Employee"] = ()):
        self._key: tuple[tuple[str, str], ...] | None = None
        self._by_token: dict[str, "Employee"] = {}
        self._collisions: dict[str, list["Employee"]] = {}
        self.refresh(employees)

    def refresh(self, employees: Sequence["Employee"]) -> bool:
        employees = list(employees)
        key = _snapshot_key(employees)
        if key == self._key:
            return False

        by_token: dict[str, "Employee"] = {}
        groups: dict[str, list["Employee"]] = {}
        for emp in employees:
            try:
                token = short_id(emp.name)
            except ValidationError:
                logger.warning("employee without usable name", extra={"employee_id": emp.id})
                continue
            groups.setdefault(token, []).append(emp)
            by_token.setdefault(token, emp)

        self._key = key
        self._by_token = by_token
        self._collisions = {t: g for t, g in groups.items() if len(g) > 1}
        if self._collisions:
            logger.warning("short id collisions", extra={"tokens": sorted(self._collisions)})
        return True

    def get(self, token: str) -> Optional["Employee"]:
        return self._by_token.get(str(token or "").strip().lower())

    def tokens(self) -> set[str]:
        return set(self._by_token)

    def collisions(self) -> dict[str, list["Employee"]]:
        return {t: list(g) for t, g in self._collisions.items()}
