from __future__ import annotations

import logging
import re
from typing import Optional

from shared.enums import Collection, EmployeeRole
from shared.errors import NotFoundError, ValidationError
from shared.schemas import Employee
from shared.services.identity import ShortIdIndex, short_id
from shared.store.base import Store


logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    return str(email or "").strip().lower()


class EmployeeDirectory:
    """Employee accounts over the ``employees`` collection.

    The short id index is a cache of the last employee list seen; it is
    rebuilt whenever ids or names change and dropped by ``reset``.
    """

    def __init__(self, store: Store):
        self.store = store
        self._index = ShortIdIndex()

    def reset(self) -> None:
        self._index = ShortIdIndex()

    async def register(
        self,
        name: str,
        email: str,
        role: EmployeeRole = EmployeeRole.EMPLOYEE,
        tg_id: int | None = None,
    ) -> Employee:
        name = " ".join(str(name or "").split())
        token = short_id(name)

        email_norm = normalize_email(email)
        if not _EMAIL_RE.match(email_norm):
            raise ValidationError("invalid_email", f"invalid email: {email!r}")

        existing = await self.list()
        for emp in existing:
            if normalize_email(emp.email) == email_norm:
                raise ValidationError("email_taken", f"email already registered: {email_norm}")
            if tg_id is not None and emp.tg_id == int(tg_id):
                raise ValidationError("tg_id_taken", f"telegram id already linked: {tg_id}")

        clash = [e for e in existing if _safe_short_id(e.name) == token]
        if clash:
            # first registered keeps the token
            logger.warning(
                "short id collision on register",
                extra={"short_id": token, "existing_ids": [e.id for e in clash]},
            )

        emp = Employee(name=name, email=email_norm, role=EmployeeRole(role), tg_id=tg_id)
        emp.id = await self.store.insert(Collection.EMPLOYEES, emp.to_record())
        logger.info("employee registered", extra={"employee_id": emp.id, "short_id": token, "role": emp.role.value})
        return emp

    async def list(self, role: EmployeeRole | None = None) -> list[Employee]:
        where = {"role": EmployeeRole(role).value} if role is not None else None
        rows = await self.store.query(Collection.EMPLOYEES, where)
        return [Employee.from_record(r) for r in rows]

    async def get(self, employee_id: str) -> Optional[Employee]:
        rec = await self.store.get_by_id(Collection.EMPLOYEES, str(employee_id))
        return Employee.from_record(rec) if rec is not None else None

    async def require(self, employee_id: str) -> Employee:
        emp = await self.get(employee_id)
        if emp is None:
            raise NotFoundError(Collection.EMPLOYEES, str(employee_id), code="employee_not_found")
        return emp

    async def get_by_email(self, email: str) -> Optional[Employee]:
        email_norm = normalize_email(email)
        for emp in await self.list():
            if normalize_email(emp.email) == email_norm:
                return emp
        return None

    async def get_by_tg_id(self, tg_id: int) -> Optional[Employee]:
        rows = await self.store.query(Collection.EMPLOYEES, {"tgId": int(tg_id)})
        return Employee.from_record(rows[0]) if rows else None

    async def index(self) -> ShortIdIndex:
        self._index.refresh(await self.list())
        return self._index

    async def by_short_id(self, token: str) -> Optional[Employee]:
        return (await self.index()).get(token)


def _safe_short_id(name: str) -> str | None:
    try:
        return short_id(name)
    except ValidationError:
        return None
