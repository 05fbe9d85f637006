from __future__ import annotations

import datetime as dt
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .enums import ActivityType, EmployeeRole, ShiftType, SwapRequestStatus
from .services.identity import short_id
from .utils import format_hhmm, parse_hhmm


class Record(BaseModel):
    """Base for documents kept in the store.

    Python attributes are snake_case, stored field names are camelCase
    (``employeeId``, ``startTime``...).
    """

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, use_enum_values=False)

    id: str = ""

    @classmethod
    def from_record(cls, data: dict[str, Any]):
        return cls.model_validate(data)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude={"id"}, exclude_none=True)

    def to_public(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Employee(Record):
    name: str
    email: str = ""
    role: EmployeeRole = EmployeeRole.EMPLOYEE
    tg_id: Optional[int] = None

    @property
    def short_id(self) -> str:
        return short_id(self.name)


class Shift(Record):
    employee_id: str
    employee_name: str
    date: dt.date
    type: ShiftType
    start_time: str
    end_time: str

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _normalize_time(cls, v: Any) -> str:
        return format_hhmm(parse_hhmm(v))

    def describe(self) -> str:
        return f"{self.type.value} shift on {self.date.isoformat()}"


class SwapRequest(Record):
    from_employee_id: str
    from_employee_name: str
    to_employee_id: str
    to_employee_name: str
    shift_id: str
    # denormalized snapshot for display, never authoritative for ownership
    shift: Optional[Shift] = None
    status: SwapRequestStatus = SwapRequestStatus.PENDING
    created_at: str
    responded_at: Optional[str] = None
    # set by enrichment when the referenced shift no longer exists
    shift_unavailable: bool = Field(default=False, exclude=True)

    @property
    def is_pending(self) -> bool:
        return self.status == SwapRequestStatus.PENDING

    def describe_shift(self) -> str:
        if self.shift is None:
            return "shift details unavailable"
        return self.shift.describe()

    def to_public(self) -> dict[str, Any]:
        data = super().to_public()
        data["shiftUnavailable"] = bool(self.shift_unavailable)
        return data


class ActivityLogEntry(Record):
    type: ActivityType
    description: str
    user_id: str = ""
    user_name: str = ""
    timestamp: str
    details: Optional[dict[str, Any]] = None


# Request bodies of the HTTP surface


class EmployeeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=320)
    role: EmployeeRole = EmployeeRole.EMPLOYEE
    tg_id: Optional[int] = Field(default=None, ge=0)


class ShiftCreate(BaseModel):
    actor_id: str
    owner_id: str
    date: dt.date
    type: ShiftType
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class ShiftMove(BaseModel):
    actor_id: str
    owner_id: str
    date: Optional[dt.date] = None


class ShiftGenerate(BaseModel):
    actor_id: str
    start: dt.date
    end: dt.date
    seed: Optional[int] = None


class SwapRequestCreate(BaseModel):
    from_employee_id: str
    to_employee_id: str
    shift_id: str


class SwapResponse(BaseModel):
    responder_id: str
    accept: bool
