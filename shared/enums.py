from datetime import time
from enum import StrEnum


class Collection(StrEnum):
    EMPLOYEES = "employees"
    SHIFTS = "shifts"
    SWAP_REQUESTS = "swapRequests"
    ACTIVITY_LOGS = "activityLogs"


class EmployeeRole(StrEnum):
    EMPLOYEE = "employee"
    MANAGER = "manager"


class ShiftType(StrEnum):
    DAY = "day"
    AFTERNOON = "afternoon"
    NIGHT = "night"


class SwapRequestStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class ActivityType(StrEnum):
    SHIFT_CREATED = "shift_created"
    SHIFT_UPDATED = "shift_updated"
    SHIFT_DELETED = "shift_deleted"
    SWAP_REQUESTED = "swap_requested"
    SWAP_ACCEPTED = "swap_accepted"
    SWAP_DECLINED = "swap_declined"


class WarningKind(StrEnum):
    CORRELATION_FAILURE = "correlation_failure"
    DUPLICATE_SHIFT = "duplicate_shift"
    EMPLOYEE_WITHOUT_SHIFTS = "employee_without_shifts"
    UNKNOWN_SHIFT_OWNER = "unknown_shift_owner"
    SHORT_ID_COLLISION = "short_id_collision"
    DUPLICATE_PENDING_SWAP = "duplicate_pending_swap"
    MISSING_SHIFT_REFERENCE = "missing_shift_reference"


# Canonical (start, end) per shift type. Afternoon ends at midnight.
SHIFT_TIMES: dict[ShiftType, tuple[time, time]] = {
    ShiftType.DAY: (time(8, 0), time(16, 0)),
    ShiftType.AFTERNOON: (time(16, 0), time(0, 0)),
    ShiftType.NIGHT: (time(0, 0), time(8, 0)),
}

TERMINAL_SWAP_STATUSES = frozenset({SwapRequestStatus.ACCEPTED, SwapRequestStatus.DECLINED})
