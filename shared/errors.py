from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class ScheduleError(Exception):
    """Base error for the scheduling core.

    Every error carries a short snake_case ``code`` usable by callers
    (HTTP layer, bot) and a human readable message.
    """

    default_code = "schedule_error"

    def __init__(self, code: str | None = None, message: str | None = None):
        self.code = code or self.default_code
        self.message = message or self.code
        super().__init__(self.message)

    def as_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class ValidationError(ScheduleError, ValueError):
    default_code = "validation_error"


class NotFoundError(ScheduleError, LookupError):
    default_code = "not_found"

    def __init__(self, collection: str, doc_id: str, code: str | None = None, message: str | None = None):
        self.collection = str(collection)
        self.doc_id = str(doc_id)
        super().__init__(code or "not_found", message or f"{self.collection}/{self.doc_id} not found")


class StoreError(ScheduleError):
    default_code = "store_error"


class IndexMissingError(StoreError):
    """Backend cannot serve a filtered and ordered query at the same time."""

    default_code = "index_missing"


@dataclass(frozen=True)
class ConsistencyWarning:
    kind: str
    identifier: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
