from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from shared.enums import Collection
from shared.errors import ValidationError
from shared.schemas import Employee, SwapRequest
from shared.services.core import SchedulingCore
from shared.store.base import Subscription

from bot.app.keyboards.inline import swap_answer_kb
from bot.app.utils.html import format_swap_request


_logger = logging.getLogger(__name__)

Sender = Callable[[int, str, Any], Awaitable[bool]]


class InboxNotifier:
    """Messages a linked employee when a new pending request reaches their inbox.

    One inbox subscription per employee with a Telegram id, kept in sync
    with the employees collection. Requests already pending when a
    subscription starts are not announced.
    """

    def __init__(self, core: SchedulingCore, send: Sender):
        self.core = core
        self._send = send
        self._employees_sub: Subscription | None = None
        self._inboxes: dict[str, tuple[int, Subscription]] = {}
        self._seen: dict[str, set[str]] = {}

    def start(self) -> None:
        if self._employees_sub is not None:
            return
        self._employees_sub = self.core.store.subscribe(Collection.EMPLOYEES, None, None, self._sync)
        _logger.info("inbox notifier started")

    def stop(self) -> None:
        if self._employees_sub is not None:
            self._employees_sub.cancel()
            self._employees_sub = None
        for _, sub in self._inboxes.values():
            sub.cancel()
        self._inboxes.clear()
        self._seen.clear()
        _logger.info("inbox notifier stopped")

    @property
    def watched(self) -> set[str]:
        return set(self._inboxes)

    async def _sync(self, rows: list[dict]) -> None:
        wanted: dict[str, Employee] = {}
        for r in rows:
            emp = Employee.from_record(r)
            if emp.tg_id is None:
                continue
            try:
                token = emp.short_id
            except ValidationError:
                continue
            # first employee keeps a shared short id
            wanted.setdefault(token, emp)

        for token in list(self._inboxes):
            chat_id, sub = self._inboxes[token]
            if token not in wanted or wanted[token].tg_id != chat_id:
                sub.cancel()
                del self._inboxes[token]
                self._seen.pop(token, None)

        for token, emp in wanted.items():
            if token in self._inboxes:
                continue
            self._inboxes[token] = (int(emp.tg_id), self._watch(token, int(emp.tg_id)))
            _logger.debug("watching inbox", extra={"short_id": token, "employee_id": emp.id})

    def _watch(self, token: str, chat_id: int) -> Subscription:
        async def on_inbox(requests: list[SwapRequest]) -> None:
            pending = {r.id: r for r in requests if r.is_pending}
            seen = self._seen.get(token)
            self._seen[token] = set(pending)
            if seen is None:
                return
            for rid, req in pending.items():
                if rid in seen:
                    continue
                ok = await self._send(chat_id, format_swap_request(req), swap_answer_kb(rid))
                _logger.info("inbox notification", extra={"request_id": rid, "to": token, "ok": ok})

        return self.core.swaps.subscribe_inbox(token, on_inbox)
