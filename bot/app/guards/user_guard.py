from __future__ import annotations

import logging

from aiogram.types import CallbackQuery, Message

from shared.errors import StoreError
from shared.schemas import Employee
from shared.services.core import SchedulingCore

_logger = logging.getLogger(__name__)


def extract_tg_id(event: Message | CallbackQuery) -> int:
    return int(event.from_user.id)


async def _reply(event: Message | CallbackQuery, text: str) -> None:
    if isinstance(event, Message):
        await event.answer(text)
    else:
        await event.answer(text, show_alert=True)


async def ensure_registered_or_reply(event: Message | CallbackQuery, core: SchedulingCore) -> Employee | None:
    """Employee linked to the sender's Telegram id, or None after replying.

    Store failures are logged and shown as a server error, not as
    'not registered'.
    """

    tg_id = extract_tg_id(event)

    try:
        emp = await core.directory.get_by_tg_id(tg_id)
    except StoreError:
        _logger.exception("ensure_registered store error", extra={"tg_id": tg_id})
        await _reply(event, "⚠️ Server error, please try again later.")
        return None

    _logger.debug(
        "ensure_registered",
        extra={"tg_id": tg_id, "found": emp is not None, "employee_id": emp.id if emp else None},
    )

    if emp is None:
        await _reply(event, "ℹ️ Your Telegram account is not linked to an employee.")
        return None

    return emp
