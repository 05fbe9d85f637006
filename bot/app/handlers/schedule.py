from __future__ import annotations

import logging
from datetime import date

from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message

from shared.services.core import SchedulingCore

from bot.app.guards.user_guard import ensure_registered_or_reply
from bot.app.utils.html import esc, format_shift_list
from bot.app.utils.telegram import send_html


router = Router()
_logger = logging.getLogger(__name__)


@router.message(CommandStart())
async def start(message: Message, core: SchedulingCore):
    emp = await ensure_registered_or_reply(message, core)
    if not emp:
        return
    await send_html(
        message,
        f"👋 Hi, <b>{esc(emp.name)}</b>!\n"
        "/shifts - your upcoming shifts\n"
        "/inbox - swap requests waiting for your answer",
    )


@router.message(Command("shifts"))
async def my_shifts(message: Message, core: SchedulingCore):
    emp = await ensure_registered_or_reply(message, core)
    if not emp:
        return

    today = date.today()
    shifts = [s for s in await core.shifts.list_by_owner(emp.short_id) if s.date >= today]
    _logger.debug("shifts requested", extra={"employee_id": emp.id, "count": len(shifts)})
    await send_html(message, format_shift_list(shifts))
