from __future__ import annotations

import logging

from aiogram import Router, F
from aiogram.filters import Command
from aiogram.types import CallbackQuery, Message

from shared.enums import SwapRequestStatus
from shared.errors import ScheduleError
from shared.services.core import SchedulingCore

from bot.app.guards.user_guard import ensure_registered_or_reply
from bot.app.keyboards.inline import swap_answer_kb
from bot.app.utils.html import esc, format_swap_request
from bot.app.utils.telegram import edit_html, send_html


router = Router()
_logger = logging.getLogger(__name__)

# error codes with a dedicated reply
_REPLIES = {
    "request_not_pending": "This request was already answered.",
    "not_request_recipient": "This request is addressed to someone else.",
    "shift_owner_changed": "The shift has changed hands since the request was sent.",
    "swap_request_not_found": "Request not found.",
    "shift_not_found": "The shift no longer exists.",
}


def parse_swap_callback(data: str | None) -> tuple[str, str] | None:
    """'swap:accept:<id>' -> ('accept', '<id>')"""
    parts = str(data or "").split(":", 2)
    if len(parts) != 3 or parts[0] != "swap" or parts[1] not in ("accept", "decline") or not parts[2]:
        return None
    return parts[1], parts[2]


@router.message(Command("inbox"))
async def inbox(message: Message, core: SchedulingCore):
    emp = await ensure_registered_or_reply(message, core)
    if not emp:
        return

    pending = await core.swaps.list_inbox(emp.short_id, SwapRequestStatus.PENDING)
    if not pending:
        await send_html(message, "📭 No pending swap requests.")
        return

    for req in pending:
        await send_html(message, format_swap_request(req), reply_markup=swap_answer_kb(req.id))


@router.callback_query(F.data.startswith("swap:"))
async def swap_answer(cb: CallbackQuery, core: SchedulingCore):
    parsed = parse_swap_callback(cb.data)
    if parsed is None:
        await edit_html(cb, "Invalid request.")
        await cb.answer()
        return
    action, request_id = parsed

    emp = await ensure_registered_or_reply(cb, core)
    if not emp:
        return

    try:
        req = await core.swaps.respond_to_swap(request_id, action == "accept", emp)
    except ScheduleError as e:
        _logger.info("swap answer rejected", extra={"request_id": request_id, "code": e.code, "tg_id": cb.from_user.id})
        await edit_html(cb, esc(_REPLIES.get(e.code, e.message)))
        await cb.answer()
        return

    _logger.info("swap answered via bot", extra={"request_id": req.id, "action": action, "employee_id": emp.id})
    verdict = "✅ Accepted, the shift is yours now." if action == "accept" else "❌ Declined."
    await edit_html(cb, f"{format_swap_request(req)}\n\n{verdict}")
    await cb.answer()
