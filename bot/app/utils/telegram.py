from __future__ import annotations

import logging

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError
from aiogram.types import CallbackQuery, Message


_logger = logging.getLogger(__name__)


async def send_html(message: Message, text: str, reply_markup=None):
    return await message.answer(text, reply_markup=reply_markup)


async def edit_html(cb: CallbackQuery, text: str, reply_markup=None):
    try:
        return await cb.message.edit_text(text, reply_markup=reply_markup)
    except TelegramAPIError:
        return await cb.message.answer(text, reply_markup=reply_markup)


async def send_to_chat(bot: Bot, chat_id: int, text: str, reply_markup=None) -> bool:
    try:
        await bot.send_message(chat_id=int(chat_id), text=text, reply_markup=reply_markup)
        return True
    except TelegramAPIError:
        _logger.exception("telegram send failed", extra={"chat_id": chat_id})
        return False
