from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton


def swap_answer_kb(request_id: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(text="✅ Accept", callback_data=f"swap:accept:{request_id}"),
                InlineKeyboardButton(text="❌ Decline", callback_data=f"swap:decline:{request_id}"),
            ]
        ]
    )
