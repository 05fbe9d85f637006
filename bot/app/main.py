import asyncio
import logging
from functools import partial

from aiogram import Bot, Dispatcher
from aiogram.types import BotCommand, BotCommandScopeAllPrivateChats
from aiogram.client.default import DefaultBotProperties
from aiogram.exceptions import TelegramAPIError
from aiogram.fsm.storage.memory import MemoryStorage
from shared.config import settings
from shared.logging import setup_logging
from shared.services.core import build_core
from bot.app.config import get_config
from bot.app.handlers.schedule import router as schedule_router
from bot.app.handlers.shift_swap import router as shift_swap_router
from bot.app.services.consistency_scheduler import shutdown_scheduler, start_scheduler
from bot.app.services.inbox_notifier import InboxNotifier
from bot.app.utils.telegram import send_to_chat


async def main() -> None:
    setup_logging(service_name="bot", log_dir=settings.LOG_DIR, level=settings.LOG_LEVEL)
    logging.getLogger(__name__).info("bot starting")
    cfg = get_config()
    core = build_core()
    bot = Bot(token=cfg.token, default=DefaultBotProperties(parse_mode="HTML"))
    dp = Dispatcher(storage=MemoryStorage(), core=core)

    dp.include_router(schedule_router)
    dp.include_router(shift_swap_router)

    send = partial(send_to_chat, bot)
    notifier = InboxNotifier(core, send)
    notifier.start()

    try:
        logging.getLogger(__name__).info("starting consistency scheduler")
        start_scheduler(core, cfg.admin_ids, send, cfg.consistency_interval_minutes)
    except Exception:
        logging.getLogger(__name__).exception("failed to start consistency scheduler")

    try:
        commands = [
            BotCommand(command="start", description="Start"),
            BotCommand(command="shifts", description="My shifts"),
            BotCommand(command="inbox", description="Swap requests"),
        ]
        await bot.set_my_commands(commands=commands, scope=BotCommandScopeAllPrivateChats())
    except TelegramAPIError:
        # Do not fail startup if commands setup fails
        logging.getLogger(__name__).warning("failed to set bot commands")

    try:
        await dp.start_polling(bot)
    finally:
        notifier.stop()
        shutdown_scheduler()
        await core.close()
        logging.getLogger(__name__).info("bot stopped")


if __name__ == "__main__":
    asyncio.run(main())
