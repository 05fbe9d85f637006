from shared.config import settings as shared_settings
from pydantic import BaseModel


class WebConfig(BaseModel):
    bot_token: str
    log_dir: str
    log_level: str
    per_day: dict[str, int]


def get_config() -> WebConfig:
    return WebConfig(
        bot_token=shared_settings.BOT_TOKEN,
        log_dir=shared_settings.LOG_DIR,
        log_level=shared_settings.LOG_LEVEL,
        per_day=shared_settings.shifts_per_day(),
    )
