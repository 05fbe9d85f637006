from shared.config import settings as shared_settings
from pydantic import BaseModel
from typing import List


class BotConfig(BaseModel):
    token: str
    admin_ids: List[int]
    consistency_interval_minutes: int


def get_config() -> BotConfig:
    return BotConfig(
        token=shared_settings.BOT_TOKEN,
        admin_ids=shared_settings.admin_ids,
        consistency_interval_minutes=shared_settings.CONSISTENCY_CHECK_INTERVAL_MINUTES,
    )
