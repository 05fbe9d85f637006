from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List, Any, Iterable
import json


class Settings(BaseSettings):
    # "memory" keeps documents in-process, "sql" uses the documents table
    STORE_BACKEND: str = "memory"

    POSTGRES_HOST: str = "db"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "app"
    POSTGRES_USER: str = "app"
    POSTGRES_PASSWORD: str = "app"

    DATABASE_URL: str = "postgresql+asyncpg://app:app@db:5432/app"

    # sql backend: how often other processes' writes are picked up, and how long the feed is kept
    STORE_POLL_INTERVAL_SECONDS: float = 1.0
    STORE_CHANGE_RETENTION_MINUTES: int = 60

    BOT_TOKEN: str = ""
    # Telegram admin IDs stored as Python ints (can hold int64). Alias allows env var ADMIN_IDS.
    admin_ids: List[int] = Field(default_factory=list, alias="ADMIN_IDS")

    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "/var/log/app"

    SWAP_REJECT_DUPLICATE_PENDING: bool = True

    SHIFTS_PER_DAY_DAY: int = 2
    SHIFTS_PER_DAY_AFTERNOON: int = 2
    SHIFTS_PER_DAY_NIGHT: int = 1

    CONSISTENCY_CHECK_INTERVAL_MINUTES: int = 60

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        populate_by_name = True

    @field_validator("STORE_BACKEND", mode="before")
    @classmethod
    def parse_store_backend(cls, v: Any) -> str:
        s = str(v or "memory").strip().lower()
        if s not in {"memory", "sql"}:
            raise ValueError(f"unknown store backend: {s}")
        return s

    @field_validator("admin_ids", mode="before")
    @classmethod
    def parse_admin_ids(cls, v: Any) -> List[int]:
        # None -> []
        if v is None:
            return []
        # Already a list/iterable -> coerce elements to int
        if isinstance(v, (list, tuple, set)):
            return [int(x) for x in v]
        # Single int -> [int]
        if isinstance(v, int):
            return [int(v)]
        # String handling
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            # Try JSON first if looks like JSON array
            if s.startswith("[") and s.endswith("]"):
                try:
                    data = json.loads(s)
                    if isinstance(data, Iterable):
                        return [int(x) for x in data]
                except Exception:
                    pass
            # If contains comma -> CSV
            if "," in s:
                parts = [p.strip() for p in s.split(",") if p.strip()]
                return [int(p) for p in parts]
            # Otherwise single numeric string
            return [int(s)]
        # Fallback: attempt to cast to list[int]
        try:
            return [int(v)]
        except Exception:
            return []

    def shifts_per_day(self) -> dict[str, int]:
        return {
            "day": int(self.SHIFTS_PER_DAY_DAY),
            "afternoon": int(self.SHIFTS_PER_DAY_AFTERNOON),
            "night": int(self.SHIFTS_PER_DAY_NIGHT),
        }


settings = Settings()
