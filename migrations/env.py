import asyncio
import logging
from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import Connection

from shared.config import settings
from shared.db import Base, get_engine
from shared.models import Document, DocumentChange

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata
MANAGED_TABLES = {Document.__tablename__, DocumentChange.__tablename__}


def _database_url() -> str:
    # alembic.ini leaves the url empty; the app settings are the source of truth
    return config.get_main_option("sqlalchemy.url") or settings.DATABASE_URL


def _include_object(obj, name, type_, reflected, compare_to) -> bool:
    if type_ == "table":
        return name in MANAGED_TABLES
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        include_object=_include_object,
        **kwargs,
    )


def run_offline() -> None:
    logger.info("writing migration sql (offline)")
    _configure(url=_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def _run_with(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_online() -> None:
    engine = get_engine()
    logger.info("running migrations", extra={"tables": sorted(MANAGED_TABLES)})
    try:
        async with engine.begin() as connection:
            await connection.run_sync(_run_with)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    asyncio.run(run_online())
