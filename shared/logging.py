import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Iterable, Optional


# Third-party loggers that flood INFO with per-request noise
NOISY_LOGGERS = ("httpx", "apscheduler.executors.default", "aiogram.event", "sqlalchemy.engine")

FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _attach(root: logging.Logger, handler: logging.Handler, level: str, fmt: logging.Formatter) -> None:
    handler.setLevel(level)
    handler.setFormatter(fmt)
    root.addHandler(handler)


def setup_logging(
    service_name: str,
    log_dir: Optional[str],
    level: str = "INFO",
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Configure the root logger for one process (web, bot or cli).

    Console output is always on. When ``log_dir`` is set, ``<log_dir>/<service>/schedule.log``
    is written as well and rotated daily.
    """
    level = level.upper()
    root = logging.getLogger()
    root.setLevel(level)

    # uvicorn --reload imports the app twice
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(fmt=FORMAT, datefmt=DATE_FORMAT)
    _attach(root, logging.StreamHandler(), level, fmt)

    log_file = None
    if log_dir:
        p = Path(log_dir) / service_name
        p.mkdir(parents=True, exist_ok=True)
        log_file = p / "schedule.log"
        fh = TimedRotatingFileHandler(
            filename=str(log_file), when="D", interval=1, backupCount=14, encoding="utf-8"
        )
        _attach(root, fh, level, fmt)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "logging initialized",
        extra={"service": service_name, "log_file": str(log_file) if log_file else None},
    )
