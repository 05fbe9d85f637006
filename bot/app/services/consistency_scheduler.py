from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from shared.services.consistency import ConsistencyReport, format_report
from shared.services.core import SchedulingCore

from bot.app.utils.html import esc


_logger = logging.getLogger(__name__)
_scheduler: AsyncIOScheduler | None = None

JOB_ID = "consistency_check"

Sender = Callable[[int, str, Any], Awaitable[bool]]


def get_scheduler() -> AsyncIOScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler()
        _scheduler.add_listener(_on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
    return _scheduler


def _on_job_event(event) -> None:
    if getattr(event, "exception", None) is not None:
        _logger.error("scheduler job failed", extra={"job_id": event.job_id, "error": repr(event.exception)})
    else:
        _logger.debug("scheduler job executed", extra={"job_id": event.job_id})


async def consistency_check_job(core: SchedulingCore, admin_ids: list[int], send: Sender) -> ConsistencyReport:
    report = await core.checker.run()
    if report.ok:
        return report

    text = f"<pre>{esc(format_report(report))}</pre>"
    for chat_id in admin_ids:
        ok = await send(int(chat_id), text, None)
        _logger.info("consistency report sent", extra={"chat_id": chat_id, "ok": ok, "warnings": len(report.warnings)})
    return report


def schedule_jobs(core: SchedulingCore, admin_ids: list[int], send: Sender, interval_minutes: int) -> None:
    sched = get_scheduler()
    sched.add_job(
        consistency_check_job,
        IntervalTrigger(minutes=max(1, int(interval_minutes))),
        id=JOB_ID,
        kwargs={"core": core, "admin_ids": list(admin_ids), "send": send},
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )


def start_scheduler(core: SchedulingCore, admin_ids: list[int], send: Sender, interval_minutes: int) -> None:
    sched = get_scheduler()
    if sched.running:
        _logger.info("scheduler already running")
        return
    schedule_jobs(core, admin_ids, send, interval_minutes)
    sched.start()
    _logger.info(
        "scheduler started",
        extra={"interval_minutes": interval_minutes, "jobs": [j.id for j in sched.get_jobs()]},
    )


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
    _scheduler = None
