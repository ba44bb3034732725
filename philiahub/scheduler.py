"""APScheduler integration."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from .config import settings
from .crud import purge_expired_tokens
from .database import get_session
from .ratelimit import RateLimiter

logger = logging.getLogger("uvicorn.error")

_scheduler: BackgroundScheduler | None = None


def purge_tokens() -> int:
    with get_session() as session:
        removed = purge_expired_tokens(session)
    if removed:
        logger.info("Purged %s expired verification tokens", removed)
    return removed


def start_scheduler(limiter: RateLimiter) -> BackgroundScheduler:
    global _scheduler
    if _scheduler and _scheduler.running:
        return _scheduler
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        limiter.purge_expired,
        "interval",
        minutes=settings.rate_limit_purge_minutes,
        id="rate-limit-purge",
        max_instances=1,
        replace_existing=True,
    )
    scheduler.add_job(
        purge_tokens,
        "interval",
        hours=settings.token_purge_hours,
        id="token-purge",
        max_instances=1,
        replace_existing=True,
    )
    scheduler.start()
    _scheduler = scheduler
    return scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        _scheduler = None
