"""Dunning job definitions, cron expression handling and locked manual runs."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from celery.schedules import ParseException, crontab
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.job_lock import JobLock
from app.services.dunning_service import DunningService
from core.config import config
from core.exceptions.base import NotFoundException
from core.logging import get_logger

logger = get_logger(__name__)

CRON_FIELDS = ("minute", "hour", "day_of_month", "month_of_year", "day_of_week")


@dataclass(frozen=True)
class CronJob:
    name: str
    label: str
    setting: str
    family: str  # "overdue" or "reminder"
    final: bool

    @property
    def expression(self) -> str:
        return getattr(config, self.setting)

    @property
    def enabled(self) -> bool:
        return getattr(config, f"{self.setting}_ENABLED")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "label": self.label,
            "expression": self.expression,
            "enabled": self.enabled,
            "timezone": config.CRON_TIMEZONE,
        }


JOBS: Dict[str, CronJob] = {
    job.name: job
    for job in (
        CronJob(
            "overdue-check-first",
            "Overdue payment check (first notice)",
            "CRON_OVERDUE_CHECK_FIRST",
            "overdue",
            final=False,
        ),
        CronJob(
            "overdue-check-final",
            "Overdue payment check (final notice, suspends)",
            "CRON_OVERDUE_CHECK_FINAL",
            "overdue",
            final=True,
        ),
        CronJob(
            "payment-reminder-first",
            "Payment reminder (first)",
            "CRON_PAYMENT_REMINDER_FIRST",
            "reminder",
            final=False,
        ),
        CronJob(
            "payment-reminder-final",
            "Payment reminder (second)",
            "CRON_PAYMENT_REMINDER_FINAL",
            "reminder",
            final=True,
        ),
    )
}


def get_job(name: str) -> CronJob:
    job = JOBS.get(name)
    if job is None:
        raise NotFoundException(
            message=f"Unknown job '{name}'", data={"jobs": sorted(JOBS)}
        )
    return job


def to_crontab(expression: str) -> crontab:
    """Parse a five-field expression (minute hour day month weekday)."""
    parts = expression.split()
    if len(parts) != len(CRON_FIELDS):
        raise ValueError(
            f"Expected {len(CRON_FIELDS)} fields (minute hour day month weekday), got {len(parts)}"
        )
    try:
        return crontab(**dict(zip(CRON_FIELDS, parts)))
    except ParseException as e:
        raise ValueError(str(e) or "Invalid cron expression") from e


def validate_expression(expression: str) -> Optional[str]:
    """Return None for a valid expression, otherwise the reason it is invalid."""
    try:
        to_crontab(expression)
    except ValueError as e:
        return str(e) or "Invalid cron expression"
    return None


def schedule_config() -> List[Dict[str, Any]]:
    return [job.to_dict() for job in JOBS.values()]


async def run_job(
    db_session: AsyncSession, name: str, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Run one job now unless another run of it holds the lock."""
    job = get_job(name)
    holder = await JobLock.acquire(db_session, job.name, config.CRON_LOCK_TTL_SECONDS, now)
    if holder is None:
        logger.warning(f"{job.name} is already running; skipped")
        return {"job": job.name, "skipped": True, "reason": "already running"}

    try:
        dunning = DunningService(db_session)
        if job.family == "overdue":
            report = await dunning.run_overdue_check(is_final=job.final, now=now)
        else:
            report = await dunning.run_payment_reminder(is_second=job.final, now=now)
    finally:
        await JobLock.release(db_session, job.name, holder)

    return {**report.to_dict(), "skipped": False}
