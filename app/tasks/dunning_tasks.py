"""Celery tasks for the dunning cron jobs and registration cleanup."""

import asyncio
import logging
from typing import Any, Dict

from app.models.registration import Registration
from app.services.cron_schedule import run_job
from app.tasks.celery_app import celery_app
from core.db.session import async_session_factory

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="run_dunning_job")
def run_dunning_job(self, job_name: str) -> Dict[str, Any]:
    """Run one overdue-check or payment-reminder job.

    Failures are logged and reported in the result; they are not retried
    within the same run, and other jobs are unaffected.
    """
    logger.info(f"Starting dunning job {job_name}")
    try:
        result = asyncio.run(_run_dunning_job_async(job_name))
        return {"success": True, **result}
    except Exception as e:
        logger.error(f"Error in dunning job {job_name}: {str(e)}")
        return {"success": False, "job": job_name, "error": str(e)}


async def _run_dunning_job_async(job_name: str) -> Dict[str, Any]:
    async with async_session_factory() as db:
        return await run_job(db, job_name)


@celery_app.task(name="purge_expired_registrations")
def purge_expired_registrations() -> Dict[str, Any]:
    """Delete incomplete registrations past their expiry."""
    try:
        purged = asyncio.run(_purge_expired_registrations_async())
        logger.info(f"Purged {purged} expired registration(s)")
        return {"success": True, "purged": purged}
    except Exception as e:
        logger.error(f"Error purging expired registrations: {str(e)}")
        return {"success": False, "error": str(e)}


async def _purge_expired_registrations_async() -> int:
    async with async_session_factory() as db:
        return await Registration.purge_expired(db)
