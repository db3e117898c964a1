"""Celery application configuration."""

from celery import Celery
from celery.schedules import crontab

from app.services.cron_schedule import JOBS, to_crontab
from core.config import config

# Create Celery app
celery_app = Celery(
    "stem_masters",
    broker=config.REDIS_URL,
    backend=config.REDIS_URL,
    include=["app.tasks.email_tasks", "app.tasks.dunning_tasks"],
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=config.CRON_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    worker_prefetch_multiplier=4,
    worker_max_tasks_per_child=1000,
)

# Auto-discover tasks from app.tasks module
celery_app.autodiscover_tasks(["app.tasks"])


def build_beat_schedule() -> dict:
    """Periodic tasks: the enabled dunning jobs plus the daily registration purge."""
    schedule = {
        job.name: {
            "task": "run_dunning_job",
            "schedule": to_crontab(job.expression),
            "args": (job.name,),
        }
        for job in JOBS.values()
        if job.enabled
    }
    # Remove expired incomplete registrations (daily at 3 AM)
    schedule["purge-expired-registrations"] = {
        "task": "purge_expired_registrations",
        "schedule": crontab(hour=3, minute=0),
    }
    return schedule


celery_app.conf.beat_schedule = build_beat_schedule()


if __name__ == "__main__":
    celery_app.start()
