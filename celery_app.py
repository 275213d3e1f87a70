"""
Celery application configuration for scheduled tasks.
"""
import os
from celery import Celery
from celery.schedules import crontab

# Redis URL for broker and backend
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Create Celery app
celery_app = Celery(
    "recurring_tasks",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=["tasks.projection_tasks"],
)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _build_beat_schedule() -> dict:
    schedule = {}

    if _env_bool("PROJECTION_REFRESH_ENABLED", default=False):
        try:
            refresh_hour_utc = int(os.getenv("PROJECTION_REFRESH_HOUR_UTC", "3"))
        except ValueError:
            refresh_hour_utc = 3

        # Keep the hour in a safe UTC range.
        refresh_hour_utc = max(0, min(23, refresh_hour_utc))
        schedule["subscription-projection-refresh-daily"] = {
            "task": "tasks.projection_tasks.refresh_subscription_projections",
            "schedule": crontab(minute=0, hour=refresh_hour_utc),
        }

    return schedule

# Celery configuration
celery_app.conf.update(
    # Task result settings
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task settings
    task_track_started=True,
    task_time_limit=3600,  # 1 hour max per task
    task_soft_time_limit=3300,  # Soft limit at 55 minutes

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    # Beat schedule for periodic tasks
    beat_schedule=_build_beat_schedule(),
)


if __name__ == "__main__":
    celery_app.start()
