import logging
import os
from celery import Celery
from celery.schedules import crontab

from .database import session_scope
from . import lifecycle

logger = logging.getLogger(__name__)

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "memory://")
celery_app = Celery("tasks", broker=CELERY_BROKER_URL)
celery_app.conf.task_always_eager = (
    CELERY_BROKER_URL == "memory://" or os.getenv("TESTING") == "1"
)


@celery_app.task
def purge_archived(retention_days: int | None = None) -> dict:
    """Remove rows archived longer than the retention period."""

    with session_scope() as db:
        removed = lifecycle.purge_archived(db, retention_days=retention_days)
    logger.info("Purged %d archived rows: %s", sum(removed.values()), removed)
    return removed


celery_app.conf.beat_schedule = {
    "purge-archived": {
        "task": "research_os.tasks.purge_archived",
        "schedule": crontab(hour=3, minute=0),
    },
}
