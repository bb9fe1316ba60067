"""
Per-minute sweep over due ScheduledJob rows
"""
import logging
from typing import Dict

from socialhub.services.scheduled_job_service import ScheduledJobService
from socialhub.tasks.base import PipelineTask
from socialhub.tasks.celery_app import celery_app
from socialhub.tasks.db_session_manager import get_celery_db_session
from socialhub.tasks.policies import RETRY_POLICIES

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    base=PipelineTask,
    name='socialhub.tasks.scheduled_job_tasks.process_scheduled_jobs',
    retry_policy=RETRY_POLICIES['process_scheduled_jobs'],
)
def process_scheduled_jobs(self) -> Dict[str, int]:
    with get_celery_db_session() as db:
        results = ScheduledJobService(db).process_due_jobs()
    if results["completed"] or results["failed"]:
        logger.info(f"Scheduled job sweep: {results['completed']} completed, {results['failed']} failed")
    return results
