"""
Maintenance tasks
"""
import logging
from typing import Any, Dict

from socialhub.services.webhook_event_store import WebhookEventStore
from socialhub.tasks.base import PipelineTask
from socialhub.tasks.celery_app import celery_app
from socialhub.tasks.db_session_manager import get_celery_db_session
from socialhub.tasks.policies import RETRY_POLICIES

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    base=PipelineTask,
    name='socialhub.tasks.maintenance_tasks.purge_processed_webhook_events',
    retry_policy=RETRY_POLICIES['purge_processed_webhook_events'],
)
def purge_processed_webhook_events(self) -> Dict[str, Any]:
    """Delete processed webhook events past the retention window"""
    with get_celery_db_session() as db:
        deleted = WebhookEventStore(db).purge_processed()
    return {"deleted": deleted}
