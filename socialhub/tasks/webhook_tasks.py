"""
Celery tasks for webhook processing

A WebhookEvent row is processed exactly once per delivery of its task:
pending -> processing -> processed | failed. Failure is terminal on the row
and keeps the error; replay_webhook_event is the only way back to pending.
"""
import logging
from typing import Any, Dict

from socialhub.core.webhook_security import WebhookProvider
from socialhub.db.models import WebhookStatus
from socialhub.services.meta_webhook_processor import MetaWebhookProcessor
from socialhub.services.webhook_event_store import WebhookEventStore
from socialhub.services.whatsapp_webhook_processor import WhatsAppWebhookProcessor
from socialhub.tasks.base import PipelineTask
from socialhub.tasks.celery_app import celery_app
from socialhub.tasks.db_session_manager import get_celery_db_session
from socialhub.tasks.policies import RETRY_POLICIES

logger = logging.getLogger(__name__)


def _process_event(task: PipelineTask, event_id: int, processor_cls) -> Dict[str, Any]:
    failure = None

    with get_celery_db_session() as db:
        store = WebhookEventStore(db)
        event = store.get(event_id)
        if event is None:
            logger.warning(f"Webhook event {event_id} not found, nothing to process")
            return {"status": "missing", "event_id": event_id}

        if event.status == WebhookStatus.PROCESSED:
            logger.info(f"Webhook event {event_id} already processed, skipping")
            return {"status": "skipped", "event_id": event_id}

        store.mark_processing(event)
        try:
            processor_cls(db).process(event)
            db.commit()
        except Exception as e:
            db.rollback()
            store.mark_failed(event, str(e))
            logger.error(f"Webhook event {event_id} failed: {e}", extra={"webhook_event_id": event_id})
            failure = e
        else:
            store.mark_processed(event)
            logger.info(f"Processed webhook event {event_id}", extra={"webhook_event_id": event_id})
            return {"status": WebhookStatus.PROCESSED, "event_id": event_id}

    task.retry_or_raise(failure)


@celery_app.task(
    bind=True,
    base=PipelineTask,
    name='socialhub.tasks.webhook_tasks.process_meta_webhook',
    retry_policy=RETRY_POLICIES['process_meta_webhook'],
    acks_late=True,
    reject_on_worker_lost=True,
)
def process_meta_webhook(self, event_id: int) -> Dict[str, Any]:
    """Process a stored Facebook/Instagram webhook event"""
    return _process_event(self, event_id, MetaWebhookProcessor)


@celery_app.task(
    bind=True,
    base=PipelineTask,
    name='socialhub.tasks.webhook_tasks.process_whatsapp_webhook',
    retry_policy=RETRY_POLICIES['process_whatsapp_webhook'],
    acks_late=True,
    reject_on_worker_lost=True,
)
def process_whatsapp_webhook(self, event_id: int) -> Dict[str, Any]:
    """Process a stored WhatsApp Cloud API webhook event"""
    return _process_event(self, event_id, WhatsAppWebhookProcessor)


@celery_app.task(
    bind=True,
    base=PipelineTask,
    name='socialhub.tasks.webhook_tasks.replay_webhook_event',
    retry_policy=RETRY_POLICIES['replay_webhook_event'],
)
def replay_webhook_event(self, event_id: int) -> Dict[str, Any]:
    """Reset a failed event to pending and queue it again"""
    with get_celery_db_session() as db:
        event = WebhookEventStore(db).replay(event_id)
        return {"status": event.status, "event_id": event.id}


PROCESSING_TASKS = {
    WebhookProvider.FACEBOOK.value: process_meta_webhook,
    WebhookProvider.WHATSAPP.value: process_whatsapp_webhook,
}


def enqueue_webhook_event(provider: str, event_id: int):
    """Route a stored event to its provider's processing task"""
    task = PROCESSING_TASKS.get(provider)
    if task is None:
        raise ValueError(f"No webhook processor for provider: {provider}")
    return task.apply_async(args=[event_id])
