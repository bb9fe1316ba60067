"""
Outbound message dispatch task
"""
import logging
from typing import Any, Dict

from socialhub.services.outbound_dispatcher import OutboundDispatcher
from socialhub.tasks.base import PipelineTask
from socialhub.tasks.celery_app import celery_app
from socialhub.tasks.db_session_manager import get_celery_db_session
from socialhub.tasks.policies import RETRY_POLICIES

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    base=PipelineTask,
    name='socialhub.tasks.messaging_tasks.send_outbound_message',
    retry_policy=RETRY_POLICIES['send_outbound_message'],
    acks_late=True,
)
def send_outbound_message(self, message_id: int) -> Dict[str, Any]:
    """
    Send a queued outbound message through its channel's adapter

    Args:
        message_id: Message row created with a pending_ placeholder id

    Returns:
        The provider message id now stored on the row
    """
    try:
        with get_celery_db_session() as db:
            message = OutboundDispatcher(db).dispatch(message_id)
            return {"message_id": message.id, "provider_message_id": message.provider_message_id}
    except Exception as e:
        self.retry_or_raise(e)
