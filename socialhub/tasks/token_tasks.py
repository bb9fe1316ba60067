"""
Token health tasks: per-channel refresh and the daily expiring-token sweep
"""
import logging
from typing import Any, Dict

from socialhub.services.token_refresher import TokenRefresher
from socialhub.tasks.base import PipelineTask
from socialhub.tasks.celery_app import celery_app
from socialhub.tasks.db_session_manager import get_celery_db_session
from socialhub.tasks.policies import RETRY_POLICIES

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    base=PipelineTask,
    name='socialhub.tasks.token_tasks.refresh_channel_token',
    retry_policy=RETRY_POLICIES['refresh_channel_token'],
    acks_late=True,
)
def refresh_channel_token(self, channel_id: int) -> Dict[str, Any]:
    try:
        with get_celery_db_session() as db:
            channel = TokenRefresher(db).refresh(channel_id)
            expires_at = channel.expires_at.isoformat() if channel.expires_at else None
            return {"channel_id": channel.id, "status": channel.status, "expires_at": expires_at}
    except Exception as e:
        self.retry_or_raise(e)


@celery_app.task(
    bind=True,
    base=PipelineTask,
    name='socialhub.tasks.token_tasks.refresh_expiring_tokens',
    retry_policy=RETRY_POLICIES['refresh_expiring_tokens'],
)
def refresh_expiring_tokens(self) -> Dict[str, Any]:
    """Queue a refresh for every active channel expiring within the refresh window"""
    with get_celery_db_session() as db:
        channel_ids = TokenRefresher(db).enqueue_expiring()
    return {"queued": len(channel_ids), "channel_ids": channel_ids}
