"""
Post publishing task
"""
import logging
from typing import Any, Dict

from socialhub.services.scheduled_publisher import ScheduledPublisher
from socialhub.tasks.base import PipelineTask
from socialhub.tasks.celery_app import celery_app
from socialhub.tasks.db_session_manager import get_celery_db_session
from socialhub.tasks.policies import RETRY_POLICIES

logger = logging.getLogger(__name__)


class PublishPostTask(PipelineTask):
    """Marks the post failed with the final error once retries are exhausted"""

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        post_id = args[0] if args else kwargs.get('post_id')
        logger.error(f"Publish task {task_id} for post {post_id} failed: {exc}")
        if post_id is None:
            return
        with get_celery_db_session() as db:
            ScheduledPublisher(db).mark_failed(post_id, str(exc))


@celery_app.task(
    bind=True,
    base=PublishPostTask,
    name='socialhub.tasks.posting_tasks.publish_post',
    retry_policy=RETRY_POLICIES['publish_post'],
    acks_late=True,
)
def publish_post(self, post_id: int) -> Dict[str, Any]:
    """
    Publish a scheduled post

    Validation failures (inactive channel, Instagram without media) fail
    immediately; platform errors retry on the publish_post policy.
    """
    try:
        with get_celery_db_session() as db:
            post = ScheduledPublisher(db).publish(post_id)
            return {"post_id": post.id, "status": post.status, "provider_post_id": post.provider_post_id}
    except Exception as e:
        self.retry_or_raise(e)
