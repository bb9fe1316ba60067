"""
Insights tasks
"""
import logging
from datetime import date
from typing import Any, Dict, Optional

from socialhub.services.insights_service import InsightsService
from socialhub.tasks.base import PipelineTask
from socialhub.tasks.celery_app import celery_app
from socialhub.tasks.db_session_manager import get_celery_db_session
from socialhub.tasks.policies import RETRY_POLICIES

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    base=PipelineTask,
    name='socialhub.tasks.insights_tasks.fetch_channel_insights',
    retry_policy=RETRY_POLICIES['fetch_channel_insights'],
    acks_late=True,
)
def fetch_channel_insights(self, channel_id: int, for_date: Optional[str] = None) -> Dict[str, Any]:
    """
    Fetch one day of insights for a channel

    Args:
        channel_id: Facebook or Instagram channel
        for_date: ISO date the values are stored under, defaults to yesterday
    """
    day = date.fromisoformat(for_date) if for_date else None
    try:
        with get_celery_db_session() as db:
            insights = InsightsService(db).fetch_channel_insights(channel_id, day)
    except Exception as e:
        self.retry_or_raise(e)
    return {"channel_id": channel_id, "metrics": {name: str(value) for name, value in insights.items()}}


@celery_app.task(
    bind=True,
    base=PipelineTask,
    name='socialhub.tasks.insights_tasks.enqueue_daily_insights',
    retry_policy=RETRY_POLICIES['enqueue_daily_insights'],
)
def enqueue_daily_insights(self) -> Dict[str, Any]:
    with get_celery_db_session() as db:
        channel_ids = InsightsService(db).enqueue_all_active()
    return {"queued": len(channel_ids)}
