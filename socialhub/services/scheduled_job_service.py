"""
Scheduled job sweep

ScheduledJob rows are the durable scheduling backbone for post publishing
and insight fetches. The sweep claims due pending rows, hands each one to
its task and records the outcome on the row.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from socialhub.db.models import Channel, JobStatus, Post, ScheduledJob, utcnow
from socialhub.services.scheduled_publisher import JOB_TYPE_PUBLISH_POST

logger = logging.getLogger(__name__)

JOB_TYPE_FETCH_INSIGHTS = "fetch_insights"


class UnknownJobTypeError(Exception):
    pass


def _enqueue_publish(post_id: int):
    from socialhub.tasks.posting_tasks import publish_post

    publish_post.apply_async(args=[post_id])


def _enqueue_insights(channel_id: int):
    from socialhub.tasks.insights_tasks import fetch_channel_insights

    fetch_channel_insights.apply_async(args=[channel_id])


class ScheduledJobService:
    def __init__(self, db: Session):
        self.db = db
        self.handlers: Dict[str, Callable[[ScheduledJob], None]] = {
            JOB_TYPE_PUBLISH_POST: self._publish_post,
            JOB_TYPE_FETCH_INSIGHTS: self._fetch_insights,
        }

    def schedule(self, tenant_id: int, job_type: str, payload: Dict[str, Any], run_at: datetime) -> ScheduledJob:
        if job_type not in self.handlers:
            raise UnknownJobTypeError(f"Unknown job type: {job_type}")
        job = ScheduledJob(tenant_id=tenant_id, job_type=job_type, payload=payload, run_at=run_at, status=JobStatus.PENDING)
        self.db.add(job)
        self.db.commit()
        return job

    def due_jobs(self, now: Optional[datetime] = None):
        now = now or utcnow()
        return (
            self.db.query(ScheduledJob)
            .filter(ScheduledJob.status == JobStatus.PENDING, ScheduledJob.run_at <= now)
            .order_by(ScheduledJob.run_at, ScheduledJob.id)
            .all()
        )

    def process_due_jobs(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Run every due pending job once

        Returns:
            Counts of completed and failed jobs
        """
        jobs = self.due_jobs(now)
        logger.info(f"Processing {len(jobs)} scheduled jobs")

        results = {"completed": 0, "failed": 0}
        for job in jobs:
            if self.run_job(job):
                results["completed"] += 1
            else:
                results["failed"] += 1
        return results

    def run_job(self, job: ScheduledJob) -> bool:
        job.mark_running()
        self.db.commit()

        try:
            handler = self.handlers.get(job.job_type)
            if handler is None:
                raise UnknownJobTypeError(f"Unknown job type: {job.job_type}")
            handler(job)
        except Exception as e:
            self.db.rollback()
            job.mark_failed(str(e))
            self.db.commit()
            logger.error(f"Scheduled job {job.id} ({job.job_type}) failed: {e}", extra={"tenant_id": job.tenant_id})
            return False

        job.mark_completed()
        self.db.commit()
        return True

    def _publish_post(self, job: ScheduledJob) -> None:
        post_id = (job.payload or {}).get("post_id")
        if not post_id:
            raise ValueError("No post_id in scheduled job payload")
        post = self.db.query(Post).filter(Post.id == post_id, Post.tenant_id == job.tenant_id).first()
        if post is None:
            raise LookupError(f"Post not found: {post_id}")
        _enqueue_publish(post.id)

    def _fetch_insights(self, job: ScheduledJob) -> None:
        channel_id = (job.payload or {}).get("channel_id")
        if not channel_id:
            raise ValueError("No channel_id in scheduled job payload")
        channel = self.db.query(Channel).filter(Channel.id == channel_id, Channel.tenant_id == job.tenant_id).first()
        if channel is None:
            raise LookupError(f"Channel not found: {channel_id}")
        _enqueue_insights(channel.id)
