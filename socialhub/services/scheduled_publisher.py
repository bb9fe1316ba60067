"""
Scheduled Publisher

Moves posts through draft/failed -> scheduled -> published | failed.
Scheduling writes a ScheduledJob row consumed by the per-minute sweep;
publish_now skips the sweep and enqueues the publish task directly.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from socialhub.core.exceptions import ChannelNotActiveError, PublishValidationError
from socialhub.core.monitoring import metrics
from socialhub.db.models import ChannelType, JobStatus, Post, PostStatus, ScheduledJob, utcnow
from socialhub.integrations.instagram_client import MEDIA_REQUIRED_MESSAGE
from socialhub.integrations.registry import get_adapter
from socialhub.services.media_resolver import MediaResolver
from socialhub.services.usage_tracking_service import UsageTrackingService, METRIC_POSTS

logger = logging.getLogger(__name__)

JOB_TYPE_PUBLISH_POST = "publish_post"

PUBLISHABLE_TYPES = (ChannelType.FACEBOOK, ChannelType.INSTAGRAM)


def _enqueue_publish(post: Post):
    from socialhub.tasks.posting_tasks import publish_post

    publish_post.apply_async(args=[post.id])


class ScheduledPublisher:
    def __init__(self, db: Session, adapter_factory: Callable = get_adapter, media_resolver: Optional[MediaResolver] = None):
        self.db = db
        self.adapter_factory = adapter_factory
        self.media = media_resolver or MediaResolver(db)

    def _get_post(self, tenant_id: int, post_id: int) -> Post:
        post = self.db.query(Post).filter(Post.id == post_id, Post.tenant_id == tenant_id).first()
        if post is None:
            raise LookupError(f"Post {post_id} not found for tenant {tenant_id}")
        return post

    def validate_publishable(self, post: Post) -> None:
        """
        Checks that can never pass on retry

        Raises:
            ChannelNotActiveError: Channel missing or not active
            PublishValidationError: Channel type cannot publish, or Instagram without media
        """
        channel = post.channel
        if channel is None or not channel.is_active:
            raise ChannelNotActiveError()

        if channel.type not in PUBLISHABLE_TYPES:
            raise PublishValidationError(f"Unsupported channel type: {channel.type}")

        if channel.type == ChannelType.INSTAGRAM and not self.media.resolve_urls(post.tenant_id, post.media):
            raise PublishValidationError(MEDIA_REQUIRED_MESSAGE)

    def _mark_scheduled(self, tenant_id: int, post_id: int, run_at: datetime) -> Post:
        post = self._get_post(tenant_id, post_id)
        if not post.is_mutable:
            raise PublishValidationError(f"Post {post_id} is {post.status}; only draft or failed posts can be scheduled")

        # Raises before any state change, leaving the post as it was
        self.validate_publishable(post)

        post.status = PostStatus.SCHEDULED
        post.scheduled_for = run_at
        post.error = None
        return post

    def schedule_post(self, tenant_id: int, post_id: int, run_at: datetime) -> Post:
        """
        Schedule a draft/failed post for run_at

        Returns:
            The post, now scheduled, with a pending publish_post ScheduledJob
        """
        post = self._mark_scheduled(tenant_id, post_id, run_at)
        self.db.add(ScheduledJob(
            tenant_id=tenant_id,
            job_type=JOB_TYPE_PUBLISH_POST,
            payload={"post_id": post.id},
            run_at=run_at,
            status=JobStatus.PENDING,
        ))
        self.db.commit()
        logger.info(f"Post {post.id} scheduled for {run_at.isoformat()}", extra={"tenant_id": tenant_id, "post_id": post.id})
        return post

    def publish_now(self, tenant_id: int, post_id: int, enqueue: bool = True) -> Post:
        post = self._mark_scheduled(tenant_id, post_id, utcnow())
        self.db.commit()
        logger.info(f"Post {post.id} queued for immediate publishing", extra={"tenant_id": tenant_id, "post_id": post.id})
        if enqueue:
            _enqueue_publish(post)
        return post

    def publish(self, post_id: int) -> Post:
        """
        Publish a scheduled post through the channel's adapter

        On failure the post is marked failed with the error and the exception
        is re-raised so the task retry policy applies.
        """
        post = self.db.query(Post).filter(Post.id == post_id).first()
        if post is None:
            raise LookupError(f"Post {post_id} not found")

        if post.status == PostStatus.PUBLISHED:
            logger.info(f"Post {post_id} already published, skipping")
            return post
        if post.status == PostStatus.DRAFT:
            logger.info(f"Post {post_id} was moved back to draft, skipping")
            return post

        channel = post.channel
        try:
            self.validate_publishable(post)
            media_urls = self.media.resolve_urls(post.tenant_id, post.media)

            adapter = self.adapter_factory(channel)
            try:
                response = adapter.publish_post(post.caption or "", media_urls)
            finally:
                adapter.close()
        except Exception as e:
            post.status = PostStatus.FAILED
            post.error = str(e)
            self.db.commit()
            metrics.record_post_outcome(channel.type if channel else "unknown", PostStatus.FAILED)
            logger.error(f"Failed to publish post {post_id}: {e}", extra={"post_id": post_id})
            raise

        post.status = PostStatus.PUBLISHED
        post.published_at = utcnow()
        provider_post_id = response.get("id") or response.get("post_id")
        post.provider_post_id = str(provider_post_id) if provider_post_id else None
        post.error = None
        UsageTrackingService(self.db).increment_usage(post.tenant_id, METRIC_POSTS)
        self.db.commit()

        metrics.record_post_outcome(channel.type, PostStatus.PUBLISHED)
        logger.info(
            f"Post {post_id} published on {channel.type} as {post.provider_post_id}",
            extra={"post_id": post_id, "channel_id": channel.id},
        )
        return post

    def mark_failed(self, post_id: int, error: str) -> None:
        """Final failure after retries are exhausted; never leaves a post scheduled"""
        post = self.db.query(Post).filter(Post.id == post_id).first()
        if post is None or post.status == PostStatus.PUBLISHED:
            return
        post.status = PostStatus.FAILED
        post.error = error
        self.db.commit()
        logger.error(f"Post {post_id} publishing failed permanently: {error}", extra={"post_id": post_id})
