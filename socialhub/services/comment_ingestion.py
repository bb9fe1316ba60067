"""
Comment ingestion from Meta feed/comments webhook changes

Comments are keyed on provider_comment_id, so redelivered changes are no-ops.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from socialhub.db.models import Channel, Comment, CommentStatus, Post, utcnow

logger = logging.getLogger(__name__)


def _parse_time(value: Any) -> datetime:
    """Graph sends created_time as epoch seconds or ISO 8601"""
    if value is None:
        return utcnow()
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        return datetime.strptime(str(value), "%Y-%m-%dT%H:%M:%S%z")
    except ValueError:
        return utcnow()


class CommentIngestion:
    def __init__(self, db: Session):
        self.db = db

    def _find(self, provider_comment_id: str) -> Optional[Comment]:
        return self.db.query(Comment).filter(Comment.provider_comment_id == provider_comment_id).first()

    def _find_post_id(self, channel: Channel, provider_post_id: Optional[str]) -> Optional[int]:
        if not provider_post_id:
            return None
        post = self.db.query(Post.id).filter(
            Post.channel_id == channel.id,
            Post.provider_post_id == str(provider_post_id),
        ).first()
        return post.id if post else None

    def _store(self, channel: Channel, provider_comment_id: str, **fields) -> Optional[Comment]:
        if self._find(provider_comment_id) is not None:
            logger.debug(f"Duplicate comment {provider_comment_id}, skipping")
            return None

        parent_provider_id = fields.pop("parent_provider_id", None)
        parent = self._find(str(parent_provider_id)) if parent_provider_id else None

        try:
            with self.db.begin_nested():
                comment = Comment(
                    tenant_id=channel.tenant_id,
                    channel_id=channel.id,
                    post_id=self._find_post_id(channel, fields.get("provider_post_id")),
                    provider_comment_id=provider_comment_id,
                    parent_id=parent.id if parent else None,
                    is_reply=parent_provider_id is not None,
                    status=CommentStatus.VISIBLE,
                    **fields,
                )
                self.db.add(comment)
        except IntegrityError:
            logger.debug(f"Comment {provider_comment_id} stored concurrently, skipping")
            return None

        logger.info(f"Stored comment {provider_comment_id} on channel {channel.id}", extra={"tenant_id": channel.tenant_id})
        return comment

    def ingest_instagram_comment(self, channel: Channel, value: Dict[str, Any]) -> Optional[Comment]:
        comment_id = value.get("id")
        if not comment_id:
            return None

        sender = value.get("from") or {}
        return self._store(
            channel,
            str(comment_id),
            provider_post_id=str((value.get("media") or {}).get("id") or "") or None,
            provider_user_id=sender.get("id"),
            provider_username=sender.get("username"),
            message=value.get("text"),
            parent_provider_id=value.get("parent_id"),
            commented_at=_parse_time(value.get("timestamp")),
            meta=value,
        )

    def ingest_facebook_comment(self, channel: Channel, value: Dict[str, Any]) -> Optional[Comment]:
        comment_id = value.get("comment_id")
        if not comment_id:
            return None

        verb = value.get("verb", "add")
        if verb == "remove":
            existing = self._find(str(comment_id))
            if existing is not None:
                existing.status = CommentStatus.DELETED
            return existing

        if verb == "edited":
            existing = self._find(str(comment_id))
            if existing is not None:
                existing.message = value.get("message")
                return existing

        parent_id = value.get("parent_id")
        post_id = value.get("post_id")
        sender = value.get("from") or {}
        return self._store(
            channel,
            str(comment_id),
            provider_post_id=post_id,
            provider_user_id=sender.get("id"),
            provider_username=sender.get("name"),
            message=value.get("message"),
            # Top-level comments carry the post id as parent_id
            parent_provider_id=parent_id if parent_id and parent_id != post_id else None,
            commented_at=_parse_time(value.get("created_time")),
            meta=value,
        )
