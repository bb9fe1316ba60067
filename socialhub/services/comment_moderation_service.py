"""
Comment moderation - reply, hide and delete stored comments through the
channel's platform adapter
"""
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from socialhub.db.models import Comment, CommentStatus, utcnow
from socialhub.integrations.registry import get_adapter

logger = logging.getLogger(__name__)


class CommentModerationService:
    def __init__(self, db: Session, adapter_factory: Callable = get_adapter):
        self.db = db
        self.adapter_factory = adapter_factory

    def _get_comment(self, tenant_id: int, comment_id: int) -> Comment:
        comment = self.db.query(Comment).filter(Comment.id == comment_id, Comment.tenant_id == tenant_id).first()
        if comment is None:
            raise LookupError(f"Comment {comment_id} not found for tenant {tenant_id}")
        if comment.status == CommentStatus.DELETED:
            raise ValueError(f"Comment {comment_id} has been deleted")
        return comment

    def reply(self, tenant_id: int, comment_id: int, message: str) -> Optional[Comment]:
        """
        Reply to a comment

        Returns:
            The stored reply, keyed on the platform's id so the webhook echo
            of the same reply is deduplicated
        """
        comment = self._get_comment(tenant_id, comment_id)
        adapter = self.adapter_factory(comment.channel)
        try:
            response = adapter.reply_comment(comment.provider_comment_id, message)
        finally:
            adapter.close()

        now = utcnow()
        comment.replied_at = now

        reply = None
        reply_id = response.get("id")
        if reply_id:
            reply = Comment(
                tenant_id=comment.tenant_id,
                channel_id=comment.channel_id,
                post_id=comment.post_id,
                provider_comment_id=str(reply_id),
                provider_post_id=comment.provider_post_id,
                message=message,
                parent_id=comment.id,
                is_reply=True,
                status=CommentStatus.VISIBLE,
                commented_at=now,
                meta={"response": response},
            )
            self.db.add(reply)

        self.db.commit()
        logger.info(f"Replied to comment {comment_id}", extra={"tenant_id": tenant_id})
        return reply

    def hide(self, tenant_id: int, comment_id: int) -> Comment:
        comment = self._get_comment(tenant_id, comment_id)
        adapter = self.adapter_factory(comment.channel)
        try:
            adapter.hide_comment(comment.provider_comment_id)
        finally:
            adapter.close()

        comment.status = CommentStatus.HIDDEN
        self.db.commit()
        logger.info(f"Hid comment {comment_id}", extra={"tenant_id": tenant_id})
        return comment

    def delete(self, tenant_id: int, comment_id: int) -> Comment:
        comment = self._get_comment(tenant_id, comment_id)
        adapter = self.adapter_factory(comment.channel)
        try:
            adapter.delete_comment(comment.provider_comment_id)
        finally:
            adapter.close()

        comment.status = CommentStatus.DELETED
        self.db.commit()
        logger.info(f"Deleted comment {comment_id}", extra={"tenant_id": tenant_id})
        return comment
