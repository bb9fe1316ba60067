"""
Conversation/Message persistence shared by the webhook processors

Correctness under redelivery and concurrent workers relies on the unique
keys, not locks: (channel_id, peer_id) for conversations and
provider_message_id for messages. Inserts run in a savepoint so a lost
race surfaces as IntegrityError and is treated as "already stored".
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from socialhub.db.models import (
    Channel, Conversation, ConversationStatus, Message, MessageDirection, utcnow
)
from socialhub.services.usage_tracking_service import UsageTrackingService, METRIC_MESSAGES

logger = logging.getLogger(__name__)


class ConversationStore:
    def __init__(self, db: Session, usage: Optional[UsageTrackingService] = None):
        self.db = db
        self.usage = usage or UsageTrackingService(db)

    def _find_conversation(self, channel_id: int, peer_id: str) -> Optional[Conversation]:
        return self.db.query(Conversation).filter(
            Conversation.channel_id == channel_id,
            Conversation.peer_id == peer_id,
        ).first()

    def get_or_create_conversation(self, channel: Channel, peer_id: Any) -> Conversation:
        peer_id = str(peer_id)
        conversation = self._find_conversation(channel.id, peer_id)
        if conversation is not None:
            return conversation

        try:
            with self.db.begin_nested():
                conversation = Conversation(
                    tenant_id=channel.tenant_id,
                    channel_id=channel.id,
                    peer_id=peer_id,
                    status=ConversationStatus.OPEN,
                )
                self.db.add(conversation)
            logger.info(f"New conversation {conversation.id} on channel {channel.id}")
        except IntegrityError:
            conversation = self._find_conversation(channel.id, peer_id)
            if conversation is None:
                raise
        return conversation

    def message_exists(self, provider_message_id: str) -> bool:
        return self.db.query(Message.id).filter(
            Message.provider_message_id == provider_message_id
        ).first() is not None

    def store_inbound_message(
        self,
        conversation: Conversation,
        provider_message_id: str,
        body: Optional[str],
        media: Optional[List[Dict[str, Any]]],
        message_type: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Optional[Message]:
        """
        Persist an inbound message once

        Returns:
            The new Message, or None when the provider id was already stored
        """
        provider_message_id = str(provider_message_id)
        if self.message_exists(provider_message_id):
            logger.debug(f"Duplicate provider message {provider_message_id}, skipping")
            return None

        try:
            with self.db.begin_nested():
                message = Message(
                    conversation_id=conversation.id,
                    provider_message_id=provider_message_id,
                    direction=MessageDirection.IN,
                    body=body,
                    media=media,
                    type=message_type,
                    meta=meta,
                )
                self.db.add(message)
        except IntegrityError:
            logger.debug(f"Provider message {provider_message_id} stored concurrently, skipping")
            return None

        conversation.last_message_at = utcnow()
        self.usage.increment_usage(conversation.tenant_id, METRIC_MESSAGES)
        return message

    def mark_delivered(self, provider_message_ids: List[str], channel_id: int, at: Optional[datetime] = None) -> int:
        if not provider_message_ids:
            return 0
        at = at or utcnow()
        conversation_ids = select(Conversation.id).where(Conversation.channel_id == channel_id)
        return self.db.query(Message).filter(
            Message.provider_message_id.in_([str(mid) for mid in provider_message_ids]),
            Message.conversation_id.in_(conversation_ids),
            Message.delivered_at.is_(None),
        ).update({Message.delivered_at: at}, synchronize_session=False)

    def mark_read(self, provider_message_id: str, channel_id: int, at: Optional[datetime] = None) -> int:
        """Read implies delivered; an existing delivered_at is kept"""
        at = at or utcnow()
        conversation_ids = select(Conversation.id).where(Conversation.channel_id == channel_id)
        query = self.db.query(Message).filter(
            Message.provider_message_id == str(provider_message_id),
            Message.conversation_id.in_(conversation_ids),
        )
        updated = 0
        for message in query.all():
            message.read_at = at
            if message.delivered_at is None:
                message.delivered_at = at
            updated += 1
        return updated

    def mark_conversation_read(self, conversation: Conversation, watermark: Optional[datetime] = None) -> int:
        """
        Mark outbound messages in a conversation read

        Meta read receipts carry a watermark rather than message ids; every
        unread outbound message sent at or before the watermark is marked.
        """
        now = utcnow()
        query = self.db.query(Message).filter(
            Message.conversation_id == conversation.id,
            Message.direction == MessageDirection.OUT,
            Message.read_at.is_(None),
        )
        if watermark is not None:
            query = query.filter(Message.created_at <= watermark)
        return query.update({Message.read_at: now}, synchronize_session=False)
