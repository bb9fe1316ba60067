"""
Meta webhook processor (Facebook pages and Instagram accounts)

Handles Messenger-style messaging events (messages, delivery and read
receipts) and comment changes. Events for pages or accounts no tenant has
connected are logged and skipped.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from socialhub.core.exceptions import MalformedPayloadError
from socialhub.db.models import Channel, ChannelType, WebhookEvent
from socialhub.services.channel_directory import ChannelDirectory
from socialhub.services.comment_ingestion import CommentIngestion
from socialhub.services.conversation_store import ConversationStore

logger = logging.getLogger(__name__)


def infer_message_type(message: Dict[str, Any]) -> str:
    attachments = message.get("attachments") or []
    if attachments:
        return attachments[0].get("type") or "file"
    return "text"


def _from_epoch_ms(value: Any) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(int(value) / 1000.0, tz=timezone.utc)
    except (TypeError, ValueError):
        return None


class MetaWebhookProcessor:
    provider = "facebook"

    def __init__(self, db: Session, directory: Optional[ChannelDirectory] = None, store: Optional[ConversationStore] = None):
        self.db = db
        self.directory = directory or ChannelDirectory(db)
        self.store = store or ConversationStore(db)
        self.comments = CommentIngestion(db)

    def process(self, event: WebhookEvent) -> None:
        """
        Apply every entry of the payload

        Raises:
            MalformedPayloadError: When the payload has no entry list
        """
        payload = event.payload or {}
        entries = payload.get("entry") if isinstance(payload, dict) else None
        if not isinstance(entries, list):
            raise MalformedPayloadError("Invalid webhook payload: missing entry field")

        channel_type = ChannelType.INSTAGRAM if payload.get("object") == "instagram" else ChannelType.FACEBOOK

        for entry in entries:
            for messaging in entry.get("messaging") or []:
                self._process_messaging(event, channel_type, messaging)
            for change in entry.get("changes") or []:
                self._process_change(event, channel_type, entry, change)

    def _resolve(self, event: WebhookEvent, channel_type: str, external_id: Any) -> Optional[Channel]:
        channel = self.directory.find_for_webhook(channel_type, external_id)
        if channel is None:
            logger.warning(f"No {channel_type} channel for {external_id}, skipping", extra={"webhook_event_id": event.id})
            return None

        event.tenant_id = channel.tenant_id
        event.channel_id = channel.id
        return channel

    def _process_messaging(self, event: WebhookEvent, channel_type: str, messaging: Dict[str, Any]) -> None:
        account_id = (messaging.get("recipient") or {}).get("id")
        sender_id = (messaging.get("sender") or {}).get("id")
        if not account_id or not sender_id:
            return

        message = messaging.get("message")
        if message and message.get("is_echo"):
            # Echo of a page-sent message; recorded by the outbound dispatcher
            return

        channel = self._resolve(event, channel_type, account_id)
        if channel is None:
            return

        conversation = self.store.get_or_create_conversation(channel, sender_id)

        if message:
            mid = message.get("mid")
            if not mid:
                raise MalformedPayloadError("Messaging event message has no mid")
            stored = self.store.store_inbound_message(
                conversation,
                provider_message_id=mid,
                body=message.get("text"),
                media=message.get("attachments"),
                message_type=infer_message_type(message),
                meta=message,
            )
            if stored is not None:
                logger.info(f"Stored inbound {channel_type} message {mid}", extra={"tenant_id": channel.tenant_id})

        delivery = messaging.get("delivery")
        if delivery:
            self.store.mark_delivered(delivery.get("mids") or [], channel.id)

        read = messaging.get("read")
        if read:
            self.store.mark_conversation_read(conversation, watermark=_from_epoch_ms(read.get("watermark")))

    def _process_change(self, event: WebhookEvent, channel_type: str, entry: Dict[str, Any], change: Dict[str, Any]) -> None:
        field = change.get("field")
        value = change.get("value") or {}

        if channel_type == ChannelType.INSTAGRAM and field == "comments":
            channel = self._resolve(event, channel_type, entry.get("id"))
            if channel is not None:
                self.comments.ingest_instagram_comment(channel, value)
        elif channel_type == ChannelType.FACEBOOK and field == "feed" and value.get("item") == "comment":
            channel = self._resolve(event, channel_type, entry.get("id"))
            if channel is not None:
                self.comments.ingest_facebook_comment(channel, value)
        else:
            logger.debug(f"Ignoring {channel_type} change field={field}")
