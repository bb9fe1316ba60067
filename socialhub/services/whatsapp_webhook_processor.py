"""
WhatsApp Cloud API webhook processor

Consumes entry[].changes[] with field "messages": inbound messages are
stored once per provider id; status updates stamp delivery/read times on
outbound messages.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from socialhub.core.exceptions import MalformedPayloadError
from socialhub.db.models import Channel, ChannelType, Conversation, Message, WebhookEvent, utcnow
from socialhub.integrations.constants import WHATSAPP_MEDIA_TYPES
from socialhub.services.channel_directory import ChannelDirectory
from socialhub.services.conversation_store import ConversationStore

logger = logging.getLogger(__name__)


def extract_content(message: Dict[str, Any]) -> Tuple[str, Optional[str], Optional[List[Dict[str, Any]]]]:
    """
    Pull (type, body, media) out of a WhatsApp message

    Media messages carry their payload under a key named after the type,
    with the caption as the body.
    """
    message_type = message.get("type") or "text"
    body = None
    media = None

    if message_type == "text":
        body = (message.get("text") or {}).get("body")
    elif message_type in WHATSAPP_MEDIA_TYPES:
        fragment = message.get(message_type) or {}
        media = [fragment]
        body = fragment.get("caption")

    return message_type, body, media


class WhatsAppWebhookProcessor:
    provider = "whatsapp"

    def __init__(self, db: Session, directory: Optional[ChannelDirectory] = None, store: Optional[ConversationStore] = None):
        self.db = db
        self.directory = directory or ChannelDirectory(db)
        self.store = store or ConversationStore(db)

    def process(self, event: WebhookEvent) -> None:
        payload = event.payload or {}
        entries = payload.get("entry") if isinstance(payload, dict) else None
        if not isinstance(entries, list):
            raise MalformedPayloadError("Invalid webhook payload: missing entry field")

        for entry in entries:
            for change in entry.get("changes") or []:
                if change.get("field") == "messages":
                    self._process_value(event, change.get("value") or {})

    def _process_value(self, event: WebhookEvent, value: Dict[str, Any]) -> None:
        phone_number_id = (value.get("metadata") or {}).get("phone_number_id")
        if not phone_number_id:
            return

        channel = self.directory.find_for_webhook(ChannelType.WHATSAPP, phone_number_id)
        if channel is None:
            logger.warning(
                f"No whatsapp channel for phone number {phone_number_id}, skipping",
                extra={"webhook_event_id": event.id},
            )
            return

        event.tenant_id = channel.tenant_id
        event.channel_id = channel.id

        for message in value.get("messages") or []:
            self._process_message(channel, message)

        for status in value.get("statuses") or []:
            self._process_status(channel, status)

    def _process_message(self, channel: Channel, message: Dict[str, Any]) -> None:
        message_id = message.get("id")
        sender = message.get("from")
        if not message_id or not sender:
            raise MalformedPayloadError("WhatsApp message is missing id or from")

        if self.store.message_exists(str(message_id)):
            return

        conversation = self.store.get_or_create_conversation(channel, sender)
        message_type, body, media = extract_content(message)

        stored = self.store.store_inbound_message(
            conversation,
            provider_message_id=message_id,
            body=body,
            media=media,
            message_type=message_type,
            meta=message,
        )
        if stored is not None:
            logger.info(f"Stored inbound whatsapp message {message_id}", extra={"tenant_id": channel.tenant_id})

    def _process_status(self, channel: Channel, status: Dict[str, Any]) -> None:
        message_id = status.get("id")
        status_type = status.get("status")  # sent, delivered, read, failed
        if not message_id:
            return

        if status_type == "delivered":
            self.store.mark_delivered([message_id], channel.id)
        elif status_type == "read":
            self.store.mark_read(message_id, channel.id)
        elif status_type == "failed":
            self._record_failure(channel, str(message_id), status.get("errors") or [])

    def _record_failure(self, channel: Channel, message_id: str, errors: List[Dict[str, Any]]) -> None:
        message = (
            self.db.query(Message)
            .join(Conversation, Message.conversation_id == Conversation.id)
            .filter(Message.provider_message_id == message_id, Conversation.channel_id == channel.id)
            .first()
        )
        if message is None:
            return

        meta = dict(message.meta or {})
        meta["error"] = errors
        meta["failed_at"] = utcnow().isoformat()
        message.meta = meta
        logger.warning(f"WhatsApp reported delivery failure for {message_id}", extra={"message_id": message.id})
