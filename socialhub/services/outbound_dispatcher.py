"""
Outbound Dispatcher

Outbound messages are created with a pending_<uuid> placeholder as their
provider id, then sent through the channel's platform adapter by the
messaging queue. The placeholder is replaced with the platform's id on
success; failures are recorded in meta and re-raised for the retry policy.
"""
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from socialhub.core.exceptions import DispatchError
from socialhub.db.models import Channel, Conversation, Message, MessageDirection, utcnow
from socialhub.integrations.registry import get_adapter
from socialhub.services.media_resolver import MediaResolver

logger = logging.getLogger(__name__)

PLACEHOLDER_PREFIX = "pending_"


def new_placeholder_id() -> str:
    return f"{PLACEHOLDER_PREFIX}{uuid.uuid4()}"


def extract_provider_message_id(response: Dict[str, Any]) -> Optional[str]:
    """Messenger returns message_id, WhatsApp returns messages[0].id"""
    if response.get("message_id"):
        return str(response["message_id"])
    messages = response.get("messages")
    if isinstance(messages, list) and messages and messages[0].get("id"):
        return str(messages[0]["id"])
    if response.get("id"):
        return str(response["id"])
    return None


def _enqueue_dispatch(message: Message):
    from socialhub.tasks.messaging_tasks import send_outbound_message

    send_outbound_message.apply_async(args=[message.id])


class OutboundDispatcher:
    def __init__(self, db: Session, adapter_factory: Callable = get_adapter, media_resolver: Optional[MediaResolver] = None):
        self.db = db
        self.adapter_factory = adapter_factory
        self.media = media_resolver or MediaResolver(db)

    def create_outbound_message(
        self,
        tenant_id: int,
        conversation_id: int,
        body: Optional[str],
        media: Optional[List[Any]] = None,
        enqueue: bool = True,
    ) -> Message:
        """
        Create an outbound message and queue it for sending

        Args:
            tenant_id: Tenant that owns the conversation
            conversation_id: Target conversation
            body: Message text
            media: Media references; only the first one is sent

        Raises:
            LookupError: If the conversation does not belong to the tenant
        """
        conversation = self.db.query(Conversation).filter(
            Conversation.id == conversation_id,
            Conversation.tenant_id == tenant_id,
        ).first()
        if conversation is None:
            raise LookupError(f"Conversation {conversation_id} not found for tenant {tenant_id}")

        if not body and not media:
            raise ValueError("Outbound message needs a body or media")

        message = Message(
            conversation_id=conversation.id,
            provider_message_id=new_placeholder_id(),
            direction=MessageDirection.OUT,
            body=body,
            media=media or None,
            type="text" if not media else "media",
            meta={},
        )
        self.db.add(message)
        conversation.last_message_at = utcnow()
        self.db.commit()
        self.db.refresh(message)

        logger.info(f"Created outbound message {message.id} in conversation {conversation.id}", extra={"tenant_id": tenant_id})

        if enqueue:
            _enqueue_dispatch(message)
        return message

    def dispatch(self, message_id: int) -> Message:
        """
        Send one outbound message

        Already-dispatched messages (no placeholder id) are left alone, so a
        redelivered task does not send twice.

        Raises:
            DispatchError: Message, conversation or channel missing
            PlatformAPIError: Platform rejected the send
        """
        message = self.db.query(Message).filter(Message.id == message_id).first()
        if message is None:
            raise DispatchError(f"Message {message_id} not found")

        if message.direction != MessageDirection.OUT:
            raise DispatchError(f"Message {message_id} is not outbound")

        if not message.provider_message_id.startswith(PLACEHOLDER_PREFIX):
            logger.info(f"Message {message_id} already dispatched as {message.provider_message_id}")
            return message

        conversation = message.conversation
        channel: Optional[Channel] = conversation.channel if conversation else None

        try:
            if channel is None:
                raise DispatchError(f"Channel not found for message {message_id}")

            attachment = None
            if message.media:
                attachment = self.media.resolve(channel.tenant_id, message.media[0])
                if attachment is None:
                    raise DispatchError(f"Media {message.media[0]} could not be resolved")

            adapter = self.adapter_factory(channel)
            try:
                response = adapter.send_message(conversation.peer_id, message.body, attachment)
            finally:
                adapter.close()
        except Exception as e:
            meta = dict(message.meta or {})
            meta["error"] = str(e)
            meta["failed_at"] = utcnow().isoformat()
            message.meta = meta
            self.db.commit()
            logger.error(f"Failed to send outbound message {message_id}: {e}", extra={"message_id": message_id})
            raise

        provider_id = extract_provider_message_id(response)
        meta = dict(message.meta or {})
        meta.pop("error", None)
        meta.pop("failed_at", None)
        meta["response"] = response
        message.meta = meta

        if provider_id:
            message.provider_message_id = provider_id
        else:
            logger.warning(f"Platform returned no message id for outbound message {message_id}")

        self.db.commit()
        logger.info(
            f"Outbound message {message_id} sent via {channel.type}",
            extra={"message_id": message_id, "channel_id": channel.id},
        )
        return message
