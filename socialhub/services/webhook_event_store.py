"""
Webhook Event Store

Durable record of every accepted webhook payload. Rows move
pending -> processing -> processed | failed; failed is terminal and keeps
the error for audit. A failed row is only reprocessed by an explicit replay.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

from sqlalchemy.orm import Session

from socialhub.core.config import get_settings
from socialhub.core.monitoring import metrics
from socialhub.core.webhook_security import webhook_validator, verify_handshake
from socialhub.db.models import WebhookEvent, WebhookStatus, utcnow
from socialhub.services.settings_resolver import SettingsResolver

logger = logging.getLogger(__name__)


def _enqueue_processing(event: WebhookEvent):
    from socialhub.tasks.webhook_tasks import enqueue_webhook_event

    enqueue_webhook_event(event.provider, event.id)


class WebhookEventStore:
    """Handshake checks, signature checks and WebhookEvent status transitions"""

    def __init__(self, db: Session, resolver: Optional[SettingsResolver] = None):
        self.db = db
        self.resolver = resolver or SettingsResolver(db)

    def verify(self, provider: str, mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
        """
        Subscription handshake

        Returns:
            The challenge to echo as text/plain, or None to respond 403
        """
        result = verify_handshake(mode, token, challenge, self.resolver.verify_token(provider))
        if result is None:
            logger.warning(f"{provider} webhook handshake rejected (mode={mode})")
        return result

    def verify_signature(self, body: Union[str, bytes], signature: Optional[str]) -> bool:
        """
        Check X-Hub-Signature-256 against the Meta app secret

        Raises:
            WebhookSecurityError: On missing or mismatched signature
        """
        return webhook_validator.verify(body, signature, self.resolver.meta_app_secret())

    def accept(self, provider: str, signature: Optional[str], payload: Dict[str, Any], enqueue: bool = True) -> WebhookEvent:
        """
        Persist a verified payload as pending and hand it to the processing queue

        The row is committed before enqueueing so no payload is lost if the
        broker or the worker fails; a row left pending can be replayed.
        """
        event = WebhookEvent(
            provider=provider,
            signature=signature,
            payload=payload,
            status=WebhookStatus.PENDING,
        )
        self.db.add(event)
        self.db.commit()
        self.db.refresh(event)

        logger.info(f"Accepted {provider} webhook event {event.id}", extra={"webhook_event_id": event.id})

        if enqueue:
            try:
                _enqueue_processing(event)
            except Exception as e:
                # The sender already gets its 200; the row stays pending for replay
                logger.error(f"Failed to enqueue webhook event {event.id}: {e}", extra={"webhook_event_id": event.id})
        return event

    def get(self, event_id: int) -> Optional[WebhookEvent]:
        return self.db.query(WebhookEvent).filter(WebhookEvent.id == event_id).first()

    def mark_processing(self, event: WebhookEvent) -> None:
        event.status = WebhookStatus.PROCESSING
        event.error = None
        self.db.commit()

    def mark_processed(self, event: WebhookEvent) -> None:
        event.status = WebhookStatus.PROCESSED
        event.processed_at = utcnow()
        event.error = None
        self.db.commit()
        metrics.record_webhook_processed(event.provider, WebhookStatus.PROCESSED)

    def mark_failed(self, event: WebhookEvent, error: str) -> None:
        event.status = WebhookStatus.FAILED
        event.processed_at = utcnow()
        event.error = error
        self.db.commit()
        metrics.record_webhook_processed(event.provider, WebhookStatus.FAILED)

    def replay(self, event_id: int, enqueue: bool = True) -> WebhookEvent:
        """
        Reset a failed (or stuck pending) event and process it again

        Safe because message and comment ingestion are idempotent on provider ids.
        """
        event = self.get(event_id)
        if event is None:
            raise LookupError(f"Webhook event {event_id} not found")
        if event.status not in (WebhookStatus.FAILED, WebhookStatus.PENDING):
            raise ValueError(f"Webhook event {event_id} is {event.status}; only failed or pending events can be replayed")

        event.status = WebhookStatus.PENDING
        event.error = None
        event.processed_at = None
        self.db.commit()
        logger.info(f"Replaying webhook event {event.id}", extra={"webhook_event_id": event.id})

        if enqueue:
            _enqueue_processing(event)
        return event

    def purge_processed(self, older_than_days: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """Delete processed events older than the retention window"""
        older_than_days = older_than_days or get_settings().webhook_retention_days
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=older_than_days)

        deleted = self.db.query(WebhookEvent).filter(
            WebhookEvent.status == WebhookStatus.PROCESSED,
            WebhookEvent.created_at < cutoff,
        ).delete(synchronize_session=False)
        self.db.commit()

        logger.info(f"Purged {deleted} processed webhook events older than {older_than_days} days")
        return deleted
