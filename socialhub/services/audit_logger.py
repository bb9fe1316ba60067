"""
Audit trail for third-party platform API calls

Each call is written in its own session and committed immediately, so the
record survives even when the caller's transaction is rolled back after a
platform failure.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from socialhub.db import database
from socialhub.db.models import AuditLog

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = frozenset({
    "access_token",
    "refresh_token",
    "fb_exchange_token",
    "client_secret",
    "input_token",
    "appsecret_proof",
    "authorization",
})

REDACTED = "[REDACTED]"


def scrub_sensitive_data(data: Any) -> Any:
    """Recursively replace credential values before they are persisted"""
    if isinstance(data, dict):
        return {
            key: REDACTED if str(key).lower() in SENSITIVE_KEYS else scrub_sensitive_data(value)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [scrub_sensitive_data(item) for item in data]
    return data


class AuditLogger:
    """Writes AuditLog rows for platform API calls"""

    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    def _new_session(self):
        factory = self._session_factory or database.SessionLocal
        return factory()

    def record_api_call(
        self,
        action: str,
        success: bool,
        latency_ms: int,
        tenant_id: Optional[int] = None,
        channel_id: Optional[int] = None,
        request: Optional[Dict[str, Any]] = None,
        response: Any = None,
    ) -> Optional[int]:
        """
        Persist one platform call

        Args:
            action: Adapter action name, e.g. facebook_send_message
            success: Whether the platform returned 2xx
            latency_ms: Wall time of the call
            tenant_id: Owning tenant
            channel_id: Channel the call was made for
            request: Request payload (scrubbed before storage)
            response: Parsed response body

        Returns:
            AuditLog id, or None if the row could not be written
        """
        db = self._new_session()
        try:
            entry = AuditLog(
                tenant_id=tenant_id,
                channel_id=channel_id,
                action=action,
                request=scrub_sensitive_data(request) if request is not None else None,
                response=scrub_sensitive_data(response) if isinstance(response, (dict, list)) else (
                    {"raw": response} if response is not None else None
                ),
                status="success" if success else "error",
                latency_ms=latency_ms,
            )
            db.add(entry)
            db.commit()
            return entry.id
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to write audit log for {action}: {e}")
            return None
        finally:
            db.close()


audit_logger = AuditLogger()
