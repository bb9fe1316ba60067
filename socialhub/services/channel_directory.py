"""
Channel Directory

Maps platform identifiers (page id, Instagram account id, phone number id)
to the tenant channel that owns them, and attaches new channels with
encrypted tokens.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import case
from sqlalchemy.orm import Session

from socialhub.core.config import get_settings
from socialhub.db.models import Channel, ChannelStatus, ChannelType

logger = logging.getLogger(__name__)


class ChannelDirectory:
    """Channel lookups scoped by explicit tenant ids or platform identifiers"""

    def __init__(self, db: Session):
        self.db = db

    def find_by_identifier(self, channel_type: str, key: str, value: Any) -> Optional[Channel]:
        """
        Resolve the channel that owns a platform identifier

        Active channels win over inactive ones sharing the same identifier.

        Args:
            channel_type: facebook, instagram or whatsapp
            key: identifiers key, e.g. page_id
            value: Identifier value from the webhook payload

        Returns:
            Channel or None when no tenant has connected this account
        """
        if value is None:
            return None

        return (
            self.db.query(Channel)
            .filter(Channel.type == channel_type, Channel.identifiers[key].as_string() == str(value))
            .order_by(case((Channel.status == ChannelStatus.ACTIVE, 0), else_=1), Channel.id)
            .first()
        )

    def find_for_webhook(self, channel_type: str, value: Any) -> Optional[Channel]:
        """Lookup by the channel type's primary routing identifier"""
        key = Channel.PRIMARY_IDENTIFIERS.get(channel_type)
        if key is None:
            return None
        return self.find_by_identifier(channel_type, key, value)

    def get_channel(self, tenant_id: int, channel_id: int) -> Optional[Channel]:
        return self.db.query(Channel).filter(Channel.id == channel_id, Channel.tenant_id == tenant_id).first()

    def attach_channel(
        self,
        tenant_id: int,
        channel_type: str,
        identifiers: Dict[str, Any],
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> Channel:
        """
        Attach (or reconnect) a channel after OAuth, storing encrypted tokens

        Args:
            tenant_id: Owning tenant
            channel_type: facebook, instagram or whatsapp
            identifiers: Platform ids; the primary identifier for the type is required
            access_token: Plaintext token from the OAuth exchange
            refresh_token: Optional plaintext refresh token
            expires_at: Token expiry

        Returns:
            The committed Channel
        """
        if channel_type not in ChannelType.ALL:
            raise ValueError(f"Unsupported channel type: {channel_type}")

        identifiers = {key: str(value) for key, value in identifiers.items() if value is not None}
        primary_key = Channel.PRIMARY_IDENTIFIERS[channel_type]
        if primary_key not in identifiers:
            raise ValueError(f"{channel_type} channels require identifiers.{primary_key}")

        channel = (
            self.db.query(Channel)
            .filter(
                Channel.tenant_id == tenant_id,
                Channel.type == channel_type,
                Channel.identifiers[primary_key].as_string() == identifiers[primary_key],
            )
            .first()
        )

        if channel is None:
            channel = Channel(tenant_id=tenant_id, type=channel_type)
            self.db.add(channel)
            logger.info(f"Attaching {channel_type} channel {identifiers[primary_key]} for tenant {tenant_id}")
        else:
            logger.info(f"Reconnecting {channel_type} channel {channel.id} for tenant {tenant_id}")

        channel.identifiers = identifiers
        channel.set_tokens(access_token, refresh_token=refresh_token, expires_at=expires_at)
        channel.status = ChannelStatus.ACTIVE
        self.db.commit()
        self.db.refresh(channel)
        return channel

    def find_expiring(self, within_days: Optional[int] = None) -> List[Channel]:
        """Active channels whose token expires within the refresh window"""
        within_days = within_days or get_settings().token_refresh_window_days
        cutoff = datetime.now(timezone.utc) + timedelta(days=within_days)
        return (
            self.db.query(Channel)
            .filter(
                Channel.status == ChannelStatus.ACTIVE,
                Channel.expires_at.isnot(None),
                Channel.expires_at <= cutoff,
            )
            .order_by(Channel.expires_at)
            .all()
        )

    def mark_error(self, channel: Channel, error: str) -> None:
        channel.status = ChannelStatus.ERROR
        self.db.commit()
        logger.warning(f"Channel {channel.id} marked error: {error}")
