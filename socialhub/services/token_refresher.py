"""
Token Refresher

Renews channel tokens through Meta's fb_exchange_token grant, both from the
daily expiring-token sweep and on demand for a single channel.
"""
import logging
from datetime import timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from socialhub.core.config import get_settings
from socialhub.core.exceptions import TokenRefreshError
from socialhub.db.models import Channel, ChannelStatus, utcnow
from socialhub.integrations.meta_oauth_client import MetaOAuthClient
from socialhub.services.channel_directory import ChannelDirectory
from socialhub.services.settings_resolver import SettingsResolver

logger = logging.getLogger(__name__)


def _enqueue_refresh(channel_id: int):
    from socialhub.tasks.token_tasks import refresh_channel_token

    refresh_channel_token.apply_async(args=[channel_id])


class TokenRefresher:
    def __init__(self, db: Session, oauth_client_factory: Optional[Callable[..., MetaOAuthClient]] = None):
        self.db = db
        self.directory = ChannelDirectory(db)
        self.oauth_client_factory = oauth_client_factory or MetaOAuthClient

    def refresh(self, channel_id: int) -> Channel:
        """
        Exchange a channel's token for a new long-lived token

        On failure the channel is marked error and TokenRefreshError is raised.
        """
        channel = self.db.query(Channel).filter(Channel.id == channel_id).first()
        if channel is None:
            raise LookupError(f"Channel {channel_id} not found")

        settings = get_settings()
        resolver = SettingsResolver(self.db)
        client = self.oauth_client_factory(resolver.meta_app_id(), resolver.meta_app_secret(), channel=channel)

        try:
            response = client.refresh_access_token(channel.access_token)
        except Exception as e:
            channel.status = ChannelStatus.ERROR
            self.db.commit()
            logger.error(f"Token refresh failed for channel {channel_id}: {e}", extra={"channel_id": channel_id})
            raise TokenRefreshError(f"Token refresh failed for channel {channel_id}: {e}") from e
        finally:
            client.close()

        expires_in = response.get("expires_in") or settings.default_token_ttl_seconds
        channel.set_tokens(response["access_token"], expires_at=utcnow() + timedelta(seconds=int(expires_in)))
        channel.status = ChannelStatus.ACTIVE
        self.db.commit()

        logger.info(f"Token refreshed for channel {channel_id}, expires in {int(expires_in)}s", extra={"channel_id": channel_id})
        return channel

    def request_token_refresh(self, tenant_id: int, channel_id: int) -> None:
        """Manual refresh trigger for a tenant's channel"""
        channel = self.directory.get_channel(tenant_id, channel_id)
        if channel is None:
            raise LookupError(f"Channel {channel_id} not found for tenant {tenant_id}")
        _enqueue_refresh(channel.id)

    def enqueue_expiring(self, within_days: Optional[int] = None) -> List[int]:
        """Queue a refresh for every active channel expiring within the window"""
        channel_ids = [channel.id for channel in self.directory.find_expiring(within_days)]
        for channel_id in channel_ids:
            _enqueue_refresh(channel_id)
        logger.info(f"Queued token refresh for {len(channel_ids)} expiring channels")
        return channel_ids
