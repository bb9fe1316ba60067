"""
Channel type -> platform adapter lookup
"""
from typing import Dict, Type

from socialhub.db.models import ChannelType
from socialhub.integrations.base import PlatformAdapter, UnsupportedPlatformError
from socialhub.integrations.facebook_client import FacebookClient
from socialhub.integrations.instagram_client import InstagramClient
from socialhub.integrations.whatsapp_client import WhatsAppClient

ADAPTERS: Dict[str, Type[PlatformAdapter]] = {
    ChannelType.FACEBOOK: FacebookClient,
    ChannelType.INSTAGRAM: InstagramClient,
    ChannelType.WHATSAPP: WhatsAppClient,
}


def get_adapter(channel, **kwargs) -> PlatformAdapter:
    """
    Build the adapter for a channel

    Args:
        channel: Channel row
        **kwargs: Passed to the adapter (http_client, base_url, audit)

    Raises:
        UnsupportedPlatformError: If no adapter is registered for the channel type
    """
    adapter_cls = ADAPTERS.get(channel.type)
    if adapter_cls is None:
        raise UnsupportedPlatformError(f"No platform adapter for channel type: {channel.type}")
    return adapter_cls(channel, **kwargs)
