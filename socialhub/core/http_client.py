"""
Centralized HTTP Client Configuration

Standard synchronous httpx client for platform API calls made from Celery
workers. Every client carries an explicit timeout so a hung Graph API call
cannot starve a worker.
"""
import logging
from typing import Optional

import httpx

from socialhub.core.config import get_settings

logger = logging.getLogger(__name__)


class HTTPClientConfig:
    """Configuration for HTTP client."""

    def __init__(self, settings=None):
        settings = settings or get_settings()
        self.timeout = settings.platform_http_timeout
        self.user_agent = settings.http_user_agent
        self.max_connections = 20
        self.max_keepalive_connections = 10

    def to_limits(self):
        """Convert to httpx.Limits object."""
        return httpx.Limits(
            max_connections=self.max_connections,
            max_keepalive_connections=self.max_keepalive_connections
        )

    def to_timeout(self):
        """Convert to httpx.Timeout object."""
        return httpx.Timeout(self.timeout)


def build_http_client(
    config: Optional[HTTPClientConfig] = None,
    transport: Optional[httpx.BaseTransport] = None
) -> httpx.Client:
    """
    Build a configured httpx.Client

    Args:
        config: Client configuration, defaults to settings-derived values
        transport: Optional transport override (httpx.MockTransport in tests)

    Returns:
        httpx.Client with timeout, limits and user agent applied
    """
    config = config or HTTPClientConfig()
    return httpx.Client(
        limits=config.to_limits(),
        timeout=config.to_timeout(),
        headers={
            'User-Agent': config.user_agent,
            'Accept': 'application/json',
        },
        transport=transport,
    )
