"""
Meta OAuth client - authorization URL, code exchange and long-lived token renewal
"""
import logging
from typing import Any, Dict, Optional, Sequence
from urllib.parse import urlencode

from socialhub.core.encryption import SecretStore
from socialhub.integrations.base import GraphAPIClient, PlatformAPIError
from socialhub.integrations.constants import META_SCOPES, OAUTH_DIALOG_URL

logger = logging.getLogger(__name__)


class MetaOAuthClient(GraphAPIClient):
    platform = "meta"

    def __init__(self, app_id: Optional[str], app_secret: Optional[str], channel=None, **kwargs):
        super().__init__(channel=channel, **kwargs)
        self.app_id = app_id
        self.app_secret = app_secret

    def _require_credentials(self):
        if not self.app_id or not self.app_secret:
            raise PlatformAPIError("Meta app credentials are not configured")

    def get_authorization_url(self, redirect_uri: str, state: str, scopes: Sequence[str] = ()) -> str:
        params = {
            "client_id": self.app_id,
            "redirect_uri": redirect_uri,
            "scope": ",".join(list(META_SCOPES) + [s for s in scopes if s not in META_SCOPES]),
            "response_type": "code",
            "state": state,
        }
        return f"{OAUTH_DIALOG_URL}?{urlencode(params)}"

    def exchange_code_for_token(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        self._require_credentials()
        return self._request(
            "GET",
            "/oauth/access_token",
            "meta_exchange_code",
            params={
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            },
        )

    def refresh_access_token(self, access_token: SecretStore) -> Dict[str, Any]:
        """
        Exchange the current token for a fresh long-lived token

        Args:
            access_token: The channel's current token

        Returns:
            Response with access_token and, when the platform sends it, expires_in
        """
        self._require_credentials()
        with access_token.unsealed() as current_token:
            params = {
                "grant_type": "fb_exchange_token",
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "fb_exchange_token": current_token,
            }
            response = self._request("GET", "/oauth/access_token", "meta_refresh_token", params=params)

        if not response.get("access_token"):
            raise PlatformAPIError("Token exchange returned no access_token", response_data={"keys": list(response)})
        return response
