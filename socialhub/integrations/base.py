"""
Platform adapter interface and the shared Graph API request path

Every adapter call goes through GraphAPIClient._request, which times the
call, writes an AuditLog row whether or not the platform accepted it, and
raises PlatformAPIError with the response body on any non-2xx status.
"""
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import httpx

from socialhub.core.config import get_settings
from socialhub.core.encryption import SecretStore
from socialhub.core.http_client import build_http_client
from socialhub.core.monitoring import metrics
from socialhub.services.audit_logger import AuditLogger, audit_logger

logger = logging.getLogger(__name__)


class PlatformAPIError(Exception):
    """Platform API call failed; the message embeds the raw response body"""
    def __init__(self, message: str, status_code: Optional[int] = None, response_data: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


class UnsupportedPlatformError(Exception):
    """Operation has no equivalent on the channel's platform"""
    pass


class GraphAPIClient:
    """Thin httpx wrapper for graph.facebook.com with per-call auditing"""

    platform = "meta"

    def __init__(
        self,
        channel=None,
        http_client: Optional[httpx.Client] = None,
        base_url: Optional[str] = None,
        audit: Optional[AuditLogger] = None,
    ):
        settings = get_settings()
        self.channel = channel
        self.base_url = (base_url or settings.graph_api_base_url).rstrip("/")
        self.http = http_client or build_http_client()
        self.audit = audit or audit_logger

    def close(self):
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        action: str,
        token: Optional[SecretStore] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        audit_request: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Perform one audited Graph API request

        Args:
            method: HTTP method
            path: Path below the Graph API base URL
            action: Audit action name
            token: Channel token, unsealed only for the duration of the call
            params: Query parameters
            json: JSON body
            audit_request: Payload recorded in the audit log (defaults to json or params)

        Returns:
            Parsed JSON response

        Raises:
            PlatformAPIError: On transport errors and non-2xx responses
        """
        url = self._url(path)
        start = time.time()
        response = None
        body: Any = None
        error: Optional[Exception] = None

        try:
            if token is not None:
                with token.unsealed() as access_token:
                    response = self.http.request(
                        method, url, params=params, json=json,
                        headers={"Authorization": f"Bearer {access_token}"},
                    )
            else:
                response = self.http.request(method, url, params=params, json=json)
            body = self._parse_body(response)
        except Exception as e:
            error = e

        latency_ms = int((time.time() - start) * 1000)
        success = error is None and response is not None and response.is_success

        self.audit.record_api_call(
            action=action,
            success=success,
            latency_ms=latency_ms,
            tenant_id=getattr(self.channel, "tenant_id", None),
            channel_id=getattr(self.channel, "id", None),
            request=audit_request if audit_request is not None else (json if json is not None else params),
            response=body if error is None else {"error": str(error)},
        )
        metrics.record_platform_call(self.platform, action, "success" if success else "failed", latency_ms / 1000.0)

        if error is not None:
            logger.warning(f"{action} failed after {latency_ms}ms: {error}")
            if isinstance(error, (httpx.HTTPError, httpx.InvalidURL)):
                raise PlatformAPIError(f"{action} failed: {error}") from error
            raise error

        if not response.is_success:
            logger.warning(f"{action} returned HTTP {response.status_code} after {latency_ms}ms")
            raise PlatformAPIError(
                f"{action} failed: {response.text}",
                status_code=response.status_code,
                response_data=body,
            )

        logger.debug(f"{action} succeeded in {latency_ms}ms")
        return body if isinstance(body, dict) else {"data": body}

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return response.text


class PlatformAdapter(GraphAPIClient, ABC):
    """
    Per-platform REST surface used by the dispatcher, publisher and
    comment moderation. Bound to a single channel.
    """

    identifier_key = ""

    def __init__(self, channel, **kwargs):
        super().__init__(channel=channel, **kwargs)

    @property
    def account_id(self) -> str:
        account_id = self.channel.identifier(self.identifier_key)
        if not account_id:
            raise PlatformAPIError(f"{self.platform} {self.identifier_key} not found in channel identifiers")
        return account_id

    @property
    def token(self) -> SecretStore:
        return self.channel.access_token

    @abstractmethod
    def send_message(self, recipient_id: str, body: Optional[str], media: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send a direct message; media is {"type": ..., "url": ...}"""

    @abstractmethod
    def publish_post(self, caption: Optional[str], media_urls: Sequence[str]) -> Dict[str, Any]:
        """Publish a post and return the platform response"""

    @abstractmethod
    def reply_comment(self, comment_id: str, message: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    def hide_comment(self, comment_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    def delete_comment(self, comment_id: str) -> bool:
        pass

    @abstractmethod
    def fetch_insights(self, metric_names: Sequence[str], period: str = "day") -> List[Dict[str, Any]]:
        """Return the Graph insights data list"""

    def _delete_comment(self, comment_id: str) -> bool:
        self._request("DELETE", f"/{comment_id}", f"{self.platform}_delete_comment", token=self.token)
        return True

    def _fetch_insights(self, metric_names: Sequence[str], period: str) -> List[Dict[str, Any]]:
        response = self._request(
            "GET",
            f"/{self.account_id}/insights",
            f"{self.platform}_fetch_insights",
            token=self.token,
            params={"metric": ",".join(metric_names), "period": period},
        )
        return response.get("data", [])


def is_video_url(url: str) -> bool:
    """Extension/path heuristic used to pick video endpoints"""
    lowered = url.lower()
    return ".mp4" in lowered or "video" in lowered
