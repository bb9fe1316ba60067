"""
Instagram Business adapter

Publishing is two-phase: a media container is created from the first media
URL, then published by its creation_id. Text-only posts are not supported.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from socialhub.integrations.base import PlatformAdapter, PlatformAPIError, is_video_url
from socialhub.integrations.constants import IG_ACCOUNT_INSIGHT_METRICS

logger = logging.getLogger(__name__)

MEDIA_REQUIRED_MESSAGE = "Instagram posts require at least one media item"


class InstagramMediaRequiredError(PlatformAPIError):
    """Raised before any API call when a post has no media"""
    def __init__(self):
        super().__init__(MEDIA_REQUIRED_MESSAGE)


class InstagramClient(PlatformAdapter):
    platform = "instagram"
    identifier_key = "instagram_account_id"

    def send_message(self, recipient_id: str, body: Optional[str], media: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "recipient": {"id": recipient_id},
            "message": {},
        }
        if body:
            payload["message"]["text"] = body
        if media:
            payload["message"]["attachment"] = {
                "type": media.get("type", "image"),
                "payload": {"url": media["url"]},
            }

        return self._request(
            "POST", f"/{self.account_id}/messages", "instagram_send_message", token=self.token, json=payload
        )

    def create_media_container(self, caption: Optional[str], media_url: str) -> str:
        payload: Dict[str, Any] = {"caption": caption or ""}
        if is_video_url(media_url):
            payload["media_type"] = "VIDEO"
            payload["video_url"] = media_url
        else:
            payload["image_url"] = media_url

        response = self._request(
            "POST", f"/{self.account_id}/media", "instagram_create_container", token=self.token, json=payload
        )
        container_id = response.get("id")
        if not container_id:
            raise PlatformAPIError("No container ID returned from Instagram", response_data=response)
        return str(container_id)

    def publish_post(self, caption: Optional[str], media_urls: Sequence[str]) -> Dict[str, Any]:
        if not media_urls:
            raise InstagramMediaRequiredError()

        container_id = self.create_media_container(caption, media_urls[0])
        return self._request(
            "POST",
            f"/{self.account_id}/media_publish",
            "instagram_publish_post",
            token=self.token,
            json={"creation_id": container_id},
        )

    def reply_comment(self, comment_id: str, message: str) -> Dict[str, Any]:
        return self._request(
            "POST", f"/{comment_id}/replies", "instagram_reply_comment", token=self.token, json={"message": message}
        )

    def hide_comment(self, comment_id: str) -> Dict[str, Any]:
        return self._request(
            "POST", f"/{comment_id}", "instagram_hide_comment", token=self.token, json={"hide": True}
        )

    def delete_comment(self, comment_id: str) -> bool:
        return self._delete_comment(comment_id)

    def fetch_insights(self, metric_names: Sequence[str] = IG_ACCOUNT_INSIGHT_METRICS, period: str = "day") -> List[Dict[str, Any]]:
        return self._fetch_insights(metric_names, period)
