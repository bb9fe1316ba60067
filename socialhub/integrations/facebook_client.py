"""
Facebook Page adapter - Messenger sends, page publishing, comment moderation
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from socialhub.integrations.base import PlatformAdapter, is_video_url
from socialhub.integrations.constants import FB_PAGE_INSIGHT_METRICS

logger = logging.getLogger(__name__)


class FacebookClient(PlatformAdapter):
    platform = "facebook"
    identifier_key = "page_id"

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
                "payload": {"url": media["url"], "is_reusable": True},
            }

        return self._request(
            "POST", f"/{self.account_id}/messages", "facebook_send_message", token=self.token, json=payload
        )

    def publish_post(self, caption: Optional[str], media_urls: Sequence[str]) -> Dict[str, Any]:
        """
        Publish to the page

        Facebook accepts one media item per post by URL; the first item picks
        the photos or videos edge, a post without media goes to the feed.
        """
        payload: Dict[str, Any] = {"message": caption or ""}

        if media_urls:
            edge = "videos" if is_video_url(media_urls[0]) else "photos"
            payload["url"] = media_urls[0]
        else:
            edge = "feed"

        return self._request(
            "POST", f"/{self.account_id}/{edge}", "facebook_publish_post", token=self.token, json=payload
        )

    def reply_comment(self, comment_id: str, message: str) -> Dict[str, Any]:
        return self._request(
            "POST", f"/{comment_id}/comments", "facebook_reply_comment", token=self.token, json={"message": message}
        )

    def hide_comment(self, comment_id: str) -> Dict[str, Any]:
        return self._request(
            "POST", f"/{comment_id}", "facebook_hide_comment", token=self.token, json={"is_hidden": True}
        )

    def delete_comment(self, comment_id: str) -> bool:
        return self._delete_comment(comment_id)

    def fetch_insights(self, metric_names: Sequence[str] = FB_PAGE_INSIGHT_METRICS, period: str = "day") -> List[Dict[str, Any]]:
        return self._fetch_insights(metric_names, period)
