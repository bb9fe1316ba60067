"""
WhatsApp Cloud API adapter

Sends use the messaging_product envelope on /{phone_number_id}/messages.
WhatsApp has no posts, comments or account insights.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from socialhub.integrations.base import PlatformAdapter, UnsupportedPlatformError
from socialhub.integrations.constants import WHATSAPP_TEMPLATE_LANGUAGE

logger = logging.getLogger(__name__)


class WhatsAppClient(PlatformAdapter):
    platform = "whatsapp"
    identifier_key = "phone_number_id"

    def send_message(self, recipient_id: str, body: Optional[str], media: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "messaging_product": "whatsapp",
            "to": recipient_id,
        }
        if media:
            media_type = media.get("type", "image")
            payload["type"] = media_type
            payload[media_type] = {"link": media["url"]}
            caption = media.get("caption") or body
            if caption:
                payload[media_type]["caption"] = caption
        else:
            payload["type"] = "text"
            payload["text"] = {"body": body or ""}

        return self._request(
            "POST", f"/{self.account_id}/messages", "whatsapp_send_message", token=self.token, json=payload
        )

    def send_template(
        self,
        recipient_id: str,
        template_name: str,
        components: Optional[List[Dict[str, Any]]] = None,
        language: str = WHATSAPP_TEMPLATE_LANGUAGE,
    ) -> Dict[str, Any]:
        payload = {
            "messaging_product": "whatsapp",
            "to": recipient_id,
            "type": "template",
            "template": {
                "name": template_name,
                "language": {"code": language},
                "components": components or [],
            },
        }
        return self._request(
            "POST", f"/{self.account_id}/messages", "whatsapp_send_template", token=self.token, json=payload
        )

    def publish_post(self, caption: Optional[str], media_urls: Sequence[str]) -> Dict[str, Any]:
        raise UnsupportedPlatformError("WhatsApp channels cannot publish posts")

    def reply_comment(self, comment_id: str, message: str) -> Dict[str, Any]:
        raise UnsupportedPlatformError("WhatsApp channels have no comments")

    def hide_comment(self, comment_id: str) -> Dict[str, Any]:
        raise UnsupportedPlatformError("WhatsApp channels have no comments")

    def delete_comment(self, comment_id: str) -> bool:
        raise UnsupportedPlatformError("WhatsApp channels have no comments")

    def fetch_insights(self, metric_names: Sequence[str] = (), period: str = "day") -> List[Dict[str, Any]]:
        raise UnsupportedPlatformError("WhatsApp channels have no account insights")
