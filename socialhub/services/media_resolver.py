"""
Resolve post/message media references to absolute URLs

References are either media asset ids owned by the tenant or URLs. Stored
asset paths are joined onto MEDIA_BASE_URL unless they are already absolute.
"""
import logging
import mimetypes
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urljoin

from sqlalchemy.orm import Session

from socialhub.core.config import get_settings
from socialhub.db.models import MediaAsset
from socialhub.integrations.base import is_video_url

logger = logging.getLogger(__name__)


def _absolute(path: str, base_url: str) -> str:
    if path.startswith("http://") or path.startswith("https://"):
        return path
    return urljoin(base_url if base_url.endswith("/") else f"{base_url}/", path.lstrip("/"))


def _media_type(mime_type: Optional[str], url: str) -> str:
    mime_type = mime_type or mimetypes.guess_type(url)[0] or ""
    if mime_type.startswith("video/") or is_video_url(url):
        return "video"
    if mime_type.startswith("audio/"):
        return "audio"
    if mime_type.startswith("image/") or not mime_type:
        return "image"
    return "file"


class MediaResolver:
    def __init__(self, db: Session, base_url: Optional[str] = None):
        self.db = db
        self.base_url = base_url or get_settings().media_base_url

    def _asset(self, tenant_id: int, asset_id: Any) -> Optional[MediaAsset]:
        try:
            asset_id = int(asset_id)
        except (TypeError, ValueError):
            return None
        return self.db.query(MediaAsset).filter(MediaAsset.id == asset_id, MediaAsset.tenant_id == tenant_id).first()

    def resolve(self, tenant_id: int, ref: Any) -> Optional[Dict[str, str]]:
        """
        Resolve one reference to {"type", "url"}

        Returns:
            None when an asset id does not belong to the tenant
        """
        if isinstance(ref, dict):
            url = ref.get("url") or ref.get("link")
            if url:
                return {"type": ref.get("type") or _media_type(None, url), "url": _absolute(url, self.base_url)}
            ref = ref.get("id") or ref.get("media_asset_id")

        if isinstance(ref, str) and not ref.isdigit():
            url = _absolute(ref, self.base_url)
            return {"type": _media_type(None, url), "url": url}

        asset = self._asset(tenant_id, ref)
        if asset is None:
            logger.warning(f"Media asset {ref} not found for tenant {tenant_id}")
            return None

        url = asset.provider_url or _absolute(asset.storage_path, self.base_url)
        return {"type": _media_type(asset.mime_type, url), "url": url}

    def resolve_urls(self, tenant_id: int, refs: Optional[Sequence[Any]]) -> List[str]:
        """Ordered absolute URLs; unresolvable references are dropped"""
        urls = []
        for ref in refs or []:
            resolved = self.resolve(tenant_id, ref)
            if resolved is not None:
                urls.append(resolved["url"])
        return urls
