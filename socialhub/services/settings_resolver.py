"""
Platform credential resolver

System-scope settings rows override the static environment configuration,
so Meta credentials can be rotated from the admin side without a redeploy.
"""
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from socialhub.core.config import get_settings
from socialhub.db.models import SystemSetting

logger = logging.getLogger(__name__)

META_APP_ID = "META_APP_ID"
META_APP_SECRET = "META_APP_SECRET"
META_VERIFY_TOKEN = "META_VERIFY_TOKEN"
WHATSAPP_VERIFY_TOKEN = "WHATSAPP_VERIFY_TOKEN"

# System setting key -> Settings attribute used as the fallback
STATIC_FALLBACKS = {
    META_APP_ID: "meta_app_id",
    META_APP_SECRET: "meta_app_secret",
    META_VERIFY_TOKEN: "meta_verify_token",
    WHATSAPP_VERIFY_TOKEN: "whatsapp_verify_token",
}


class SettingsResolver:
    """Resolves system settings with static config fallback"""

    def __init__(self, db: Session, settings=None):
        self.db = db
        self.settings = settings or get_settings()

    def get_system(self, key: str) -> Optional[Any]:
        row = (
            self.db.query(SystemSetting)
            .filter(SystemSetting.key == key, SystemSetting.scope == "system", SystemSetting.tenant_id.is_(None))
            .first()
        )
        if row is None or row.value is None:
            return None
        # Values are stored either bare or wrapped as {"value": ...}
        if isinstance(row.value, dict):
            return row.value.get("value")
        return row.value

    def resolve(self, key: str) -> Optional[str]:
        value = self.get_system(key)
        if value not in (None, ""):
            return str(value)

        attribute = STATIC_FALLBACKS.get(key)
        if attribute is None:
            return None
        return getattr(self.settings, attribute, None)

    def meta_app_id(self) -> Optional[str]:
        return self.resolve(META_APP_ID)

    def meta_app_secret(self) -> Optional[str]:
        return self.resolve(META_APP_SECRET)

    def verify_token(self, provider: str) -> Optional[str]:
        """Handshake verify token; WhatsApp has its own, everything else uses Meta's"""
        if provider == "whatsapp":
            return self.resolve(WHATSAPP_VERIFY_TOKEN)
        return self.resolve(META_VERIFY_TOKEN)
