"""
Webhook Signature Validation
Verifies Meta/WhatsApp webhook callbacks (X-Hub-Signature-256) and the
subscription handshake both providers perform when a callback URL is registered
"""
import hmac
import hashlib
import logging
from enum import Enum
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-hub-signature-256"
SIGNATURE_PREFIX = "sha256="


class WebhookProvider(str, Enum):
    """Inbound webhook providers"""
    FACEBOOK = "facebook"  # Meta Graph webhooks (pages and Instagram)
    WHATSAPP = "whatsapp"  # WhatsApp Cloud API


class WebhookSecurityError(Exception):
    """Base class for webhook security errors"""
    pass


class InvalidSignatureError(WebhookSecurityError):
    """Raised when webhook signature is invalid"""
    pass


class MissingSignatureError(WebhookSecurityError):
    """Raised when the signature header or the app secret is missing"""
    pass


def compute_signature(payload: Union[str, bytes], secret: str) -> str:
    """
    Compute the X-Hub-Signature-256 header value for a payload

    Args:
        payload: Raw request body
        secret: Meta app secret

    Returns:
        Header value in the form "sha256=<hex>"
    """
    if isinstance(payload, str):
        payload = payload.encode('utf-8')

    digest = hmac.new(secret.encode('utf-8'), payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


class WebhookSignatureValidator:
    """
    HMAC-SHA256 signature validation shared by the Meta and WhatsApp endpoints.

    Both providers sign the raw body with the same app secret, so the
    validator only needs the secret resolved for the current request.
    """

    def verify(self, payload: Union[str, bytes], signature: Optional[str], secret: Optional[str]) -> bool:
        """
        Verify a webhook signature

        Args:
            payload: Raw request body, exactly as received
            signature: X-Hub-Signature-256 header value
            secret: Meta app secret

        Returns:
            True if the signature matches

        Raises:
            MissingSignatureError: If the header or the secret is missing
            InvalidSignatureError: If the signature is malformed or does not match
        """
        if not secret:
            logger.warning("No Meta app secret configured, rejecting webhook")
            raise MissingSignatureError("No webhook secret configured")

        if not signature or not signature.strip():
            raise MissingSignatureError("Webhook signature is empty")

        if not signature.startswith(SIGNATURE_PREFIX):
            logger.warning(f"Invalid Meta signature format: {signature[:20]}...")
            raise InvalidSignatureError("Invalid signature format")

        expected = compute_signature(payload, secret)

        # Constant-time comparison
        if not hmac.compare_digest(expected, signature.strip()):
            logger.warning("Meta webhook signature verification failed")
            raise InvalidSignatureError("Invalid signature")

        return True

    @staticmethod
    def extract_signature_from_headers(headers: Dict[str, str]) -> Optional[str]:
        """Case-insensitive lookup of the signature header"""
        for header_name, header_value in headers.items():
            if header_name.lower() == SIGNATURE_HEADER:
                return header_value
        return None


def verify_handshake(
    mode: Optional[str],
    token: Optional[str],
    challenge: Optional[str],
    expected_token: Optional[str]
) -> Optional[str]:
    """
    Check a hub.mode=subscribe handshake

    Args:
        mode: hub.mode query value
        token: hub.verify_token query value
        challenge: hub.challenge query value
        expected_token: Configured verify token for the provider

    Returns:
        The challenge to echo back, or None when verification fails
    """
    if mode != "subscribe" or not expected_token or token is None:
        return None

    if not hmac.compare_digest(str(token), str(expected_token)):
        logger.warning("Webhook handshake verify token mismatch")
        return None

    return challenge if challenge is not None else ""


# Global webhook signature validator instance
webhook_validator = WebhookSignatureValidator()
