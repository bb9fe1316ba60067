"""
Unit tests for webhook signature validation and the subscription handshake
"""
import pytest

from socialhub.core.webhook_security import (
    InvalidSignatureError,
    MissingSignatureError,
    WebhookSignatureValidator,
    compute_signature,
    verify_handshake,
)

SECRET = "app-secret"
BODY = b'{"object":"page","entry":[]}'


class TestSignatureVerification:
    """X-Hub-Signature-256 checks"""

    def setup_method(self):
        self.validator = WebhookSignatureValidator()

    def test_compute_signature_format(self):
        signature = compute_signature(BODY, SECRET)
        assert signature.startswith("sha256=")
        assert len(signature) == len("sha256=") + 64

    def test_str_and_bytes_payloads_sign_identically(self):
        assert compute_signature(BODY.decode(), SECRET) == compute_signature(BODY, SECRET)

    def test_valid_signature_accepted(self):
        assert self.validator.verify(BODY, compute_signature(BODY, SECRET), SECRET) is True

    def test_tampered_body_rejected(self):
        signature = compute_signature(BODY, SECRET)
        with pytest.raises(InvalidSignatureError):
            self.validator.verify(BODY + b" ", signature, SECRET)

    def test_wrong_secret_rejected(self):
        with pytest.raises(InvalidSignatureError):
            self.validator.verify(BODY, compute_signature(BODY, "other-secret"), SECRET)

    def test_bad_prefix_rejected(self):
        digest = compute_signature(BODY, SECRET).split("=", 1)[1]
        with pytest.raises(InvalidSignatureError, match="format"):
            self.validator.verify(BODY, f"sha1={digest}", SECRET)

    @pytest.mark.parametrize("signature", [None, "", "   "])
    def test_missing_signature_rejected(self, signature):
        with pytest.raises(MissingSignatureError):
            self.validator.verify(BODY, signature, SECRET)

    def test_missing_secret_rejected(self):
        with pytest.raises(MissingSignatureError):
            self.validator.verify(BODY, compute_signature(BODY, SECRET), None)

    def test_extract_signature_is_case_insensitive(self):
        headers = {"X-Hub-Signature-256": "sha256=abc", "Content-Type": "application/json"}
        assert WebhookSignatureValidator.extract_signature_from_headers(headers) == "sha256=abc"
        assert WebhookSignatureValidator.extract_signature_from_headers({}) is None


class TestHandshake:
    """hub.mode=subscribe verification"""

    def test_matching_token_echoes_challenge(self):
        assert verify_handshake("subscribe", "verify-me", "XYZ123", "verify-me") == "XYZ123"

    def test_wrong_token_rejected(self):
        assert verify_handshake("subscribe", "nope", "XYZ123", "verify-me") is None

    def test_wrong_mode_rejected(self):
        assert verify_handshake("unsubscribe", "verify-me", "XYZ123", "verify-me") is None

    def test_unconfigured_token_rejects_everything(self):
        assert verify_handshake("subscribe", "", "XYZ123", None) is None
        assert verify_handshake("subscribe", None, "XYZ123", "") is None
