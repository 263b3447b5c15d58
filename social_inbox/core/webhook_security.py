"""
Webhook Security and Signature Validation

Meta (Instagram, Facebook, WhatsApp) signs webhook bodies with the app secret
in X-Hub-Signature-256. Subscription handshakes echo hub.challenge when the
verify token matches.
"""
import hmac
import hashlib
import logging
from typing import Optional, Union

from social_inbox.core.config import get_settings

logger = logging.getLogger(__name__)

META_PLATFORMS = ("instagram", "facebook", "whatsapp")


class WebhookSecurityError(Exception):
    """Base class for webhook security errors"""
    pass


class InvalidSignatureError(WebhookSecurityError):
    """Raised when webhook signature is invalid"""
    pass


class MissingSignatureError(WebhookSecurityError):
    """Raised when required webhook signature is missing"""
    pass


class WebhookSignatureValidator:
    """
    Webhook signature validation for the inbound platforms

    Uses constant-time comparison. Platforms that deliver through Pub/Sub
    push (Google, YouTube) are authenticated by the push subscription and
    are not signed here.
    """

    def __init__(self, settings=None):
        self.settings = settings or get_settings()

    def requires_signature(self, platform: str) -> bool:
        return platform in META_PLATFORMS

    def verify_webhook_signature(self, platform: str, payload: Union[str, bytes], signature: Optional[str]) -> bool:
        """
        Verify webhook signature for the specified platform

        Args:
            platform: Platform identifier
            payload: Raw webhook body
            signature: X-Hub-Signature-256 header value

        Returns:
            True if the signature is valid (or the platform is unsigned)

        Raises:
            InvalidSignatureError: If signature is malformed or wrong
            MissingSignatureError: If signature or secret is missing
        """
        if not self.requires_signature(platform):
            return True

        secret = self.settings.meta_app_secret
        if not secret:
            if not self.settings.is_production:
                logger.warning(f"Allowing unsigned {platform} webhook (no META_APP_SECRET configured)")
                return True
            raise MissingSignatureError(f"No webhook secret configured for {platform}")

        if not signature or not signature.strip():
            raise MissingSignatureError("Webhook signature is empty")

        if not self._verify_meta_signature(payload, signature, secret):
            raise InvalidSignatureError(f"Signature mismatch for {platform} webhook")
        return True

    def _verify_meta_signature(self, payload: Union[str, bytes], signature: str, secret: str) -> bool:
        if isinstance(payload, str):
            payload = payload.encode('utf-8')

        # Format: "sha256=<hex>"
        if not signature.startswith("sha256="):
            logger.warning(f"Invalid Meta signature format: {signature[:20]}...")
            raise InvalidSignatureError("Invalid signature format")

        provided_signature = signature[len("sha256="):]
        expected_signature = hmac.new(secret.encode('utf-8'), payload, hashlib.sha256).hexdigest()

        is_valid = hmac.compare_digest(expected_signature, provided_signature)
        if not is_valid:
            logger.warning("Meta webhook signature verification failed")
        return is_valid

    def expected_verify_token(self, platform: str) -> Optional[str]:
        if platform in META_PLATFORMS:
            return self.settings.meta_verify_token
        if platform == "google":
            return self.settings.google_webhook_verify_token
        if platform == "youtube":
            return self.settings.youtube_webhook_verify_token
        return None

    def verify_subscription(self, platform: str, mode: Optional[str], token: Optional[str],
                            challenge: Optional[str]) -> Optional[str]:
        """
        Handle a hub.mode=subscribe handshake

        Returns:
            The challenge to echo back, or None when verification fails
        """
        expected = self.expected_verify_token(platform)
        if mode != "subscribe" or not expected or not token:
            return None
        if not hmac.compare_digest(expected, token):
            logger.warning(f"Webhook verify token mismatch for {platform}")
            return None
        return challenge


_validator: Optional[WebhookSignatureValidator] = None


def get_webhook_validator() -> WebhookSignatureValidator:
    global _validator
    if _validator is None:
        _validator = WebhookSignatureValidator()
    return _validator
