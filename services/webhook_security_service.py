"""
Webhook Security Service - shared-secret validation for on-chain event webhooks
"""

import hmac
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class WebhookSecurityService:
    """Centralized webhook security validation service"""

    MAX_PAYLOAD_BYTES = 1024 * 1024  # 1MB

    @classmethod
    def validate_shared_secret(
        cls, provided_secret: Optional[str], expected_secret: Optional[str]
    ) -> Dict[str, Any]:
        """
        Validate the X-Webhook-Secret header in constant time.

        Returns: {'valid': bool, 'status_code': int, 'error': str}
            503 when no secret is configured, 401 when missing or wrong.
        """
        if not expected_secret:
            logger.error("❌ WEBHOOK_NOT_CONFIGURED: WEBHOOK_SECRET is not set, rejecting call")
            return {"valid": False, "status_code": 503, "error": "webhook not configured"}

        if not provided_secret:
            logger.warning("🚫 WEBHOOK_AUTH: missing X-Webhook-Secret header")
            return {"valid": False, "status_code": 401, "error": "unauthorized"}

        if not hmac.compare_digest(provided_secret.encode("utf-8"), expected_secret.encode("utf-8")):
            logger.warning("🚫 WEBHOOK_AUTH: invalid X-Webhook-Secret header")
            return {"valid": False, "status_code": 401, "error": "unauthorized"}

        return {"valid": True, "status_code": 200, "error": None}

    @classmethod
    def validate_payload_size(cls, body: bytes) -> bool:
        if len(body) > cls.MAX_PAYLOAD_BYTES:
            logger.error(f"❌ WEBHOOK_PAYLOAD_TOO_LARGE: {len(body)} bytes")
            return False
        return True
