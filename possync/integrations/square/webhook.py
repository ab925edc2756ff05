"""
Square webhook signature verification and event parsing.
"""

import base64
import hashlib
import hmac
import json
from typing import Optional

import structlog
from pydantic import ValidationError

from possync.config import settings
from possync.exceptions import WebhookPayloadError
from possync.integrations.base import SyncTrigger, WebhookVerifier
from possync.integrations.square.models import SquareWebhookEvent
from possync.models.database import IntegrationProvider

logger = structlog.get_logger()

SYNC_EVENTS = frozenset({"catalog.version.updated"})


class SquareWebhookVerifier(WebhookVerifier):
    """Verifies x-square-hmacsha256-signature over notification URL + body."""

    signature_header = "x-square-hmacsha256-signature"

    def verify(
        self,
        raw_body: bytes,
        header_signature: Optional[str],
        signing_secret: Optional[str],
        request_url: Optional[str] = None,
        **kwargs,
    ) -> bool:
        """
        Verify Square webhook signature using HMAC SHA256.

        Args:
            raw_body: Raw request body bytes
            header_signature: x-square-hmacsha256-signature header value
            signing_secret: Webhook signature key of the subscription
            request_url: Full request URL; falls back to the configured notification URL

        Returns:
            True if signature is valid, False otherwise
        """
        if not header_signature:
            logger.warning("No signature provided for Square webhook")
            return False
        if not signing_secret:
            logger.warning("Square webhook signature key not configured, rejecting webhook")
            return False

        notification_url = request_url or settings.square_webhook_notification_url
        if not notification_url:
            logger.warning("No notification URL available for Square signature check")
            return False

        # Square signs the https URL; proxies that terminate TLS hand us http
        if notification_url.startswith("http://"):
            notification_url = notification_url.replace("http://", "https://", 1)

        try:
            full_payload = notification_url.encode("utf-8") + raw_body
            calculated = base64.b64encode(
                hmac.new(signing_secret.encode("utf-8"), full_payload, hashlib.sha256).digest()
            ).decode("utf-8")
            return hmac.compare_digest(calculated.encode("utf-8"), header_signature.strip().encode("utf-8"))
        except (TypeError, ValueError, UnicodeError) as e:
            logger.error("Error verifying Square signature", error=str(e))
            return False

    def parse_event(self, raw_body: bytes) -> SyncTrigger:
        try:
            payload = json.loads(raw_body)
            event = SquareWebhookEvent(**payload)
        except (ValueError, TypeError, ValidationError) as e:
            raise WebhookPayloadError(f"Invalid Square webhook payload: {e}", provider="square") from e

        if not event.type:
            raise WebhookPayloadError("Square webhook payload has no event type", provider="square")

        return SyncTrigger(
            provider=IntegrationProvider.SQUARE,
            account_id=event.merchant_id,
            event_type=event.type,
            event_id=event.event_id,
            requires_sync=event.type in SYNC_EVENTS,
        )
