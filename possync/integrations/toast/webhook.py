"""
Toast webhook signature verification and event parsing.
"""

import hashlib
import hmac
import json
from typing import Optional

import structlog
from pydantic import ValidationError

from possync.exceptions import WebhookPayloadError
from possync.integrations.base import SyncTrigger, WebhookVerifier
from possync.integrations.toast.models import ToastWebhookEvent
from possync.models.database import IntegrationProvider

logger = structlog.get_logger()

SYNC_EVENTS = frozenset(
    {
        "MENU_PUBLISHED",
        "MENU_UPDATED",
        "MENU_ITEM_CREATED",
        "MENU_ITEM_UPDATED",
        "MENU_ITEM_DELETED",
        "MENU_GROUP_CREATED",
        "MENU_GROUP_UPDATED",
        "MENU_GROUP_DELETED",
        "ITEM_AVAILABILITY_CHANGED",
    }
)


class ToastWebhookVerifier(WebhookVerifier):
    """Verifies x-toast-signature: hex HMAC-SHA256 of the raw body."""

    signature_header = "x-toast-signature"

    def verify(
        self,
        raw_body: bytes,
        header_signature: Optional[str],
        signing_secret: Optional[str],
        **kwargs,
    ) -> bool:
        if not header_signature:
            logger.warning("No signature provided for Toast webhook")
            return False
        if not signing_secret:
            logger.warning("Toast webhook secret not configured, rejecting webhook")
            return False

        try:
            calculated = hmac.new(signing_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
            return hmac.compare_digest(
                calculated.encode("utf-8"), header_signature.strip().lower().encode("utf-8")
            )
        except (TypeError, ValueError, UnicodeError) as e:
            logger.error("Error verifying Toast signature", error=str(e))
            return False

    def parse_event(self, raw_body: bytes) -> SyncTrigger:
        try:
            payload = json.loads(raw_body)
            event = ToastWebhookEvent(**payload)
        except (ValueError, TypeError, ValidationError) as e:
            raise WebhookPayloadError(f"Invalid Toast webhook payload: {e}", provider="toast") from e

        if not event.kind:
            raise WebhookPayloadError("Toast webhook payload has no event type", provider="toast")

        return SyncTrigger(
            provider=IntegrationProvider.TOAST,
            account_id=event.account_id,
            event_type=event.kind,
            event_id=event.event_guid or event.guid,
            requires_sync=event.kind in SYNC_EVENTS,
        )
