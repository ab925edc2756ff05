"""
Webhook handling policy shared by the Square and Toast endpoints.

- Bad or missing signature: rejected with 401
- Verified but unparsable payload: acknowledged (200), no sync
- Unknown merchant / restaurant: acknowledged (200), no sync
- Sync event for a known tenant: background sync submitted, acknowledged immediately
- Tenant lookup or submission failure: logged, acknowledged (200), no sync
"""

from typing import Any, Optional

import structlog
from pydantic import BaseModel

from possync.config import settings
from possync.exceptions import SignatureInvalidError, WebhookPayloadError
from possync.integrations.registry import IntegrationRegistry
from possync.models.database import IntegrationProvider, TriggerSource
from possync.services.stores import IntegrationStore
from possync.sync.dispatcher import SyncDispatcher

logger = structlog.get_logger()


class WebhookOutcome(BaseModel):
    status_code: int = 200
    body: dict[str, Any]


class WebhookService:
    def __init__(
        self,
        registry: IntegrationRegistry,
        integration_store: IntegrationStore,
        dispatcher: SyncDispatcher,
        signing_secrets: Optional[dict[IntegrationProvider, str]] = None,
    ):
        self.registry = registry
        self.integration_store = integration_store
        self.dispatcher = dispatcher
        if signing_secrets is None:
            signing_secrets = {
                IntegrationProvider.SQUARE: settings.square_webhook_signature_key,
                IntegrationProvider.TOAST: settings.toast_webhook_secret,
            }
        self.signing_secrets = signing_secrets

    async def handle(
        self,
        provider: IntegrationProvider,
        raw_body: bytes,
        signature: Optional[str],
        request_url: Optional[str] = None,
    ) -> WebhookOutcome:
        verifier = self.registry.get_verifier(provider)
        if verifier is None:
            raise SignatureInvalidError(f"No webhook verifier for {provider.value}", provider=provider.value)

        if not verifier.verify(
            raw_body, signature, self.signing_secrets.get(provider), request_url=request_url
        ):
            logger.warning("Invalid webhook signature", provider=provider.value)
            raise SignatureInvalidError("Invalid webhook signature", provider=provider.value)

        try:
            trigger = verifier.parse_event(raw_body)
        except WebhookPayloadError as e:
            logger.warning("Unparsable webhook payload acknowledged", provider=provider.value, error=e.message)
            return WebhookOutcome(body={"received": True, "processed": False, "reason": "invalid_payload"})

        log = logger.bind(provider=provider.value, event_type=trigger.event_type, event_id=trigger.event_id)
        if not trigger.requires_sync:
            log.info("Webhook event does not require sync")
            return WebhookOutcome(body={"received": True, "processed": False, "reason": "ignored_event"})

        if not trigger.account_id:
            log.warning("Webhook event without account id")
            return WebhookOutcome(body={"received": True, "processed": False, "reason": "unknown_account"})

        # Past the signature check every outcome is a 200 acknowledgement
        try:
            if provider == IntegrationProvider.SQUARE:
                integration = await self.integration_store.find_by_square_merchant(trigger.account_id)
            else:
                integration = await self.integration_store.find_by_toast_restaurant(trigger.account_id)

            if integration is None:
                log.warning("Webhook for unknown account", account_id=trigger.account_id)
                return WebhookOutcome(body={"received": True, "processed": False, "reason": "unknown_account"})

            self.dispatcher.submit(integration.tenant_id, TriggerSource.WEBHOOK)
        except Exception as e:
            log.error(
                "Webhook sync could not be submitted",
                account_id=trigger.account_id,
                error=str(e),
                exc_info=True,
            )
            return WebhookOutcome(body={"received": True, "processed": False, "reason": "internal_error"})

        log.info("Webhook sync submitted", tenant_id=integration.tenant_id)
        return WebhookOutcome(body={"received": True, "processed": True})
