"""
Error taxonomy for the POS catalog sync engine.
Every error carries a stable code and the HTTP status used by the API layer.
"""


class IntegrationError(Exception):
    """Base class for all integration errors surfaced to callers."""

    code = "integration_error"
    status_code = 500

    def __init__(self, message: str, provider: str | None = None):
        self.message = message
        self.provider = provider
        super().__init__(message)

    def to_dict(self) -> dict:
        """Structured error body returned by the API."""
        body = {"error": self.code, "detail": self.message}
        if self.provider:
            body["provider"] = self.provider
        return body


class InvalidCredentialsError(IntegrationError):
    """Connect-time credentials were rejected by the provider (user-correctable)."""

    code = "invalid_credentials"
    status_code = 400


class AuthExpiredError(IntegrationError):
    """Stored credentials could not be refreshed; the tenant must reconnect."""

    code = "auth_expired"
    status_code = 401


class CatalogFetchError(IntegrationError):
    """The provider catalog could not be fetched at all."""

    code = "catalog_fetch_failed"
    status_code = 502


class ConflictingIntegrationError(IntegrationError):
    """Another POS provider is already active for the tenant."""

    code = "conflicting_integration"
    status_code = 409


class AlreadyConnectedError(IntegrationError):
    """The requested provider is already connected for the tenant."""

    code = "already_connected"
    status_code = 409


class NotConnectedError(IntegrationError):
    """No POS provider (or not the requested one) is connected for the tenant."""

    code = "not_connected"
    status_code = 404


class SignatureInvalidError(IntegrationError):
    """Webhook signature verification failed."""

    code = "signature_invalid"
    status_code = 401


class WebhookPayloadError(IntegrationError):
    """A verified webhook payload could not be parsed."""

    code = "webhook_payload_invalid"
    status_code = 200


class TransactionApplyError(IntegrationError):
    """The storage layer failed while applying a merge plan; nothing was committed."""

    code = "transaction_apply_failed"
    status_code = 500


class SyncLockLostError(IntegrationError):
    """The tenant lock expired or was taken over before the merge plan was applied."""

    code = "sync_lock_lost"
    status_code = 409


class CredentialEncryptionError(IntegrationError):
    """Credential encryption is not configured or a stored value cannot be decrypted."""

    code = "credential_encryption_error"
    status_code = 500


class ProviderAPIError(Exception):
    """
    Raw failure of a provider API call, raised by the API clients.
    status_code is 0 when the request never got a response.
    Adapters translate it into one of the IntegrationError types above.
    """

    def __init__(self, status_code: int, message: str, body: str | None = None):
        self.status_code = status_code
        self.message = message
        self.body = body
        super().__init__(f"Provider API error {status_code}: {message}")
