"""
Toast integration adapter.
Implements CatalogProvider for Toast: client-credentials login with a cached machine token
and menu pulls.
"""

from datetime import UTC, datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import SecretStr

from possync.config import settings
from possync.exceptions import (
    AuthExpiredError,
    CatalogFetchError,
    InvalidCredentialsError,
    ProviderAPIError,
)
from possync.integrations.base import (
    AccessToken,
    CatalogProvider,
    Credentials,
    FetchResult,
    PartialFetchFailure,
    ValidatedConnection,
)
from possync.integrations.toast.api_client import ToastAPIClient
from possync.integrations.toast.transformer import ToastTransformer, ToastTransformError
from possync.models.catalog import CanonicalCatalog, CanonicalCategory
from possync.models.database import IntegrationProvider
from possync.services.credential_store import CredentialStore
from possync.utils.retry import PermanentError, TransientError, retry_with_backoff

logger = structlog.get_logger()

REQUIRED_FIELDS = ("client_id", "client_secret", "restaurant_guid")


class ToastIntegrationAdapter(CatalogProvider):
    """Toast integration adapter implementing CatalogProvider."""

    def __init__(
        self,
        credential_store: CredentialStore,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credential_store = credential_store
        self.transport = transport

    def _client(self) -> ToastAPIClient:
        return ToastAPIClient(transport=self.transport)

    def get_name(self) -> IntegrationProvider:
        """Return integration name."""
        return IntegrationProvider.TOAST

    async def validate_credentials(self, raw_credentials: Dict[str, Any]) -> ValidatedConnection:
        """
        Log in with the machine client and read the restaurant to validate the guid.

        Args:
            raw_credentials: {"client_id", "client_secret", "restaurant_guid"}
        """
        values = {field: str(raw_credentials.get(field) or "").strip() for field in REQUIRED_FIELDS}
        missing = [field for field, value in values.items() if not value]
        if missing:
            raise InvalidCredentialsError(
                f"Missing Toast credentials: {', '.join(missing)}", provider="toast"
            )

        async with self._client() as client:
            try:
                login = await client.login(values["client_id"], values["client_secret"])
                restaurant = await client.get_restaurant(login.bearer, values["restaurant_guid"])
            except ProviderAPIError as e:
                if e.status_code == 0 or e.status_code >= 500:
                    raise CatalogFetchError(f"Toast API unavailable: {e.message}", provider="toast") from e
                raise InvalidCredentialsError(
                    f"Toast rejected the credentials: {e.message}", provider="toast"
                ) from e

        logger.info(
            "Toast credentials validated",
            restaurant_guid=values["restaurant_guid"],
            restaurant_name=restaurant.display_name,
        )
        return ValidatedConnection(
            credentials=Credentials(
                provider=IntegrationProvider.TOAST,
                access_token=SecretStr(login.bearer),
                token_expires_at=datetime.now(UTC) + timedelta(seconds=login.expires_in),
                restaurant_guid=values["restaurant_guid"],
                restaurant_name=restaurant.display_name,
                client_id=values["client_id"],
                client_secret=SecretStr(values["client_secret"]),
            ),
            provider_account_name=restaurant.display_name,
        )

    @staticmethod
    def _token_is_live(expires_at: Optional[datetime]) -> bool:
        if expires_at is None:
            return False
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        skew = timedelta(seconds=settings.toast_token_skew_seconds)
        return datetime.now(UTC) + skew < expires_at

    async def authenticate(self, tenant_id: str) -> AccessToken:
        """Return the cached machine token, logging in again when it has expired."""
        credentials = await self.credential_store.get(tenant_id, IntegrationProvider.TOAST)
        if self._token_is_live(credentials.token_expires_at):
            return AccessToken(token=credentials.access_token, expires_at=credentials.token_expires_at)

        if not credentials.client_id or credentials.client_secret is None:
            raise AuthExpiredError("Toast client credentials missing, reconnect Toast", provider="toast")

        logger.info("Toast token expired, logging in again", tenant_id=tenant_id)
        try:
            async with self._client() as client:
                login = await client.login(
                    credentials.client_id, credentials.client_secret.get_secret_value()
                )
        except ProviderAPIError as e:
            logger.error("Toast re-login failed", tenant_id=tenant_id, status_code=e.status_code)
            raise AuthExpiredError("Toast login failed, reconnect Toast", provider="toast") from e

        expires_at = datetime.now(UTC) + timedelta(seconds=login.expires_in)
        await self.credential_store.update_tokens(tenant_id, access_token=login.bearer, expires_at=expires_at)
        return AccessToken(token=SecretStr(login.bearer), expires_at=expires_at, refreshed=True)

    async def fetch_catalog(self, tenant_id: str, access_token: AccessToken) -> FetchResult:
        """
        Fetch menus and normalize each one independently.
        A menu that fails to normalize is a page error; a failed request is a total failure.
        """
        credentials = await self.credential_store.get(tenant_id, IntegrationProvider.TOAST)

        async with self._client() as client:
            get_menus = retry_with_backoff(
                max_attempts=settings.max_retry_attempts,
                initial_delay=settings.retry_initial_delay_seconds,
                multiplier=settings.retry_backoff_multiplier,
            )(client.get_menus)
            try:
                response = await get_menus(access_token.token.get_secret_value(), credentials.restaurant_guid)
            except (TransientError, PermanentError) as e:
                cause = e.__cause__ or e
                logger.error(
                    "Error fetching Toast menus",
                    tenant_id=tenant_id,
                    error=str(cause),
                    error_type=type(cause).__name__,
                )
                if isinstance(cause, ProviderAPIError) and cause.status_code == 401:
                    raise AuthExpiredError("Toast rejected the access token", provider="toast") from e
                raise CatalogFetchError(f"Failed to fetch Toast menus: {cause}", provider="toast") from e

        transformer = ToastTransformer(
            response.modifier_group_references, response.modifier_option_references
        )
        categories: List[CanonicalCategory] = []
        page_errors: List[PartialFetchFailure] = []
        for index, raw_menu in enumerate(response.menus, start=1):
            try:
                categories.extend(transformer.transform_menu(raw_menu))
            except (ToastTransformError, ValueError, TypeError) as e:
                logger.warning(
                    "Skipping Toast menu that failed to normalize",
                    tenant_id=tenant_id,
                    menu=index,
                    error=str(e),
                )
                page_errors.append(PartialFetchFailure(page=index, message=str(e)))

        catalog = CanonicalCatalog(categories=categories)
        logger.info(
            "Finished fetching Toast menus",
            tenant_id=tenant_id,
            menus=len(response.menus),
            categories=len(catalog.categories),
            items=catalog.item_count,
            menu_errors=len(page_errors),
        )
        # A skipped menu would look like deleted records
        return FetchResult(catalog=catalog, page_errors=page_errors, complete=not page_errors)
