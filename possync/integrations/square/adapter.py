"""
Square integration adapter.
Implements CatalogProvider for Square: OAuth code exchange, token refresh and catalog pulls.
"""

import asyncio
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
from possync.integrations.square.api_client import SquareAPIClient
from possync.integrations.square.models import SquareCatalogObject, SquareLocation
from possync.integrations.square.oauth import oauth_redirect_uri
from possync.integrations.square.token_refresh import (
    SquareTokenRefreshService,
    is_token_expiring_soon,
    parse_expires_at,
)
from possync.integrations.square.transformer import SquareTransformer
from possync.models.database import IntegrationProvider
from possync.services.credential_store import CredentialStore
from possync.utils.retry import PermanentError, TransientError, retry_with_backoff

logger = structlog.get_logger()


def _root_cause(error: Exception) -> Exception:
    return error.__cause__ if isinstance(error.__cause__, Exception) else error


class SquareIntegrationAdapter(CatalogProvider):
    """Square integration adapter implementing CatalogProvider."""

    def __init__(
        self,
        credential_store: CredentialStore,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            credential_store: Encrypted credential persistence
            transport: httpx transport override for the Square API client
        """
        self.credential_store = credential_store
        self.transport = transport
        self.transformer = SquareTransformer()
        self.token_refresh_service = SquareTokenRefreshService(credential_store, self._client)

    def _client(self) -> SquareAPIClient:
        return SquareAPIClient(transport=self.transport)

    def get_name(self) -> IntegrationProvider:
        """Return integration name."""
        return IntegrationProvider.SQUARE

    async def validate_credentials(self, raw_credentials: Dict[str, Any]) -> ValidatedConnection:
        """
        Exchange the OAuth authorization code and resolve the primary location.

        Args:
            raw_credentials: {"code": ..., "redirect_uri": optional}
        """
        code = (raw_credentials.get("code") or "").strip()
        if not code:
            raise InvalidCredentialsError("Missing Square authorization code", provider="square")
        redirect_uri = raw_credentials.get("redirect_uri") or oauth_redirect_uri()

        async with self._client() as client:
            try:
                token = await client.obtain_token(code, redirect_uri)
                locations = await client.list_locations(token.access_token)
            except ProviderAPIError as e:
                if e.status_code == 0 or e.status_code >= 500:
                    raise CatalogFetchError(f"Square API unavailable: {e.message}", provider="square") from e
                raise InvalidCredentialsError(
                    f"Square rejected the authorization: {e.message}", provider="square"
                ) from e

        location = self._primary_location(locations)
        if location is None:
            raise InvalidCredentialsError("Square account has no locations", provider="square")

        location_name = location.name or location.business_name or location.id
        logger.info(
            "Square authorization validated",
            merchant_id=token.merchant_id,
            location_id=location.id,
            location_count=len(locations),
        )
        return ValidatedConnection(
            credentials=Credentials(
                provider=IntegrationProvider.SQUARE,
                access_token=SecretStr(token.access_token),
                refresh_token=SecretStr(token.refresh_token) if token.refresh_token else None,
                token_expires_at=parse_expires_at(token.expires_at),
                merchant_id=token.merchant_id,
                location_id=location.id,
                location_name=location_name,
            ),
            provider_account_name=location_name,
        )

    @staticmethod
    def _primary_location(locations: List[SquareLocation]) -> Optional[SquareLocation]:
        """First active location, else the first one listed."""
        for location in locations:
            if location.status == "ACTIVE":
                return location
        return locations[0] if locations else None

    async def authenticate(self, tenant_id: str) -> AccessToken:
        """
        Return a valid, non-expiring access token.
        Refreshes the token if it expires within the refresh threshold.
        """
        credentials = await self.credential_store.get(tenant_id, IntegrationProvider.SQUARE)
        if not is_token_expiring_soon(credentials.token_expires_at):
            return AccessToken(token=credentials.access_token, expires_at=credentials.token_expires_at)

        logger.info(
            "Token expiring soon, refreshing before API call",
            tenant_id=tenant_id,
            merchant_id=credentials.merchant_id,
        )
        success, access_token = await self.token_refresh_service.refresh_token_and_update(
            tenant_id, credentials
        )
        if not success or access_token is None:
            raise AuthExpiredError(
                "Square token refresh failed, reconnect Square", provider="square"
            )
        return access_token

    async def fetch_catalog(self, tenant_id: str, access_token: AccessToken) -> FetchResult:
        """
        Fetch all catalog objects with cursor pagination and normalize them.
        A page that still fails after retries stops pagination; the result is then incomplete.
        """
        credentials = await self.credential_store.get(tenant_id, IntegrationProvider.SQUARE)
        token = access_token.token.get_secret_value()

        objects: List[SquareCatalogObject] = []
        page_errors: List[PartialFetchFailure] = []
        complete = True
        cursor = None
        page_number = 0

        async with self._client() as client:
            fetch_page = retry_with_backoff(
                max_attempts=settings.max_retry_attempts,
                initial_delay=settings.retry_initial_delay_seconds,
                multiplier=settings.retry_backoff_multiplier,
            )(client.list_catalog_page)

            while True:
                page_number += 1
                try:
                    page = await fetch_page(token, cursor)
                except (TransientError, PermanentError) as e:
                    cause = _root_cause(e)
                    logger.error(
                        "Error fetching Square catalog page",
                        tenant_id=tenant_id,
                        page=page_number,
                        error=str(cause),
                        error_type=type(cause).__name__,
                    )
                    if page_number == 1:
                        if isinstance(cause, ProviderAPIError) and cause.status_code == 401:
                            raise AuthExpiredError("Square rejected the access token", provider="square") from e
                        raise CatalogFetchError(
                            f"Failed to fetch Square catalog: {cause}", provider="square"
                        ) from e
                    # Next cursor is unknown, so nothing after this page can be fetched
                    page_errors.append(PartialFetchFailure(page=page_number, message=str(cause)))
                    complete = False
                    break

                objects.extend(self.transformer.parse_objects(page.objects))
                logger.debug(
                    "Fetched page of catalog objects",
                    page=page_number,
                    objects_in_page=len(page.objects),
                    total_objects_so_far=len(objects),
                )

                cursor = page.cursor
                if not cursor:
                    break  # No more pages
                await asyncio.sleep(settings.pagination_delay_seconds)

        catalog = self.transformer.build_catalog(objects, credentials.location_id)
        logger.info(
            "Finished fetching Square catalog",
            tenant_id=tenant_id,
            total_pages=page_number,
            categories=len(catalog.categories),
            items=catalog.item_count,
            complete=complete,
        )
        return FetchResult(catalog=catalog, page_errors=page_errors, complete=complete)
