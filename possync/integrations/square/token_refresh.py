"""
Square OAuth token refresh service.
Handles refresh of expiring access tokens through the refresh-token grant.
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import SecretStr

from possync.config import settings
from possync.exceptions import ProviderAPIError
from possync.integrations.base import AccessToken, Credentials
from possync.integrations.square.api_client import SquareAPIClient
from possync.services.credential_store import CredentialStore

logger = structlog.get_logger()


def parse_expires_at(expires_at: str | None) -> datetime | None:
    """Parse Square's ISO 8601 expires_at ("2024-01-15T12:00:00Z") into an aware datetime."""
    if not expires_at:
        return None
    expires_str = expires_at.strip()
    if expires_str.upper().endswith("Z"):
        expires_str = expires_str[:-1] + "+00:00"
    try:
        expires_dt = datetime.fromisoformat(expires_str)
    except ValueError:
        logger.warning("Unparseable Square token expiry", expires_at=expires_at)
        return None
    if expires_dt.tzinfo is None:
        return expires_dt.replace(tzinfo=UTC)
    return expires_dt.astimezone(UTC)


def is_token_expiring_soon(
    expires_at: datetime | str | None, threshold_days: int | None = None
) -> bool:
    """
    Check if token is expiring within the threshold period.

    Args:
        expires_at: Token expiry (datetime or ISO timestamp string)
        threshold_days: Days before expiration to trigger refresh (default from settings)

    Returns:
        True if token expires within threshold or the expiry is unknown
    """
    if isinstance(expires_at, str):
        expires_at = parse_expires_at(expires_at)
    if expires_at is None:
        # If no expiration date, assume expired (should refresh)
        logger.warning("No expiration date found for token, assuming expired")
        return True
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=UTC)

    threshold = threshold_days if threshold_days is not None else settings.token_refresh_threshold_days
    # total_seconds() keeps fractional days
    days_until_expiry = (expires_at - datetime.now(UTC)).total_seconds() / 86400.0
    is_expiring = days_until_expiry < threshold

    logger.debug(
        "Token expiration check",
        days_until_expiry=round(days_until_expiry, 2),
        threshold_days=threshold,
        is_expiring=is_expiring,
    )
    return is_expiring


class SquareTokenRefreshService:
    """Service for refreshing Square OAuth tokens."""

    def __init__(
        self,
        credential_store: CredentialStore,
        client_factory: Callable[[], SquareAPIClient] = SquareAPIClient,
    ):
        self.credential_store = credential_store
        self.client_factory = client_factory

    async def refresh_token(self, credentials: Credentials) -> tuple[bool, dict[str, Any] | None]:
        """
        Refresh the Square OAuth token.

        Returns:
            Tuple of (success, new_token_data)
            new_token_data contains: access_token, refresh_token, expires_at
        """
        if credentials.refresh_token is None:
            logger.error("No refresh token stored", merchant_id=credentials.merchant_id)
            return False, None

        if not settings.square_application_id or not settings.square_application_secret:
            logger.error("Square application credentials not configured")
            return False, None

        refresh_token = credentials.refresh_token.get_secret_value()
        try:
            async with self.client_factory() as client:
                token = await client.refresh_token(refresh_token)
        except ProviderAPIError as e:
            logger.error(
                "Square token refresh failed",
                status_code=e.status_code,
                merchant_id=credentials.merchant_id,
            )
            return False, None

        new_token_data = {
            "access_token": token.access_token,
            "refresh_token": token.refresh_token or refresh_token,  # Use new if provided, else keep old
            "expires_at": parse_expires_at(token.expires_at),
        }
        logger.info(
            "Square token refreshed successfully",
            merchant_id=credentials.merchant_id,
            expires_at=token.expires_at,
        )
        return True, new_token_data

    async def refresh_token_and_update(
        self, tenant_id: str, credentials: Credentials
    ) -> tuple[bool, AccessToken | None]:
        """Refresh the token and persist it through the credential store."""
        success, new_token_data = await self.refresh_token(credentials)
        if not success or not new_token_data:
            return False, None

        await self.credential_store.update_tokens(
            tenant_id,
            access_token=new_token_data["access_token"],
            refresh_token=new_token_data["refresh_token"],
            expires_at=new_token_data["expires_at"],
        )
        return True, AccessToken(
            token=SecretStr(new_token_data["access_token"]),
            expires_at=new_token_data["expires_at"],
            refreshed=True,
        )
