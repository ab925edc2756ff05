"""
Square REST API client.
OAuth token endpoints, locations and cursor-paginated catalog listing.
Base URL from square_environment (sandbox vs production).
"""

from typing import Any, Dict, List, Optional

import httpx
import structlog

from possync.config import settings
from possync.exceptions import ProviderAPIError
from possync.integrations.square.models import (
    SquareCatalogPage,
    SquareLocation,
    SquareTokenResponse,
)

logger = structlog.get_logger()

CATALOG_TYPES = "CATEGORY,ITEM,MODIFIER_LIST,IMAGE"


def square_base_url(environment: Optional[str] = None) -> str:
    if (environment or settings.square_environment) == "production":
        return "https://connect.squareup.com"
    return "https://connect.squareupsandbox.com"


class SquareAPIClient:
    """Async client for the Square API. Use as an async context manager."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Override base URL. If None, uses settings.square_environment.
            api_version: Square-Version header value
            timeout: Request timeout in seconds
            transport: httpx transport override (tests use httpx.MockTransport)
        """
        self.base_url = (base_url or square_base_url()).rstrip("/")
        self.api_version = api_version or settings.square_api_version
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.http_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "SquareAPIClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Square-Version": self.api_version,
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        access_token: Optional[str] = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, headers=self._headers(access_token), **kwargs)
        except httpx.RequestError as e:
            logger.error("Square API request failed", method=method, path=path, error=str(e))
            raise ProviderAPIError(0, str(e)) from e

        if response.status_code != 200:
            logger.error(
                "Square API error",
                method=method,
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise ProviderAPIError(
                response.status_code,
                f"{method} {path} failed: {response.status_code}",
                body=response.text,
            )
        return response.json()

    async def obtain_token(self, code: str, redirect_uri: Optional[str] = None) -> SquareTokenResponse:
        """Exchange an OAuth authorization code. POST /oauth2/token"""
        payload = {
            "client_id": settings.square_application_id,
            "client_secret": settings.square_application_secret,
            "code": code,
            "grant_type": "authorization_code",
        }
        if redirect_uri:
            payload["redirect_uri"] = redirect_uri
        data = await self._request("POST", "/oauth2/token", json=payload)
        return SquareTokenResponse(**data)

    async def refresh_token(self, refresh_token: str) -> SquareTokenResponse:
        """Refresh-token grant. POST /oauth2/token"""
        data = await self._request(
            "POST",
            "/oauth2/token",
            json={
                "client_id": settings.square_application_id,
                "client_secret": settings.square_application_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
        )
        return SquareTokenResponse(**data)

    async def list_locations(self, access_token: str) -> List[SquareLocation]:
        """GET /v2/locations"""
        data = await self._request("GET", "/v2/locations", access_token)
        return [SquareLocation(**location) for location in data.get("locations") or []]

    async def list_catalog_page(self, access_token: str, cursor: Optional[str] = None) -> SquareCatalogPage:
        """GET /v2/catalog/list for one page of catalog objects."""
        params = {"types": CATALOG_TYPES}
        if cursor:
            params["cursor"] = cursor
        data = await self._request("GET", "/v2/catalog/list", access_token, params=params)
        return SquareCatalogPage(**data)
