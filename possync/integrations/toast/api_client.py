"""
Toast REST API client.
Machine-client login, restaurant lookup and menus (v2).
Base URL from toast_environment (sandbox vs production).
"""

from typing import Any, Dict, Optional

import httpx
import structlog

from possync.config import settings
from possync.exceptions import ProviderAPIError
from possync.integrations.toast.models import (
    ToastLoginResponse,
    ToastMenusResponse,
    ToastRestaurant,
)

logger = structlog.get_logger()


def toast_base_url(environment: Optional[str] = None) -> str:
    if (environment or settings.toast_environment) == "production":
        return "https://ws-api.toasttab.com"
    return "https://ws-sandbox-api.toasttab.com"


class ToastAPIClient:
    """Async client for the Toast API. Use as an async context manager."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or toast_base_url()).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.http_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "ToastAPIClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        access_token: Optional[str] = None,
        restaurant_guid: Optional[str] = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        if restaurant_guid:
            headers["Toast-Restaurant-External-ID"] = restaurant_guid

        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.RequestError as e:
            logger.error("Toast API request failed", method=method, path=path, error=str(e))
            raise ProviderAPIError(0, str(e)) from e

        if response.status_code != 200:
            logger.error(
                "Toast API error",
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

    async def login(self, client_id: str, client_secret: str) -> ToastLoginResponse:
        """POST /authentication/v1/authentication/login with TOAST_MACHINE_CLIENT access."""
        data = await self._request(
            "POST",
            "/authentication/v1/authentication/login",
            json={
                "clientId": client_id,
                "clientSecret": client_secret,
                "userAccessType": "TOAST_MACHINE_CLIENT",
            },
        )
        login = ToastLoginResponse(**data)
        if not login.bearer:
            raise ProviderAPIError(401, "Toast login response has no access token")
        return login

    async def get_restaurant(self, access_token: str, restaurant_guid: str) -> ToastRestaurant:
        """GET /restaurants/v1/restaurants/{guid}"""
        data = await self._request(
            "GET",
            f"/restaurants/v1/restaurants/{restaurant_guid}",
            access_token,
            restaurant_guid,
        )
        return ToastRestaurant(**data)

    async def get_menus(self, access_token: str, restaurant_guid: str) -> ToastMenusResponse:
        """GET /menus/v2/menus"""
        data = await self._request("GET", "/menus/v2/menus", access_token, restaurant_guid)
        return ToastMenusResponse(**data)
