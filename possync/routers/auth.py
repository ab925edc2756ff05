"""
Tenant authentication.
Verifies the Supabase access token from the Authorization header and resolves the tenant
from the user's app_metadata.tenant_id.
"""

import httpx
import structlog
from fastapi import Depends, Header, HTTPException, status

from possync.config import settings

logger = structlog.get_logger()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def verify_token(authorization: str | None = Header(None)) -> dict:
    """
    Resolve the caller from a Supabase access token.

    Returns:
        {"user_id", "email", "tenant_id"}; tenant_id is None for users not yet
        attached to a tenant
    """
    if not authorization:
        raise _unauthorized("Authorization header is required")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _unauthorized("Invalid authorization header format")
    token = parts[1]

    # Supabase's user endpoint verifies the JWT for us
    auth_url = f"{settings.supabase_url}/auth/v1/user"
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": settings.supabase_service_key,
    }
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(auth_url, headers=headers, timeout=10.0)
    except httpx.HTTPError as http_error:
        logger.error("HTTP error during token verification", error=str(http_error))
        raise _unauthorized("Token verification failed") from http_error

    if response.status_code != 200:
        raise _unauthorized("Invalid or expired token")

    user_data = response.json()
    if not user_data or not user_data.get("id"):
        raise _unauthorized("Invalid token payload")

    return {
        "user_id": user_data["id"],
        "email": user_data.get("email"),
        "tenant_id": (user_data.get("app_metadata") or {}).get("tenant_id"),
    }


async def get_current_tenant_id(user: dict = Depends(verify_token)) -> str:
    """Tenant the authenticated user belongs to."""
    tenant_id = user.get("tenant_id")
    if not tenant_id:
        logger.warning("Authenticated user has no tenant", user_id=user.get("user_id"))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is not associated with a tenant",
        )
    return str(tenant_id)
