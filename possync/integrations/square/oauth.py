"""
Square OAuth helpers.
Builds the authorize URL and encodes/decodes the state parameter that carries the tenant
through the OAuth redirect.
"""

import base64
import hashlib
import hmac
import json
import secrets
import time
from typing import Optional
from urllib.parse import urlencode

import structlog
from pydantic import BaseModel

from possync.config import settings
from possync.exceptions import InvalidCredentialsError
from possync.integrations.square.api_client import square_base_url

logger = structlog.get_logger()

SQUARE_OAUTH_SCOPES = (
    "ITEMS_READ",
    "ITEMS_WRITE",
    "MERCHANT_PROFILE_READ",
    "PAYMENTS_READ",
    "ORDERS_READ",
    "ORDERS_WRITE",
)


class OAuthState(BaseModel):
    tenant_id: str
    token: str  # CSRF token
    timestamp: int  # unix seconds


def _state_signature(encoded: str) -> str:
    return hmac.new(
        settings.square_application_secret.encode("utf-8"),
        encoded.encode("ascii"),
        hashlib.sha256,
    ).hexdigest()


def encode_oauth_state(tenant_id: str, now: Optional[float] = None) -> str:
    """base64url JSON state plus an HMAC so the tenant id cannot be swapped in transit."""
    state = OAuthState(
        tenant_id=tenant_id,
        token=secrets.token_urlsafe(32),
        timestamp=int(now if now is not None else time.time()),
    )
    encoded = base64.urlsafe_b64encode(state.model_dump_json().encode()).decode()
    return f"{encoded}.{_state_signature(encoded)}"


def decode_oauth_state(state: Optional[str], now: Optional[float] = None) -> OAuthState:
    """
    Decode and validate the state returned to the OAuth callback.

    Raises:
        InvalidCredentialsError: If the state is missing, malformed, tampered with or expired
    """
    if not state or "." not in state:
        raise InvalidCredentialsError("Missing or malformed OAuth state", provider="square")

    encoded, signature = state.rsplit(".", 1)
    if not hmac.compare_digest(_state_signature(encoded), signature):
        logger.warning("Square OAuth state signature mismatch")
        raise InvalidCredentialsError("Invalid OAuth state", provider="square")

    try:
        decoded = OAuthState(**json.loads(base64.urlsafe_b64decode(encoded.encode()).decode()))
    except (ValueError, TypeError) as e:
        logger.warning("Failed to decode Square OAuth state", error=str(e))
        raise InvalidCredentialsError("Malformed OAuth state", provider="square") from e

    age = (now if now is not None else time.time()) - decoded.timestamp
    if age > settings.oauth_state_max_age_seconds or age < 0:
        raise InvalidCredentialsError("OAuth state expired, restart the connection", provider="square")
    return decoded


def oauth_redirect_uri() -> str:
    return settings.square_oauth_redirect_uri or f"{settings.app_base_url}/integrations/square/callback"


def authorization_url(tenant_id: str) -> str:
    """Square authorize URL for the tenant, with scopes and signed state."""
    params = {
        "client_id": settings.square_application_id,
        "scope": " ".join(SQUARE_OAUTH_SCOPES),
        "session": "false",
        "redirect_uri": oauth_redirect_uri(),
        "state": encode_oauth_state(tenant_id),
    }
    auth_url = f"{square_base_url()}/oauth2/authorize?{urlencode(params)}"
    logger.info(
        "Built Square OAuth URL",
        tenant_id=tenant_id,
        environment=settings.square_environment,
    )
    return auth_url
