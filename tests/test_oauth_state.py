# tests/test_oauth_state.py

import time
from urllib.parse import parse_qs, urlparse

import pytest

from possync.config import settings
from possync.exceptions import InvalidCredentialsError
from possync.integrations.square.oauth import (
    SQUARE_OAUTH_SCOPES,
    authorization_url,
    decode_oauth_state,
    encode_oauth_state,
)


class TestOAuthState:

    def test_roundtrip(self):
        state = encode_oauth_state("tenant-1")
        decoded = decode_oauth_state(state)

        assert decoded.tenant_id == "tenant-1"
        assert decoded.token

    def test_tampered_tenant_is_rejected(self):
        state = encode_oauth_state("tenant-1")
        other = encode_oauth_state("tenant-2")
        forged = f"{other.split('.')[0]}.{state.split('.')[1]}"

        with pytest.raises(InvalidCredentialsError):
            decode_oauth_state(forged)

    def test_expired_state(self):
        issued = time.time() - settings.oauth_state_max_age_seconds - 5
        state = encode_oauth_state("tenant-1", now=issued)

        with pytest.raises(InvalidCredentialsError):
            decode_oauth_state(state)

    @pytest.mark.parametrize("state", [None, "", "no-dot", "abc.def"])
    def test_malformed_state(self, state):
        with pytest.raises(InvalidCredentialsError):
            decode_oauth_state(state)

    def test_state_signed_with_other_secret(self, monkeypatch):
        state = encode_oauth_state("tenant-1")
        monkeypatch.setattr(settings, "square_application_secret", "rotated")

        with pytest.raises(InvalidCredentialsError):
            decode_oauth_state(state)


class TestAuthorizationUrl:

    def test_contains_client_scopes_and_state(self, monkeypatch):
        monkeypatch.setattr(settings, "app_base_url", "https://sync.example.com")
        monkeypatch.setattr(settings, "square_oauth_redirect_uri", "")

        url = urlparse(authorization_url("tenant-1"))
        params = parse_qs(url.query)

        assert url.netloc == "connect.squareupsandbox.com"
        assert url.path == "/oauth2/authorize"
        assert params["client_id"] == ["sq0idp-test"]
        assert params["scope"] == [" ".join(SQUARE_OAUTH_SCOPES)]
        assert params["session"] == ["false"]
        assert params["redirect_uri"] == ["https://sync.example.com/integrations/square/callback"]
        assert decode_oauth_state(params["state"][0]).tenant_id == "tenant-1"

    def test_production_host(self, monkeypatch):
        monkeypatch.setattr(settings, "square_environment", "production")

        assert urlparse(authorization_url("tenant-1")).netloc == "connect.squareup.com"
