"""
Tests for Anonymous Identity
============================
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from bear_court.config import Settings
from bear_court.errors import IdentityUnavailable
from bear_court.identity import Identity, IdentityProvider


@pytest.fixture
def settings():
    return Settings(_env_file=None, jwt_secret_key="test-secret", dev_mode=True)


@pytest.fixture
def provider(settings):
    return IdentityProvider(settings)


class TestSignIn:
    """Tests for sign_in_anonymously / resolve"""

    def test_token_round_trip(self, provider):
        identity, token = provider.sign_in_anonymously()
        assert provider.resolve(token) == identity

    def test_token_payload(self, provider):
        identity, token = provider.sign_in_anonymously()
        payload = jwt.decode(token, "test-secret", algorithms=["HS256"])
        assert payload["sub"] == identity.uid
        assert payload["type"] == "anonymous"
        assert payload["exp"] > payload["iat"]

    def test_bearer_header(self, provider):
        identity, token = provider.sign_in_anonymously()
        assert provider.resolve_header(f"Bearer {token}") == identity
        assert provider.resolve_header(f"bearer {token}") == identity

    @pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer"])
    def test_bad_header(self, provider, header):
        with pytest.raises(IdentityUnavailable):
            provider.resolve_header(header)


class TestRejectedTokens:
    """Tokens that must not resolve to an identity"""

    def test_missing_token(self, provider):
        with pytest.raises(IdentityUnavailable):
            provider.resolve(None)

    def test_other_secret(self, provider):
        _, token = IdentityProvider(Settings(_env_file=None, jwt_secret_key="other")).sign_in_anonymously()
        with pytest.raises(IdentityUnavailable):
            provider.resolve(token)

    def test_expired_token(self, provider):
        past = datetime.now(timezone.utc) - timedelta(days=2)
        token = jwt.encode(
            {"sub": "abc", "type": "anonymous", "iat": past, "exp": past + timedelta(days=1)},
            "test-secret",
            algorithm="HS256",
        )
        with pytest.raises(IdentityUnavailable):
            provider.resolve(token)

    def test_wrong_token_type(self, provider):
        token = jwt.encode({"sub": "abc", "type": "access"}, "test-secret", algorithm="HS256")
        with pytest.raises(IdentityUnavailable):
            provider.resolve(token)

    def test_identity_is_hashable(self):
        assert len({Identity("a"), Identity("a"), Identity("b")}) == 2
