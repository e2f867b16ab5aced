import logging

import jwt
import pytest

from client.config import ApiSettings
from client.credentials import (
    CredentialProvider,
    StaticTokenProvider,
    decode_token,
    get_token_expiration_time,
    get_user_from_token,
    is_token_expired,
)

NOW = 1_700_000_000
SECRET = "test-secret-key-that-is-long-enough"


def make_token(claims: dict) -> str:
    return jwt.encode(claims, SECRET, algorithm="HS256")


class TestTokenHelpers:

    def test_decode(self):
        token = make_token({"sub": "ada@example.com", "exp": NOW + 60})

        assert decode_token(token) == {"sub": "ada@example.com", "exp": NOW + 60}

    def test_decode_ignores_signature(self):
        token = jwt.encode({"sub": "grace"}, "some-other-secret-we-never-see-here", algorithm="HS256")

        assert decode_token(token) == {"sub": "grace"}

    @pytest.mark.parametrize("token", [
        "not-a-jwt",
        "a.b",
        "a.!!!.c",
        "a.bnVsbA.c",
        "eyJhbGciOiJub25lIn0.bnVsbA.c2ln",
    ])
    def test_decode_invalid(self, token):
        assert decode_token(token) is None

    def test_expiry_with_skew(self):
        assert not is_token_expired(make_token({"exp": NOW + 60}), now=NOW)
        assert is_token_expired(make_token({"exp": NOW + 5}), now=NOW)
        assert is_token_expired(make_token({"exp": NOW - 1}), now=NOW)
        assert is_token_expired(make_token({"sub": "no-exp"}), now=NOW)

    def test_expiration_time(self):
        assert get_token_expiration_time(make_token({"exp": NOW + 90}), now=NOW) == 90
        assert get_token_expiration_time(make_token({"exp": NOW - 90}), now=NOW) == 0
        assert get_token_expiration_time("garbage", now=NOW) == 0

    def test_user(self):
        assert get_user_from_token(make_token({"sub": "ada"})) == "ada"
        assert get_user_from_token(make_token({"username": "grace"})) == "grace"
        assert get_user_from_token(make_token({})) == "Unknown"
        assert get_user_from_token("garbage") is None


class TestStaticTokenProvider:

    def test_is_credential_provider(self):
        assert isinstance(StaticTokenProvider("tok"), CredentialProvider)

    def test_from_settings(self):
        provider = StaticTokenProvider.from_settings(ApiSettings(access_token="secret-token"))

        assert provider.get_token() == "secret-token"

    def test_empty_token_is_none(self):
        assert StaticTokenProvider("").get_token() is None

    def test_expired_token_still_returned_with_warning(self, caplog):
        token = make_token({"exp": 1})

        with caplog.at_level(logging.WARNING, logger="client.credentials"):
            assert StaticTokenProvider(token).get_token() == token

        assert "expired" in caplog.text
