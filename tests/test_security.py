"""Tests for token codec, token hashing and password hashing."""

from datetime import datetime, timedelta
import uuid

import pytest
from jose import jwt

from incident_api.core.exceptions import InvalidTokenError, TokenExpiredError
from incident_api.core.security import PasswordHasher, TokenCodec, hash_token, token_prefix
from incident_api.models import User

from conftest import FakeClock, make_settings


def make_user():
    return User(
        id=uuid.uuid4(),
        username="alice",
        email="alice@example.com",
        role="User",
    )


class TestTokenCodec:
    """Access token issue and verification."""

    def test_issue_and_decode(self, test_settings):
        codec = TokenCodec(test_settings)
        user = make_user()

        token, expires_at = codec.issue_access_token(user)
        payload = codec.decode_access_token(token)

        assert payload["sub"] == str(user.id)
        assert payload["username"] == "alice"
        assert payload["role"] == "User"
        assert payload["iss"] == test_settings.JWT_ISSUER
        assert payload["aud"] == test_settings.JWT_AUDIENCE
        assert payload["type"] == "access"
        assert payload["jti"]
        assert payload["exp"] - payload["iat"] == 15 * 60

    def test_tokens_are_unique(self, test_settings):
        codec = TokenCodec(test_settings)
        user = make_user()

        first, _ = codec.issue_access_token(user)
        second, _ = codec.issue_access_token(user)

        assert first != second
        assert hash_token(first) != hash_token(second)

    def test_expired_token(self, test_settings):
        clock = FakeClock(datetime.utcnow() - timedelta(hours=1))
        token, _ = TokenCodec(test_settings, clock=clock).issue_access_token(make_user())

        with pytest.raises(TokenExpiredError):
            TokenCodec(test_settings).decode_access_token(token)

    def test_wrong_signature(self, test_settings):
        other = make_settings(SECRET_KEY="another-secret-key-that-is-long-enough")
        token, _ = TokenCodec(other).issue_access_token(make_user())

        with pytest.raises(InvalidTokenError):
            TokenCodec(test_settings).decode_access_token(token)

    def test_wrong_audience(self, test_settings):
        other = make_settings(JWT_AUDIENCE="someone-else")
        token, _ = TokenCodec(other).issue_access_token(make_user())

        with pytest.raises(InvalidTokenError):
            TokenCodec(test_settings).decode_access_token(token)

    def test_wrong_issuer(self, test_settings):
        other = make_settings(JWT_ISSUER="someone-else")
        token, _ = TokenCodec(other).issue_access_token(make_user())

        with pytest.raises(InvalidTokenError):
            TokenCodec(test_settings).decode_access_token(token)

    def test_wrong_token_type(self, test_settings):
        token = jwt.encode(
            {
                "sub": str(uuid.uuid4()),
                "iss": test_settings.JWT_ISSUER,
                "aud": test_settings.JWT_AUDIENCE,
                "exp": datetime.utcnow() + timedelta(minutes=5),
                "type": "refresh",
            },
            test_settings.SECRET_KEY,
            algorithm=test_settings.ALGORITHM,
        )

        with pytest.raises(InvalidTokenError):
            TokenCodec(test_settings).decode_access_token(token)

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
    def test_malformed_token(self, test_settings, token):
        with pytest.raises(InvalidTokenError):
            TokenCodec(test_settings).decode_access_token(token)

    def test_extract_expiry(self, test_settings):
        clock = FakeClock(datetime(2030, 1, 1, 12, 0, 0))
        codec = TokenCodec(test_settings, clock=clock)
        token, expires_at = codec.issue_access_token(make_user())

        assert codec.extract_expiry(token) == expires_at == datetime(2030, 1, 1, 12, 15, 0)

    def test_extract_expiry_fallback(self, test_settings):
        clock = FakeClock(datetime(2030, 1, 1, 12, 0, 0))
        codec = TokenCodec(test_settings, clock=clock)

        assert codec.extract_expiry("garbage") == datetime(2030, 1, 1, 12, 15, 0)

    def test_refresh_tokens_are_random(self):
        tokens = {TokenCodec.generate_refresh_token() for _ in range(50)}
        assert len(tokens) == 50
        assert all(len(t) >= 43 for t in tokens)


class TestHashing:
    """Token and password hashing."""

    def test_hash_token_is_sha256_hex(self):
        digest = hash_token("abc")
        assert digest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"

    @pytest.mark.parametrize("token", ["", "   "])
    def test_hash_token_rejects_blank(self, token):
        with pytest.raises(ValueError):
            hash_token(token)

    def test_token_prefix(self):
        assert token_prefix("abcdefghijkl") == "abcdefgh..."
        assert token_prefix(None) == "<empty>"

    def test_password_hash_and_verify(self):
        hasher = PasswordHasher(rounds=4)
        hashed = hasher.hash("Secur3!Pass")

        assert hashed != "Secur3!Pass"
        assert hasher.verify("Secur3!Pass", hashed)
        assert not hasher.verify("Secur3!Pas", hashed)

    def test_password_hash_is_salted(self):
        hasher = PasswordHasher(rounds=4)
        assert hasher.hash("Secur3!Pass") != hasher.hash("Secur3!Pass")

    @pytest.mark.parametrize("stored", ["", "not-a-bcrypt-hash"])
    def test_verify_malformed_hash(self, stored):
        assert PasswordHasher(rounds=4).verify("Secur3!Pass", stored) is False
