"""Unit tests for JWT decoding and access token validation."""

import uuid
from datetime import timedelta

import pytest
from jose import JWTError, jwt

from taskmaster.auth.jwt import TokenTypeError, access_token_subject, decode_token
from taskmaster.config import settings


class TestDecodeToken:
    """Test token decoding and validation."""

    def test_round_trips_claims(self, mint_token):
        payload = decode_token(mint_token("user-abc"))
        assert payload["sub"] == "user-abc"
        assert payload["type"] == "access"

    def test_decode_expired_token_raises(self, mint_token):
        token = mint_token("user-123", expires_in=timedelta(seconds=-1))
        with pytest.raises(JWTError):
            decode_token(token)

    def test_decode_invalid_token_raises(self):
        with pytest.raises(JWTError):
            decode_token("not.a.valid.token")

    def test_decode_empty_string_raises(self):
        with pytest.raises(JWTError):
            decode_token("")

    def test_token_signed_with_other_secret_raises(self):
        token = jwt.encode({"sub": "user-123", "type": "access"}, "another-secret", algorithm=settings.jwt_algorithm)
        with pytest.raises(JWTError):
            decode_token(token)


class TestAccessTokenSubject:
    """Test profile id extraction from access tokens."""

    def test_returns_profile_id(self, mint_token):
        profile_id = uuid.uuid4()
        assert access_token_subject(mint_token(str(profile_id))) == profile_id

    def test_refresh_token_is_wrong_type(self, mint_token):
        with pytest.raises(TokenTypeError):
            access_token_subject(mint_token(str(uuid.uuid4()), token_type="refresh"))

    def test_non_uuid_subject_raises(self, mint_token):
        with pytest.raises(JWTError):
            access_token_subject(mint_token("not-a-uuid"))

    def test_missing_subject_raises(self):
        token = jwt.encode({"type": "access"}, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
        with pytest.raises(JWTError):
            access_token_subject(token)
