"""Unit tests for JWT token creation, decoding, and validation."""

import uuid
from datetime import timedelta

import pytest
from fastapi import HTTPException
from jose import JWTError, jwt

from app.auth.dependencies import user_id_from_token
from app.auth.jwt import create_access_token, decode_token
from app.config import settings


class TestCreateAccessToken:
    """Test access token creation."""

    def test_contains_type_access(self):
        token = create_access_token({"sub": "user-123"})
        payload = decode_token(token)
        assert payload["type"] == "access"

    def test_contains_sub_claim(self):
        token = create_access_token({"sub": "user-abc"})
        payload = decode_token(token)
        assert payload["sub"] == "user-abc"

    def test_contains_iat_claim(self):
        token = create_access_token({"sub": "user-123"})
        payload = decode_token(token)
        assert "iat" in payload

    def test_contains_exp_claim(self):
        token = create_access_token({"sub": "user-123"})
        payload = decode_token(token)
        assert "exp" in payload

    def test_custom_expiry_delta(self):
        token = create_access_token({"sub": "user-123"}, expires_delta=timedelta(hours=1))
        payload = decode_token(token)
        # Token should be valid (not expired)
        assert payload["sub"] == "user-123"


class TestDecodeToken:
    """Test token decoding and validation."""

    def test_decode_valid_access_token(self):
        token = create_access_token({"sub": "user-123"})
        payload = decode_token(token)
        assert payload["sub"] == "user-123"
        assert payload["type"] == "access"

    def test_decode_expired_token_raises(self):
        token = create_access_token({"sub": "user-123"}, expires_delta=timedelta(seconds=-1))
        with pytest.raises(JWTError):
            decode_token(token)

    def test_decode_invalid_token_raises(self):
        with pytest.raises(JWTError):
            decode_token("not.a.valid.token")

    def test_decode_empty_string_raises(self):
        with pytest.raises(JWTError):
            decode_token("")


class TestUserIdFromToken:
    """Test bearer token to user id resolution."""

    def test_valid_access_token(self):
        user_id = uuid.uuid4()
        token = create_access_token({"sub": str(user_id)})
        assert user_id_from_token(token) == user_id

    def test_non_uuid_sub_is_rejected(self):
        token = create_access_token({"sub": "user-123"})
        with pytest.raises(HTTPException) as exc_info:
            user_id_from_token(token)
        assert exc_info.value.status_code == 401

    def test_wrong_token_type_is_rejected(self):
        token = jwt.encode(
            {"sub": str(uuid.uuid4()), "type": "refresh"},
            settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
        )
        with pytest.raises(HTTPException) as exc_info:
            user_id_from_token(token)
        assert exc_info.value.detail == "Invalid token type"

    def test_garbage_token_is_rejected(self):
        with pytest.raises(HTTPException) as exc_info:
            user_id_from_token("not.a.valid.token")
        assert exc_info.value.status_code == 401
