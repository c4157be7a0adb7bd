"""
Unit Tests for JWT security dependencies
"""

from datetime import timedelta

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from pawmart.core.security import create_access_token, get_current_admin, get_current_user, verify_token


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestTokens:
    """Tests for token creation and verification"""

    def test_round_trip_claims(self):
        token = create_access_token({"sub": "user-1", "role": "admin"})

        payload = verify_token(token)

        assert payload["sub"] == "user-1"
        assert "exp" in payload and "iat" in payload

    def test_expired_token_rejected(self):
        token = create_access_token({"sub": "user-1"}, expires_delta=timedelta(seconds=-10))

        with pytest.raises(jwt.ExpiredSignatureError):
            verify_token(token)

    def test_subject_is_required(self):
        token = create_access_token({"email": "a@example.com"})

        with pytest.raises(jwt.InvalidTokenError):
            verify_token(token)


class TestDependencies:
    """Tests for get_current_user and get_current_admin"""

    @pytest.mark.asyncio
    async def test_current_user_from_claims(self):
        token = create_access_token({"sub": "user-1", "email": "a@example.com", "name": "Asha"})

        user = await get_current_user(_credentials(token))

        assert user["user_id"] == "user-1"
        assert user["email"] == "a@example.com"
        assert user["role"] == "user"

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(None)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_bad_signature(self):
        token = jwt.encode(
            {"sub": "user-1", "exp": 9999999999, "iat": 0},
            "a_different_secret_key_of_at_least_32_chars",
            algorithm="HS256",
        )

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(_credentials(token))

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_admin_required(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_admin({"user_id": "user-1", "role": "user"})

        assert exc_info.value.status_code == 403
        assert (await get_current_admin({"user_id": "a", "role": "admin"}))["user_id"] == "a"
