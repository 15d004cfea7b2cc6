"""Tests for access token verification."""
import pytest
from datetime import datetime, timedelta
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from jose import JWTError, jwt


class TestJWTTokens:
    """Tests for JWT token functions."""

    def test_verify_access_token_valid(self):
        """Test verifying a valid access token."""
        from app.utils.auth import create_access_token, verify_access_token

        token = create_access_token(user_id="user123")

        assert verify_access_token(token) == "user123"

    def test_verify_access_token_invalid(self):
        """Test verifying an invalid token."""
        from app.utils.auth import verify_access_token

        with pytest.raises(JWTError):
            verify_access_token("invalid.token.here")

    def test_verify_access_token_expired(self):
        """Test verifying an expired token."""
        from app.utils.auth import create_access_token, verify_access_token

        token = create_access_token(user_id="user123", expires_delta=timedelta(seconds=-1))

        with pytest.raises(JWTError):
            verify_access_token(token)

    def test_verify_access_token_without_subject(self):
        """Test that a token without a sub claim is rejected."""
        from app.config import settings
        from app.utils.auth import verify_access_token

        token = jwt.encode(
            {"exp": datetime.utcnow() + timedelta(minutes=5)},
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
        )

        with pytest.raises(JWTError, match="sub"):
            verify_access_token(token)

    def test_token_signed_with_other_secret_rejected(self):
        """Test that tokens from another issuer are rejected."""
        from app.config import settings
        from app.utils.auth import verify_access_token

        token = jwt.encode(
            {"sub": "user123", "exp": datetime.utcnow() + timedelta(minutes=5)},
            "some-other-secret",
            algorithm=settings.jwt_algorithm,
        )

        with pytest.raises(JWTError):
            verify_access_token(token)


@pytest.mark.asyncio
class TestCurrentUserDependency:
    """Tests for the current user dependency."""

    async def test_missing_credentials(self):
        from app.routers.auth import get_current_user_id

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user_id(None)

        assert exc_info.value.status_code == 401

    async def test_invalid_credentials(self):
        from app.routers.auth import get_current_user_id

        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="garbage")

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user_id(credentials)

        assert exc_info.value.status_code == 401

    async def test_valid_credentials(self):
        from app.routers.auth import get_current_user_id
        from app.utils.auth import create_access_token

        credentials = HTTPAuthorizationCredentials(
            scheme="Bearer", credentials=create_access_token(user_id="user123")
        )

        assert await get_current_user_id(credentials) == "user123"
