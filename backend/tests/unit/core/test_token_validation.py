"""
Unit Tests for Bearer Token Validation
Tests for: token decoding, expiry, token type, optional principal
"""
import pytest
from unittest.mock import patch
from datetime import timedelta
from jose import jwt
from fastapi.security import HTTPAuthorizationCredentials

from haccp_audit.core.config import settings
from haccp_audit.core.exceptions import AuthenticationError, TokenExpiredError
from haccp_audit.core.security import (
    create_access_token,
    decode_token,
    get_optional_principal,
    principal_user_id,
)


def bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestDecodeToken:
    """Test JWT decoding"""

    def test_valid_token(self):
        token = create_access_token({"sub": "auditor-1"})
        payload = decode_token(token)

        assert payload["sub"] == "auditor-1"
        assert payload["type"] == "access"

    def test_expired_token(self):
        token = create_access_token({"sub": "auditor-1"}, expires_delta=timedelta(seconds=-10))

        with pytest.raises(TokenExpiredError) as exc_info:
            decode_token(token)
        assert exc_info.value.code == "TOKEN_EXPIRED"

    def test_wrong_secret(self):
        token = jwt.encode({"sub": "auditor-1"}, "another-secret", algorithm=settings.JWT_ALGORITHM)

        with pytest.raises(AuthenticationError):
            decode_token(token)

    def test_garbage(self):
        with pytest.raises(AuthenticationError):
            decode_token("not.a.token")


class TestOptionalPrincipal:
    """Test get_optional_principal"""

    @pytest.mark.asyncio
    async def test_anonymous_allowed_when_auth_optional(self):
        with patch("haccp_audit.core.security.settings") as mock_settings:
            mock_settings.AUTH_REQUIRED = False
            assert await get_optional_principal(None) is None

    @pytest.mark.asyncio
    async def test_anonymous_rejected_when_auth_required(self):
        with patch("haccp_audit.core.security.settings") as mock_settings:
            mock_settings.AUTH_REQUIRED = True
            with pytest.raises(AuthenticationError):
                await get_optional_principal(None)

    @pytest.mark.asyncio
    async def test_valid_bearer(self):
        principal = await get_optional_principal(bearer(create_access_token({"sub": "auditor-1"})))
        assert principal_user_id(principal) == "auditor-1"

    @pytest.mark.asyncio
    async def test_non_access_token_rejected(self):
        token = jwt.encode({"sub": "auditor-1", "type": "refresh"}, settings.JWT_SECRET_KEY,
                           algorithm=settings.JWT_ALGORITHM)

        with pytest.raises(AuthenticationError):
            await get_optional_principal(bearer(token))

    def test_principal_user_id(self):
        assert principal_user_id(None) is None
        assert principal_user_id({"type": "access"}) is None
        assert principal_user_id({"sub": 42}) == "42"
