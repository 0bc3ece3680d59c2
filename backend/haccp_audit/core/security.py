"""
Bearer-token validation.

Tokens are issued by the external auth service (register/login live there);
this service only verifies them and reads the ``sub`` claim.
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import ExpiredSignatureError, JWTError, jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from haccp_audit.core.config import settings
from haccp_audit.core.exceptions import AuthenticationError, TokenExpiredError
from haccp_audit.core.logging_config import set_user_id

# auto_error=False so AUTH_REQUIRED=false deployments accept anonymous calls
security = HTTPBearer(auto_error=False)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token (used by tests and local tooling)"""
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=30))
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Decode JWT token"""
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise TokenExpiredError()
    except JWTError:
        raise AuthenticationError("Could not validate credentials")


async def get_optional_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[Dict[str, Any]]:
    """
    Resolve the caller's token payload.

    Returns None for anonymous calls when AUTH_REQUIRED is off. A token that is
    present is always validated.
    """
    if credentials is None:
        if settings.AUTH_REQUIRED:
            raise AuthenticationError("Bearer token required")
        return None

    payload = decode_token(credentials.credentials)
    if payload.get("type") != "access":
        raise AuthenticationError("Invalid token type")

    if payload.get("sub"):
        set_user_id(str(payload["sub"]))
    return payload


def principal_user_id(principal: Optional[Dict[str, Any]]) -> Optional[str]:
    if not principal:
        return None
    sub = principal.get("sub")
    return str(sub) if sub else None
