"""
JWT Security for PawMart

Token verification and the FastAPI dependencies that turn a bearer token
into the caller's identity. Tokens are issued by the account service;
this service only verifies them.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from pawmart.core.config import settings

__all__ = [
    "ADMIN_ROLE",
    "create_access_token",
    "verify_token",
    "security_scheme",
    "get_current_user",
    "get_current_admin",
]

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

# Only used outside production when JWT_SECRET is not set
_DEV_FALLBACK_SECRET = "dev_only_fallback_secret_not_for_production_use_32chars"
_DEV_FALLBACK_WARNED = False


def _get_jwt_secret() -> str:
    global _DEV_FALLBACK_WARNED

    if settings.JWT_SECRET:
        return settings.JWT_SECRET

    if settings.ENVIRONMENT == "production":
        raise ValueError("JWT_SECRET environment variable must be set in production")

    if not _DEV_FALLBACK_WARNED:
        logger.warning("JWT_SECRET not set - using development fallback secret")
        _DEV_FALLBACK_WARNED = True
    return _DEV_FALLBACK_SECRET


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed JWT. Used by tooling and tests; the account service
    issues production tokens with the same claims.
    """
    now = datetime.now(timezone.utc)
    to_encode = data.copy()
    to_encode.update({
        "exp": now + (expires_delta or timedelta(minutes=30)),
        "iat": now,
    })
    return jwt.encode(to_encode, _get_jwt_secret(), algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a JWT token.

    Raises:
        jwt.ExpiredSignatureError: If token has expired
        jwt.InvalidTokenError: If token is invalid
    """
    return jwt.decode(
        token,
        _get_jwt_secret(),
        algorithms=[settings.JWT_ALGORITHM],
        options={
            "verify_signature": True,
            "verify_exp": True,
            "require": ["exp", "iat", "sub"],
        }
    )


security_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security_scheme)
) -> Dict[str, Any]:
    """
    FastAPI dependency returning the authenticated caller.

    Raises:
        HTTPException: If token is missing, invalid, or expired
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"}
        )

    try:
        payload = verify_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"}
        )
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    return {
        'user_id': payload.get('sub'),
        'email': payload.get('email'),
        'name': payload.get('name'),
        'phone': payload.get('phone'),
        'role': payload.get('role', 'user'),
        'payload': payload,
    }


async def get_current_admin(
    current_user: Dict[str, Any] = Depends(get_current_user)
) -> Dict[str, Any]:
    """FastAPI dependency that only admits admin tokens."""
    if current_user.get('role') != ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user
