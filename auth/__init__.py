"""Authentication module using signed JWT bearer tokens.

Tokens are issued by the account service that owns registration and login.
This module only verifies them: the ``sub`` claim carries the account UUID and
the ``resources`` claim lists the resource ids that service says the account owns.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import FrozenSet, Optional, Sequence
from uuid import UUID

from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError, ExpiredSignatureError

from config import settings_conf

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_DAYS = 30
JWT_ALGORITHM = settings_conf['jwt_algorithm']
JWT_SECRET = settings_conf['jwt_secret'] or secrets.token_urlsafe(32)

if not settings_conf['jwt_secret']:
    logger.warning("jwt_secret not set, using a random secret for this process")

class AuthError(Exception):
    """Base exception for authentication errors."""
    pass

class SessionExpiredError(AuthError):
    """Raised when a token has expired."""
    pass

def create_access_token(
    account_id: UUID,
    expires_in: Optional[timedelta] = None,
    secret: Optional[str] = None,
    resources: Optional[Sequence[str]] = None
) -> str:
    """Issue a token for an account, optionally naming the resources it owns."""
    expires_at = datetime.now(timezone.utc) + (expires_in or timedelta(days=TOKEN_EXPIRY_DAYS))
    claims = {'sub': str(account_id), 'exp': int(expires_at.timestamp())}
    if resources:
        claims['resources'] = list(resources)
    return jwt.encode(
        claims,
        secret or JWT_SECRET,
        algorithm=JWT_ALGORITHM
    )

def _verified_claims(token: str, secret: Optional[str]) -> dict:
    try:
        return jwt.decode(token, secret or JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise SessionExpiredError("Session has expired")
    except JWTError as e:
        raise AuthError(f"Invalid token: {str(e)}")

def decode_access_token(token: str, secret: Optional[str] = None) -> UUID:
    """Verify a token and return the account it was issued to.

    Raises:
        SessionExpiredError: If the token has expired
        AuthError: If the token is invalid
    """
    payload = _verified_claims(token, secret)
    try:
        return UUID(payload['sub'])
    except (KeyError, ValueError, TypeError):
        raise AuthError("Token subject is not an account id")

def decode_resource_claims(token: str, secret: Optional[str] = None) -> FrozenSet[str]:
    """Verify a token and return the resource ids its holder owns.

    Raises:
        SessionExpiredError: If the token has expired
        AuthError: If the token is invalid or the claim is malformed
    """
    resources = _verified_claims(token, secret).get('resources', [])
    if not isinstance(resources, list) or not all(isinstance(r, str) for r in resources):
        raise AuthError("Token resources claim must be a list of resource ids")
    return frozenset(resources)

# FastAPI security scheme
auth_scheme = HTTPBearer(
    auto_error=True,
    description="JWT Bearer token required"
)

async def get_current_account(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)
) -> UUID:
    """FastAPI dependency for the authenticated account id.

    Raises:
        HTTPException: If authentication fails
    """
    try:
        return decode_access_token(credentials.credentials)
    except SessionExpiredError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session has expired"
        )
    except AuthError as e:
        logger.warning(f"Rejected token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )

async def get_owned_resources(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)
) -> FrozenSet[str]:
    """FastAPI dependency for the resource ids the caller's token says it owns."""
    try:
        return decode_resource_claims(credentials.credentials)
    except AuthError as e:
        logger.warning(f"Rejected token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )

# Export public interface
__all__ = [
    'get_current_account',
    'get_owned_resources',
    'create_access_token',
    'decode_access_token',
    'decode_resource_claims',
    'AuthError',
    'SessionExpiredError'
]
