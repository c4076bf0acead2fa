# Implements the token side of the auth boundary:
# JWT access token generation (used by tooling and tests)
# JWT verification that resolves a bearer token to the acting user id
# Identity is trusted once resolved; permission checks live in the services

from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union
import logging

from jose import jwt, JWTError

from friendgraph.core.config import settings

logger = logging.getLogger("app")

def create_access_token(subject: Union[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {"exp": expire, "sub": str(subject)}
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt

def verify_access_token(token: str) -> Optional[str]:
    """Return the user id carried by ``token`` or None when it is invalid or expired."""
    try:
        # jose validates the exp claim itself
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
        )
    except JWTError as e:
        logger.warning(f"Token validation failed: {e}")
        return None

    user_id = payload.get("sub")
    if not user_id:
        logger.warning("Token payload missing 'sub' field")
        return None
    return str(user_id)
