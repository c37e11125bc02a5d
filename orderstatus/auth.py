"""Caller identity for the callable endpoint: verifies the bearer token and returns its subject uid."""
from typing import Optional

import jwt
from fastapi import Header

from orderstatus.config import settings


def decode_token(token: str) -> Optional[dict]:
    options = {"require": ["sub", "exp"]}
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options=options,
        )
    except jwt.PyJWTError:
        return None


def caller_uid(authorization: Optional[str] = Header(default=None)) -> Optional[str]:
    """
    FastAPI dependency. None when the header is missing, malformed, or the token
    does not verify; the handler turns that into UNAUTHENTICATED.
    """
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    claims = decode_token(token.strip())
    if claims is None:
        return None
    uid = claims.get("sub")
    return str(uid) if uid else None
