from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import jwt
from fastapi import Header, HTTPException

JWT_SECRET = os.environ.get("TRIPCAST_JWT_SECRET")  # bearer auth is on when set
JWT_ISSUER = os.environ.get("TRIPCAST_JWT_ISSUER", "tripcast")
JWT_AUDIENCE = os.environ.get("TRIPCAST_JWT_AUDIENCE", "tripcast-web")
JWT_ALG = "HS256"
JWT_TTL_SECONDS = int(os.environ.get("TRIPCAST_JWT_TTL_SECONDS", "86400"))

API_KEY = os.environ.get("TRIPCAST_API_KEY")


@dataclass
class Principal:
    sub: str
    method: str = "none"  # "jwt", "api_key" or "none"
    claims: Dict[str, Any] = field(default_factory=dict)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail)


def decode_token(token: str) -> Principal:
    try:
        claims = jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[JWT_ALG],
            audience=JWT_AUDIENCE,
            issuer=JWT_ISSUER,
            options={"require": ["exp", "iat", "sub"]},
        )
    except jwt.PyJWTError as e:
        raise _unauthorized(f"Invalid token: {e}")
    return Principal(sub=str(claims["sub"]), method="jwt", claims=claims)


def authenticate(x_api_key: Optional[str], authorization: Optional[str]) -> Principal:
    """Resolve the caller from request headers.

    A configured JWT secret takes precedence over the API key; with neither
    configured every caller is anonymous.
    """
    if JWT_SECRET:
        scheme, _, token = (authorization or "").partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise _unauthorized("Missing bearer token")
        return decode_token(token.strip())
    if API_KEY:
        if x_api_key != API_KEY:
            raise _unauthorized("Unauthorized")
        return Principal(sub="api_key_user", method="api_key")
    return Principal(sub="anonymous")


def require_principal(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    return authenticate(x_api_key, authorization)


def mint_token(sub: str, ttl_seconds: int = JWT_TTL_SECONDS) -> str:
    if not JWT_SECRET:
        raise RuntimeError("TRIPCAST_JWT_SECRET is not set")
    now = int(time.time())
    claims = {"iss": JWT_ISSUER, "aud": JWT_AUDIENCE, "sub": sub, "iat": now, "exp": now + ttl_seconds}
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALG)
