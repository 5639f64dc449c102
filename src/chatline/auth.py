"""
Identity verification for incoming connections.

A connection presents a bearer credential during the handshake; a verifier
turns it into an ``Identity`` or raises ``AuthorizationError``. Two
verifiers ship with chatline:

- ``JWTIdentityVerifier`` checks a signed token locally. Tokens carry
  ``userId`` and ``username`` claims (``sub`` is accepted for the id).
- ``HttpIdentityVerifier`` asks the account service who the token belongs
  to via ``GET /api/profile``.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

import httpx
import jwt

from chatline.errors import AuthorizationError, ChatlineError
from chatline.models.records import Identity
from chatline.transport.http import HttpClient


class IdentityVerifier(Protocol):
    async def verify(self, credential: Optional[str]) -> Identity: ...


def _identity_from(data: Any, id_key: str) -> Identity:
    if not isinstance(data, dict):
        raise AuthorizationError("Authentication error: Invalid token")
    user_id = data.get(id_key)
    if user_id is None and id_key != "sub":
        user_id = data.get("sub")
    username = data.get("username")
    if user_id in (None, "") or not username:
        raise AuthorizationError("Authentication error: Invalid token")
    return Identity(user_id=str(user_id), username=str(username))


class JWTIdentityVerifier:
    def __init__(self, secret: str, algorithm: str = "HS256"):
        self._secret = secret
        self._algorithm = algorithm

    async def verify(self, credential: Optional[str]) -> Identity:
        if not credential:
            raise AuthorizationError("Authentication error: No token provided")
        try:
            claims = jwt.decode(credential, self._secret, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthorizationError("Authentication error: Token expired", code="token_expired")
        except jwt.InvalidTokenError:
            raise AuthorizationError("Authentication error: Invalid token")
        return _identity_from(claims, "userId")


class HttpIdentityVerifier:
    def __init__(self, http: HttpClient):
        self._http = http

    async def verify(self, credential: Optional[str]) -> Identity:
        if not credential:
            raise AuthorizationError("Authentication error: No token provided")
        try:
            user = await self._http.get("/api/profile", credential, key="user")
        except (ChatlineError, httpx.HTTPError, ValueError) as e:
            raise AuthorizationError(f"Authentication error: {e}")
        return _identity_from(user, "id")

    async def close(self) -> None:
        await self._http.close()
