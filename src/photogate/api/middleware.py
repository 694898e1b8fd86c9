"""Caller identification for the moderation API.

Picker slots are scoped to the caller that owns them. With no API key
configured the service is open and every caller is anonymous; otherwise the
bearer token must match and the caller is identified by a digest of it.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from photogate.config import Settings

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Caller:
    """Who is moderating: the owner of a set of picker slots."""

    identity: str

    @classmethod
    def from_token(cls, token: str) -> Caller:
        digest = hashlib.sha256(token.encode()).hexdigest()[:16]
        return cls(identity=f"key:{digest}")


async def authenticate_caller(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> Caller:
    """Resolve the caller, enforcing PHOTOGATE_API_KEY when it is set."""
    settings: Settings = request.app.state.settings
    if settings.api_key is None:
        return Caller(identity=ANONYMOUS)

    token = credentials.credentials if credentials is not None else ""
    if not secrets.compare_digest(token.encode(), settings.api_key.encode()):
        logger.info("Rejected unauthenticated request to %s", request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Caller.from_token(token)
