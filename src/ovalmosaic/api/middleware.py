"""Middleware: optional API key authentication.

The key may be sent as ``Authorization: Bearer <key>`` or as an
``X-API-Key`` header, for clients that cannot set bearer tokens on
multipart uploads.
"""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from ovalmosaic.config import Settings

_bearer_scheme = HTTPBearer(auto_error=False)
_header_scheme = APIKeyHeader(name="X-API-Key", auto_error=False)


def _matches(candidate: str | None, expected: str) -> bool:
    return candidate is not None and secrets.compare_digest(candidate.encode(), expected.encode())


async def verify_api_key(
    request: Request,
    bearer: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
    header_key: Annotated[str | None, Depends(_header_scheme)],
) -> None:
    """Reject the request unless it carries the configured API key.

    With OVALMOSAIC_API_KEY unset every request passes.
    """
    settings: Settings = request.app.state.settings
    if settings.api_key is None:
        return

    token = bearer.credentials if bearer is not None else None
    if _matches(token, settings.api_key) or _matches(header_key, settings.api_key):
        return

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing API key",
        headers={"WWW-Authenticate": "Bearer"},
    )
