"""Authentication dependency for admin API endpoints.

Behavior matrix:
  ADMIN_API_KEY set + valid token   -> allow
  ADMIN_API_KEY set + wrong/missing -> 401 Unauthorized
  ADMIN_API_KEY empty + DEBUG=true  -> allow (local dev convenience)
  ADMIN_API_KEY empty + DEBUG=false -> 403 Forbidden (locked in production)
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from booking_engine.config import Settings, settings

log = logging.getLogger("booking_engine.auth")

_bearer_scheme = HTTPBearer(auto_error=False)


def check_admin_token(
    credentials: HTTPAuthorizationCredentials | None,
    cfg: Settings,
) -> None:
    """Raise HTTPException unless ``credentials`` satisfy ``cfg``."""
    key = cfg.admin_api_key

    if not key:
        # No key configured
        if cfg.debug:
            return  # Local dev: allow without auth
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API key not configured. Set ADMIN_API_KEY in .env.",
        )

    if credentials is None or not hmac.compare_digest(credentials.credentials, key):
        log.warning("Rejected admin request with invalid or missing token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_admin_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> None:
    """FastAPI dependency: protect admin endpoints with a bearer token.

    Uses the settings of the engine mounted on the app, falling back to
    the process-wide settings.
    """
    engine = getattr(request.app.state, "engine", None)
    cfg = engine.settings if engine is not None else settings
    check_admin_token(credentials, cfg)
