import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader

from stockwatch.core.config import settings
from stockwatch.services.runtime import MonitorRuntime

# Admin token header name
ADMIN_TOKEN_HEADER = "X-Admin-Token"

admin_token_header = APIKeyHeader(name=ADMIN_TOKEN_HEADER, auto_error=False)


def get_runtime(request: Request) -> MonitorRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Monitor runtime is not initialized",
        )
    return runtime


def require_admin(token: Optional[str] = Depends(admin_token_header)) -> None:
    """
    Require the operator token when ADMIN_API_TOKEN is configured.
    With no token configured the operator API is open (local development).
    """
    expected = settings.ADMIN_API_TOKEN
    if not expected:
        return
    if not token or not secrets.compare_digest(token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin token",
            headers={"WWW-Authenticate": "ApiKey"},
        )
