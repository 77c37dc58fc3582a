from __future__ import annotations

import hmac

from fastapi import Header, HTTPException, status

from .core.ports import DirectoryGateway
from .env_settings import get_env
from .errors import DirectoryUnavailableError
from .services import build_directory


def require_api_token(x_api_token: str = Header(default="")) -> None:
    """Static token check; no token configured means the API is open."""
    expected = get_env().api_token
    if not expected:
        return
    if not hmac.compare_digest(x_api_token.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API token")


def get_directory() -> DirectoryGateway:
    try:
        return build_directory(get_env())
    except DirectoryUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
