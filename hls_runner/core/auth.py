# hls_runner/core/auth.py
"""
Token authentication for the conversion API.

Clients send the runner token either as ``X-API-Token`` or as
``Authorization: Bearer <token>``; the header wins when both are present.
"""

import hmac
import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from hls_runner.core.config import config

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)
api_key_header = APIKeyHeader(name="X-API-Token", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def presented_token(
    api_token: Optional[str], credentials: Optional[HTTPAuthorizationCredentials]
) -> Optional[str]:
    """Return the token sent by the client, if any."""
    if api_token:
        return api_token
    if credentials and credentials.credentials:
        return credentials.credentials
    return None


async def verify_token(
    api_token: Optional[str] = Depends(api_key_header),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """
    FastAPI dependency guarding the conversion endpoints.

    Returns:
        str: The validated token

    Raises:
        HTTPException: 401 when the token is missing or does not match HLS_RUNNER_TOKEN
    """
    token = presented_token(api_token, credentials)
    if token is None:
        raise _unauthorized("Missing authentication token")

    if not hmac.compare_digest(token.encode(), config.HLS_RUNNER_TOKEN.encode()):
        logger.warning("Rejected request with an invalid API token")
        raise _unauthorized("Invalid or expired token")

    return token
