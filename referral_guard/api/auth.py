"""
Token auth for the referral risk API.

Assessment endpoints take the API token, review and account endpoints
the admin token, /metrics the metrics token. Each is optional; an unset
token disables the check. Tokens come from X-API-Key or a Bearer header.
"""

import hmac
from typing import Optional

from fastapi import Header, HTTPException, status

from ..config import settings


def _extract_token(authorization: Optional[str], x_api_key: Optional[str]) -> Optional[str]:
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def _check(expected: Optional[str], authorization: Optional[str], x_api_key: Optional[str]) -> None:
    if not expected:
        return
    token = _extract_token(authorization, x_api_key)
    if token is None or not hmac.compare_digest(token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def require_api_token(
    authorization: Optional[str] = Header(default=None),
    x_api_key: Optional[str] = Header(default=None),
) -> None:
    _check(settings.api_token, authorization, x_api_key)


def require_admin_token(
    authorization: Optional[str] = Header(default=None),
    x_api_key: Optional[str] = Header(default=None),
) -> None:
    _check(settings.admin_token, authorization, x_api_key)


def require_metrics_token(
    authorization: Optional[str] = Header(default=None),
    x_api_key: Optional[str] = Header(default=None),
) -> None:
    _check(settings.metrics_token, authorization, x_api_key)
