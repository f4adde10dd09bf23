"""
Authentication for the ReceiptSearch REST API.

A single service API key protects every route except `/health`. End-user
identity arrives as `userId` from the upstream identity provider.
"""

from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from receiptsearch.config import settings

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "rs_"


def _presented_key(authorization: Optional[str], x_api_key: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:]
    return x_api_key or None


def verify_api_key(
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> bool:
    """Verify API key for protected endpoints."""
    if settings.allow_insecure_dev:
        return True

    api_key = _presented_key(authorization, x_api_key)
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization. Use Authorization: Bearer <key> or X-API-Key header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    configured = settings.api_key_value
    if not configured:
        logger.error(
            "SECURITY VIOLATION: api_key not configured. "
            "Set RECEIPTSEARCH_API_KEY or enable RECEIPTSEARCH_ALLOW_INSECURE_DEV=true (dev only)."
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Server misconfigured: authentication not properly initialized",
        )

    if not secrets.compare_digest(api_key, configured):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return True


def generate_api_key() -> str:
    """Generate a new API key with rs_ prefix."""
    return f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"
