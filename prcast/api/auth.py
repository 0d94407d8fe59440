"""
Admin API key check shared by the management and internal endpoints.
"""

import hmac
from typing import Optional

from fastapi import Header, HTTPException

from prcast.config import settings


async def verify_api_key(x_api_key: Optional[str] = Header(None)) -> None:
    """
    Verify API key for admin endpoints.

    Args:
        x_api_key: API key from request header

    Raises:
        HTTPException: If API key is invalid or missing
    """
    if not x_api_key:
        raise HTTPException(status_code=401, detail="API key required")

    expected_key = settings.admin_api_key or settings.github_webhook_secret
    if not expected_key or not hmac.compare_digest(x_api_key.encode(), expected_key.encode()):
        raise HTTPException(status_code=401, detail="Invalid API key")
