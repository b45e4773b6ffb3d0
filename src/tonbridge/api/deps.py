"""Request dependencies: ledger access, caller identity and admin token."""

import logging
from typing import Optional

from fastapi import Header, HTTPException, Request

from tonbridge.config import get_settings
from tonbridge.ledger.service import BridgeLedger

logger = logging.getLogger(__name__)


def get_ledger(request: Request) -> BridgeLedger:
    """Ledger instance attached to the application."""
    ledger = getattr(request.app.state, "ledger", None)
    if ledger is None:
        raise HTTPException(status_code=503, detail="Ledger is not ready")
    return ledger


async def get_caller(
    x_api_key: Optional[str] = Header(None),
    x_caller_identity: Optional[str] = Header(None),
) -> str:
    """Resolve the identity a request acts as.

    With API_KEYS configured the identity comes from the key. Without keys
    (dev mode) the X-Caller-Identity header is trusted as-is.
    """
    settings = get_settings()
    keys = settings.api_key_map

    if keys:
        identity = keys.get(x_api_key or "")
        if identity is None:
            raise HTTPException(status_code=401, detail="Invalid API key")
        return identity

    if not x_caller_identity:
        raise HTTPException(status_code=401, detail="X-Caller-Identity header required")
    return x_caller_identity


async def require_admin_token(x_admin_token: str = Header(None)) -> bool:
    """Verify admin token from header.

    If ADMIN_TOKEN is not set, allows access (dev mode).
    """
    settings = get_settings()

    if not settings.admin_token:
        if settings.is_production:
            logger.warning("ADMIN_TOKEN is not set in production")
        return True

    if x_admin_token != settings.admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")

    return True
