"""Health check endpoints."""

from fastapi import APIRouter, Request

from tonbridge.config import get_settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "tonbridge"}


@router.get("/health/detailed")
async def detailed_health(request: Request):
    """Detailed health check with ledger status and configuration info."""
    settings = get_settings()
    ledger = getattr(request.app.state, "ledger", None)

    ledger_status = {"initialized": False}
    if ledger is not None and await ledger.is_initialized():
        ledger_status = {
            "initialized": True,
            "paused": await ledger.is_paused(),
            "latest_position": await ledger.latest_position(),
            "nonce": await ledger.current_nonce(),
        }

    return {
        "status": "healthy" if ledger_status["initialized"] else "degraded",
        "service": "tonbridge",
        "version": "0.1.0",
        "ledger": ledger_status,
        "config": settings.get_safe_dict(),
    }
