"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tonbridge.bootstrap import bootstrap_ledger
from tonbridge.config import get_settings
from tonbridge.exceptions import BridgeError
from tonbridge.ledger.database import close_db, init_db
from tonbridge.ledger.service import BridgeLedger
from tonbridge.utils.locks import LockTimeoutError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup: an app built without a ledger owns the global database
    owns_ledger = getattr(app.state, "ledger", None) is None
    if owns_ledger:
        await init_db()
        ledger = BridgeLedger()
        await bootstrap_ledger(ledger, get_settings())
        app.state.ledger = ledger
    yield
    # Shutdown
    if owns_ledger:
        app.state.ledger = None
        await close_db()


async def bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message},
    )


async def lock_timeout_handler(request: Request, exc: LockTimeoutError) -> JSONResponse:
    logger.warning(f"Ledger busy on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"error": "busy", "detail": str(exc)})


def create_app(ledger: Optional[BridgeLedger] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        ledger: Ledger to serve; when omitted the lifespan builds one on the
            configured database.
    """
    settings = get_settings()

    app = FastAPI(
        title="TON Bridge API",
        description="Threshold-attested bridge ledger between an EVM chain and TON",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.ledger = ledger

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BridgeError, bridge_error_handler)
    app.add_exception_handler(LockTimeoutError, lock_timeout_handler)

    # Register routes
    from tonbridge.api.routers import admin, bridge
    from tonbridge.api.routes import health

    app.include_router(health.router, tags=["Health"])
    app.include_router(bridge.router)
    app.include_router(admin.router)

    return app


# Default app instance
app = create_app()
