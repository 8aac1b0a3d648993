"""Main entry point for the Showpls trust layer API."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from showpls.api.v1 import auth_router, escrow_router, fees_router
from showpls.api.ws import router as ws_router
from showpls.core.errors import ShowplsError
from showpls.core.settings import settings
from showpls.services.sweeper import IdempotencySweeper
from showpls.services.ton import close_escrow_gateway

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Showpls API",
    description="Trust layer for the Showpls capture marketplace",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)


@app.exception_handler(ShowplsError)
async def showpls_error_handler(request: Request, exc: ShowplsError) -> JSONResponse:
    """Render domain errors as ``{"error": ..., "hint": ...}``."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_payload(),
        headers=exc.headers,
    )


# Include API routers
app.include_router(auth_router, prefix="/api/v1")
app.include_router(escrow_router, prefix="/api/v1")
app.include_router(fees_router, prefix="/api/v1")
app.include_router(ws_router)


@app.on_event("startup")
async def on_startup() -> None:
    if settings.idempotency_sweep_enabled:
        sweeper = IdempotencySweeper()
        await sweeper.start()
        app.state.idempotency_sweeper = sweeper
    else:
        app.state.idempotency_sweeper = None
    logger.info("%s started (environment=%s)", settings.app_name, settings.environment)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    sweeper: IdempotencySweeper | None = getattr(app.state, "idempotency_sweeper", None)
    if sweeper:
        await sweeper.stop()
    await close_escrow_gateway()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": "Showpls API",
        "version": settings.app_version,
        "description": "Trust layer for the Showpls capture marketplace",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("showpls.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
