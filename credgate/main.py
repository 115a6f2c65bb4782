"""Credgate - Main Application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from credgate.api.keys import router as keys_router
from credgate.api.public import router as public_router
from credgate.dependencies import get_container
from credgate.errors import ConfigurationError
from credgate.logging_hardening import setup_logging_redaction
from credgate.routers import health

logger = logging.getLogger(__name__)

# Initialize logging redaction filters early
setup_logging_redaction()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: refuse to serve without a usable master key and valid settings
    try:
        container = get_container()
        setup_logging_redaction(container.settings.API_KEY_PREFIX)
        container.keyring.cipher()
        if container.engine is not None:
            from credgate.adapters.postgres.session import init_db
            init_db(container.engine)
    except ConfigurationError as e:
        logger.critical(f"CRITICAL STARTUP ERROR: {e}")
        raise

    logger.info(f"Credgate started (mode={container.settings.MODE})")
    yield

    logger.info("Initiating graceful shutdown...")
    await container.aclose()
    logger.info("Shutdown complete.")


app = FastAPI(
    title="Credgate",
    description="API key issuance, quota enforcement and agent wallet custody",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(HTTPException)
async def credgate_http_exception_handler(request: Request, exc: HTTPException):
    # Standardized errors keep a top-level 'error' key
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "INTERNAL_ERROR", "message": "Internal error"}},
    )


app.include_router(keys_router.router, prefix="/v1/keys", tags=["Keys"])
app.include_router(public_router.router, prefix="/v1", tags=["Public"])
app.include_router(health.router, tags=["Health"])
