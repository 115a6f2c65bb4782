import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text

from credgate.dependencies import ServiceContainer, get_container

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def liveness():
    """Liveness probe: Service is running."""
    return {"status": "ok", "checks": {"api": "ok"}}


@router.get("/health/ready")
async def readiness(container: ServiceContainer = Depends(get_container)):
    """Readiness probe: master key loaded, configured stores reachable."""
    health = {"status": "ok", "checks": {"master_key": "ok" if container.keyring.loaded else "failed"}}
    if not container.keyring.loaded:
        health["status"] = "failed"

    timeout = container.settings.STORE_TIMEOUT_SECONDS

    if container.engine is not None:
        try:
            await asyncio.wait_for(asyncio.to_thread(_ping_db, container.engine), timeout)
            health["checks"]["postgres"] = "ok"
        except Exception as e:
            logger.error(f"Health check failed (postgres): {e}")
            health["checks"]["postgres"] = "failed"
            health["status"] = "failed"

    if container.redis is not None:
        try:
            await asyncio.wait_for(container.redis.ping(), timeout)
            health["checks"]["redis"] = "ok"
        except Exception as e:
            logger.error(f"Health check failed (redis): {e}")
            health["checks"]["redis"] = "failed"
            health["status"] = "failed"

    if health["status"] == "failed":
        raise HTTPException(status_code=503, detail=health)
    return health


def _ping_db(engine) -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
