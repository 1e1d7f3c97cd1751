# routers/health.py — Dependency health report
import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from cache import Cache, get_cache
from database import get_db_session
from oidc import IdentityGateway, get_identity_gateway

logger = logging.getLogger("kanban.health")

router = APIRouter(prefix="/api/health", tags=["Health"])


async def _timed(name: str, check) -> dict:
    """Run one dependency check, reporting status and elapsed milliseconds"""
    start = time.perf_counter()
    try:
        ok = await check()
    except Exception as e:
        logger.warning(f"Health check for {name} failed: {e}")
        ok = False
    elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
    return {"status": "healthy" if ok else "unhealthy", "response_time_ms": elapsed_ms}


@router.get("")
async def health_check(
    db: AsyncSession = Depends(get_db_session),
    cache: Cache = Depends(get_cache),
    identity: IdentityGateway = Depends(get_identity_gateway),
):
    """Database, cache and identity provider status; unhealthy if any is down"""

    async def check_db():
        await db.execute(text("SELECT 1"))
        return True

    services = {
        "postgresql": await _timed("postgresql", check_db),
        "redis": await _timed("redis", cache.ping),
        "identity_provider": await _timed("identity_provider", identity.check_reachable),
    }
    healthy = all(s["status"] == "healthy" for s in services.values())
    return {
        "status": "healthy" if healthy else "unhealthy",
        "services": services,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
