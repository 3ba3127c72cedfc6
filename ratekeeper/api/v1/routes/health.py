from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ratekeeper.core.db import get_db_session
from ratekeeper.core.rate_limit import InMemoryRateLimiter, RateLimitRule
from ratekeeper.infra.cache.base import CounterCache, NullCounterCache

router = APIRouter()


def _client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.get("/health")
async def health(request: Request):
    limiter: InMemoryRateLimiter = request.app.state.health_limiter
    rule: RateLimitRule = request.app.state.health_rule
    if not await limiter.allow(_client_address(request), rule):
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"error": "Too many health check requests"},
        )

    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "service": request.app.state.settings.service_name,
    }


@router.get("/health/db")
async def db_health(session: AsyncSession = Depends(get_db_session)):
    try:
        await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"db": "unavailable"},
        )
    return {"db": "ok"}


@router.get("/health/cache")
async def cache_health(request: Request) -> dict[str, Any]:
    cache: CounterCache = getattr(request.app.state, "counter_cache", None) or NullCounterCache()
    if not cache.enabled:
        return {"cache": "disabled", "stats": None}

    stats = await cache.stats()
    return {"cache": "ok" if stats is not None else "unavailable", "stats": stats}
