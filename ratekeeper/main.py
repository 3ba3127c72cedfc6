import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ratekeeper.api.router import api_router
from ratekeeper.core.config import Settings, get_settings
from ratekeeper.core.db import (
    check_connection,
    close_engine,
    get_session_factory,
    init_engine,
    initialize_database,
)
from ratekeeper.core.exception_handlers import register_exception_handlers
from ratekeeper.core.logging import configure_logging
from ratekeeper.core.rate_limit import InMemoryRateLimiter, RateLimitRule
from ratekeeper.infra.cache import build_counter_cache
from ratekeeper.services.decision_engine import DecisionEngine
from ratekeeper.services.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    configure_logging(settings)
    logger.info("Starting %s (env=%s)", settings.service_name, settings.app_env)

    engine = init_engine(settings)
    app.state.db_engine = engine
    try:
        await check_connection(
            engine,
            retries=settings.db_connect_retries,
            delay_seconds=settings.db_connect_retry_delay_seconds,
        )
        await initialize_database(engine, settings)
    except StoreUnavailableError as exc:
        # Decisions fail with 503 until the database comes back.
        logger.warning("Starting without a reachable database: %s", exc)

    cache = build_counter_cache(settings)
    app.state.counter_cache = cache
    app.state.decision_engine = DecisionEngine(
        get_session_factory(),
        cache,
        cache_max_ttl_seconds=settings.cache_max_ttl_seconds,
    )

    yield

    await cache.close()
    await close_engine(engine)
    logger.info("%s stopped", settings.service_name)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    settings.validate_runtime_settings()

    app = FastAPI(
        title="Rate Limit Service",
        version=settings.service_version,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.health_limiter = InMemoryRateLimiter()
    app.state.health_rule = RateLimitRule(
        limit=settings.health_rate_limit,
        window_seconds=settings.health_rate_window_seconds,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/", tags=["meta"])
    async def root() -> dict:
        return {
            "service": settings.service_name,
            "status": "running",
            "version": settings.service_version,
            "endpoints": {"health": "/health", "check": "/check"},
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=get_settings().api_port)
