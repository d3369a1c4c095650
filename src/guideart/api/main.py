"""FastAPI application for the guideart poster proxy."""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from starlette.middleware.base import RequestResponseEndpoint
from starlette.responses import Response

from guideart import __version__
from guideart.api.exception_handlers import register_exception_handlers
from guideart.api.middleware import RequestIdMiddleware
from guideart.api.routers import admin, health, proxy
from guideart.container import Container, container

logger = logging.getLogger(__name__)


async def _periodic_eviction(app_container: Container, interval_hours: int) -> None:
    """Run stale-poster eviction every ``interval_hours`` until cancelled."""
    interval = interval_hours * 3600
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await asyncio.to_thread(
                app_container.evictor.purge,
                app_container.settings.image_dir,
                app_container.settings.image_cache_ttl_days,
            )
            logger.info("Periodic eviction removed %d stale posters", removed)
        except Exception:
            logger.exception("Periodic eviction failed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Prepare the cache on startup; stop background work on shutdown."""
    # Startup (a cache directory that cannot be created is fatal)
    container.startup()

    eviction_task: asyncio.Task[None] | None = None
    interval_hours = container.settings.eviction_interval_hours
    if interval_hours > 0 and container.settings.image_cache_ttl_days > 0:
        eviction_task = asyncio.create_task(_periodic_eviction(container, interval_hours))

    yield

    # Shutdown
    if eviction_task is not None:
        eviction_task.cancel()
        with suppress(asyncio.CancelledError):
            await eviction_task
    await container.shutdown()


app = FastAPI(
    title="guideart",
    description="Schedules Direct poster proxy with an on-disk image cache",
    version=__version__,
    lifespan=lifespan,
)

register_exception_handlers(app)


def _get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxied requests."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


@app.middleware("http")
async def log_requests(
    request: Request, call_next: RequestResponseEndpoint
) -> Response:
    """
    Log each request and its response.

    Responses are logged at INFO for 2xx/3xx, WARNING for 4xx and ERROR for
    5xx, with the handling time.
    """
    start_time = time.perf_counter()
    method = request.method
    path = request.url.path

    logger.debug("Request: %s %s from %s", method, path, _get_client_ip(request))

    response = await call_next(request)

    duration = time.perf_counter() - start_time
    status_code = response.status_code
    if status_code >= 500:
        log_level = logging.ERROR
    elif status_code >= 400:
        log_level = logging.WARNING
    else:
        log_level = logging.INFO

    logger.log(
        log_level,
        "Response: %s %s - %d %s (%.3fs)",
        method,
        path,
        status_code,
        response.headers.get("X-Cache", "-"),
        duration,
    )
    return response


# Registered after the logging middleware so it runs first
app.add_middleware(RequestIdMiddleware)

app.include_router(proxy.router)
app.include_router(admin.router)
app.include_router(health.router, tags=["health"])
