from __future__ import annotations

from contextlib import asynccontextmanager
from time import perf_counter
from typing import AsyncIterator, Awaitable, Callable, Optional
from uuid import uuid4

from fastapi import FastAPI, Request, Response

from handoff.config import DEFAULT_SUBSCRIBER_NAME, get_settings
from handoff.logger import configure_logging, get_logger
from handoff.metrics import observe_http_request
from handoff.routes import events, pages, system, upload_tokens

settings = get_settings()
configure_logging(settings.log_level, settings.log_file)
logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "app.startup",
        "Starting app",
        env=settings.app_env,
        version=settings.app_version,
        token_ttl_seconds=settings.upload_token_ttl_seconds,
        display_margin_seconds=settings.upload_display_margin_seconds,
    )
    if settings.subscriber_name == DEFAULT_SUBSCRIBER_NAME:
        logger.warning(
            "config.defaults",
            "SUBSCRIBER_NAME is using the default label; set it per deployment",
        )
    yield
    logger.info("app.shutdown", "Shutting down app")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    if isinstance(path, str):
        return path
    return "unmatched"


@app.middleware("http")
async def request_logging(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    request_id = request.headers.get("x-request-id") or str(uuid4())
    client: Optional[str] = None
    if request.client:
        client = request.client.host

    start = perf_counter()
    with logger.context(request_id=request_id):
        # Raw paths carry token hashes; log the route template instead.
        logger.info("request.start", "Started", method=request.method, client=client)
        try:
            response = await call_next(request)
        except Exception as exc:
            duration = perf_counter() - start
            logger.exception(
                "request.error",
                "Failed",
                method=request.method,
                route=_route_label(request),
                duration_ms=round(duration * 1000, 1),
                error_type=type(exc).__name__,
            )
            observe_http_request(
                method=request.method,
                route=_route_label(request),
                status=500,
                duration_seconds=duration,
            )
            raise

        duration = perf_counter() - start
        route = _route_label(request)
        logger.info(
            "request.complete",
            "Completed",
            method=request.method,
            route=route,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 1),
        )
        observe_http_request(
            method=request.method,
            route=route,
            status=response.status_code,
            duration_seconds=duration,
        )

    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(system.router)
app.include_router(upload_tokens.router)
app.include_router(events.router)
app.include_router(pages.router)
