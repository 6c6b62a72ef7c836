from contextlib import asynccontextmanager
from typing import Optional
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog
import uvicorn

from compass_agent.application.api.rate_limit import RateLimiter
from compass_agent.application.api.route.chat import router as chat_router
from compass_agent.application.container import AgentContainer, build_container
from compass_agent.domain.errors import CompassError
from compass_agent.infrastructure.config.settings import Settings, get_settings
from compass_agent.infrastructure.observability.logging import metrics, setup_logging

logger = structlog.get_logger(__name__)


def create_app(container: Optional[AgentContainer] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the HTTP app; without a container one is built from settings at startup"""

    settings = settings or (container.settings if container else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.container is None
        if owned:
            app.state.container = await build_container(settings)
        logger.info("Agent API server started", environment=settings.ENVIRONMENT)
        try:
            yield
        finally:
            if owned:
                await app.state.container.aclose()
            logger.info("Agent API server shutdown", metrics=metrics.get_metrics_summary())

    app = FastAPI(
        title="LifeCompass Agent",
        description="Persona-aware conversational assistant for an insurance CRM",
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.container = container
    app.state.rate_limiter = RateLimiter(settings.RATE_LIMIT_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
    )

    @app.middleware("http")
    async def bind_trace_context(request: Request, call_next):
        trace_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(trace_id=trace_id)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("trace_id")
        response.headers["X-Request-ID"] = trace_id
        return response

    @app.exception_handler(CompassError)
    async def compass_error_handler(request: Request, exc: CompassError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "request_failed",
            path=request.url.path,
            error_code=exc.code,
            status_code=exc.status_code,
            detail=exc.message,
            **exc.context
        )
        metrics.increment_counter(f"http.error.{exc.code}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_response(), headers=exc.headers or None)

    @app.get("/health")
    async def health_check() -> JSONResponse:
        """Health check endpoint."""
        return JSONResponse(
            content={"status": "ok", "service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION},
            status_code=200,
        )

    app.include_router(chat_router)
    return app


def main() -> None:
    settings = get_settings()
    setup_logging(
        log_level=settings.LOG_LEVEL,
        log_format=settings.LOG_FORMAT,
        service_name=settings.SERVICE_NAME,
        environment=settings.ENVIRONMENT,
        version=settings.SERVICE_VERSION,
    )
    uvicorn.run(create_app(settings=settings), host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    main()
