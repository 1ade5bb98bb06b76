"""
FastAPI application for the reportwatch incident and risk API.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from reportwatch import __version__
from reportwatch.exceptions import RateLimitExceededError, ReportWatchError
from reportwatch.routes import register_routes
from reportwatch.services.settings import LOG_FORMAT, get_settings_service

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    from reportwatch.database import get_pool, close_pool
    await get_pool()

    yield

    await close_pool()


def create_app() -> FastAPI:
    settings = get_settings_service()
    configure_logging(settings.server.log_level)

    app = FastAPI(
        title="ReportWatch API",
        description="Anonymous incident reporting with explainable risk indicators",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    )

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_handler(request: Request, exc: RateLimitExceededError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "detail": exc.detail, **exc.detail},
            headers=exc.status.headers(),
        )

    @app.exception_handler(ReportWatchError)
    async def reportwatch_error_handler(request: Request, exc: ReportWatchError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "detail": exc.detail},
        )

    @app.get("/health")
    async def health():
        from reportwatch.database import check_connection
        db_ok = await check_connection()
        return JSONResponse(
            status_code=200 if db_ok else 503,
            content={"status": "ok" if db_ok else "degraded", "database": db_ok, "version": __version__},
        )

    register_routes(app)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
