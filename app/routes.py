import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.gateway_routes import router as gateway_router
from .api.google_routes import router as google_router
from .deps import create_http_client
from .log_sanitizer import sanitize_headers_for_log
from .logging_config import logger
from .settings import settings


async def handle_unexpected_error(request: Request, exc: Exception):
    """
    Global exception handler: log with an error id, return a structured 500.
    """

    error_id = uuid.uuid4().hex
    logger.exception(
        "Unhandled error %s %s (error_id=%s)",
        request.method,
        request.url.path,
        error_id,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error_code": "internal_error",
            "message": "Internal server error, please try again later",
            "error_id": error_id,
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    One pooled httpx client for all upstream calls, closed on shutdown.
    """
    app.state.http_client = create_http_client()
    try:
        yield
    finally:
        await app.state.http_client.aclose()


def _split_csv(value: str) -> list[str]:
    if value.strip() == "*":
        return ["*"]
    return [item.strip() for item in value.split(",") if item.strip()]


def create_app() -> FastAPI:
    app = FastAPI(
        title="Gemini Proxy",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_split_csv(settings.cors_allow_origins),
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=_split_csv(settings.cors_allow_methods),
        allow_headers=_split_csv(settings.cors_allow_headers),
    )

    app.include_router(google_router)
    app.include_router(gateway_router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Request log with credential headers redacted.
        """

        client_host = request.client.host if request.client else "-"
        logger.info(
            "HTTP %s %s from %s, headers=%s",
            request.method,
            request.url.path,
            client_host,
            sanitize_headers_for_log(request.headers),
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            response = await handle_unexpected_error(request, exc)
        logger.info(
            "HTTP %s %s -> %s",
            request.method,
            request.url.path,
            response.status_code,
        )
        return response

    return app
