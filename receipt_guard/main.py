"""
Main Application - FastAPI application setup.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest

from receipt_guard.api.routes import router
from receipt_guard.config import settings
from receipt_guard.db.session import close_engines, get_engine
from receipt_guard.exceptions import ReceiptGuardError
from receipt_guard.models.api import ErrorResponse
from receipt_guard.observability import get_logger, log_context, metrics, setup_logging, setup_tracing
from receipt_guard.observability.tracing import instrument_fastapi, instrument_sqlalchemy
from receipt_guard.services.validators import build_validators

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Builds the store validators once; missing store credentials abort startup.
    """
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
    )

    app.state.validators = build_validators(settings)
    instrument_sqlalchemy(get_engine("write"))

    yield

    logger.info("application_shutting_down")
    await close_engines()
    logger.info("database_engines_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


@app.exception_handler(ReceiptGuardError)
async def receipt_guard_exception_handler(request: Request, exc: ReceiptGuardError) -> JSONResponse:
    """Render domain errors as {"error": code, "message": ...}."""
    if exc.status_code >= 500:
        logger.error(
            "request_error",
            path=request.url.path,
            error_type=type(exc).__name__,
            error=str(exc),
        )
    else:
        logger.warning(
            "request_rejected",
            path=request.url.path,
            error_type=type(exc).__name__,
            code=exc.code,
        )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.code, message=str(exc)).model_dump(),  # type: ignore[arg-type]
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed or incomplete request bodies are invalid-argument (400)."""
    errors = exc.errors()
    fields = [".".join(str(part) for part in error.get("loc", ())[1:]) for error in errors]

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        fields=fields,
        errors=[error.get("msg") for error in errors],
    )
    message = "; ".join(
        f"{field or 'body'}: {error.get('msg')}" for field, error in zip(fields, errors)
    )
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(error="invalid-argument", message=message).model_dump(),
    )


# Setup tracing
setup_tracing()
instrument_fastapi(app)


# Request logging middleware
@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")
    endpoint = request.url.path
    method = request.method

    with log_context(request_id=request_id):
        logger.info("request_started", method=method, path=endpoint)
        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            metrics.record_http_request(endpoint, method, 500, duration)
            metrics.record_error(type(e).__name__, "http_request")
            logger.error(
                "request_failed",
                method=method,
                path=endpoint,
                error=str(e),
                duration_seconds=duration,
                exc_info=True,
            )
            raise

        duration = time.time() - start_time
        metrics.record_http_request(endpoint, method, response.status_code, duration)
        logger.info(
            "request_completed",
            method=method,
            path=endpoint,
            status_code=response.status_code,
            duration_seconds=duration,
        )
        return response


app.include_router(router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


if settings.metrics_enabled:

    @app.get("/metrics")
    async def metrics_endpoint() -> Response:
        """Prometheus metrics in text exposition format."""
        return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "receipt_guard.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
