"""
Main FastAPI application
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import time
import uuid
from prometheus_client import make_asgi_app

from ticket_holds.config import settings
from ticket_holds.core.database import init_db, close_db
from ticket_holds.core.exceptions import HoldEngineError, LockTimeoutError
from ticket_holds.core.logging import setup_logging
from ticket_holds.core.metrics import REQUEST_COUNT, REQUEST_DURATION
from ticket_holds.core.redis import init_redis, close_redis
from ticket_holds.core.scheduler import start_scheduler, stop_scheduler
from ticket_holds.schemas.response import ErrorResponse, ErrorDetail
from ticket_holds.api.v1.api import api_router
from ticket_holds.api.v1.endpoints import health

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

HTTP_ERROR_CODES = {
    400: "bad_request",
    401: "not_authenticated",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}


def error_body(code: str, message: str, details=None) -> dict:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, details=details or {}))
    return body.model_dump(mode="json")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()
    await init_redis()

    if settings.SWEEPER_ENABLED:
        start_scheduler()

    yield

    # Shutdown
    logger.info("Shutting down application")
    stop_scheduler()
    await close_redis()
    await close_db()


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Ticket holds, purchase links and redemptions",
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request tracking middleware
@app.middleware("http")
async def track_requests(request: Request, call_next):
    """
    Track request metrics and add request ID
    """
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start_time

    # Label by route template so ids and codes don't explode cardinality
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    REQUEST_COUNT.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code
    ).inc()
    REQUEST_DURATION.labels(
        method=request.method,
        endpoint=endpoint
    ).observe(duration)

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(duration)
    return response


# Exception handlers
@app.exception_handler(HoldEngineError)
async def hold_engine_error_handler(request: Request, exc: HoldEngineError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}")
    headers = {"Retry-After": "1"} if isinstance(exc, LockTimeoutError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.details),
        headers=headers
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"][1:]) or str(error["loc"][0]),
            "message": error["msg"]
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=error_body("validation_error", "The given data was invalid.", {"errors": errors})
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(HTTP_ERROR_CODES.get(exc.status_code, "http_error"), str(exc.detail)),
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    logger.error(f"Internal server error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=error_body("internal_error", "An internal server error occurred")
    )


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.APP_ENV,
        "api_docs": "/docs" if settings.DEBUG else None
    }


# Include routers
app.include_router(api_router, prefix=settings.API_PREFIX)

# Health endpoints
app.include_router(health.router, prefix="/health", tags=["Health"])

# Mount Prometheus metrics endpoint
if settings.PROMETHEUS_ENABLED:
    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ticket_holds.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
