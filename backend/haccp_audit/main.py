from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from contextlib import asynccontextmanager
from pathlib import Path

from haccp_audit.core.config import settings
from haccp_audit.core.database import init_db, close_db
from haccp_audit.core.exceptions import (
    AuditServiceError,
    AuthenticationError,
    DocumentStoreError,
    PartialCompletionError,
    RenderError,
    RenderTimeoutError,
    ResourceNotFoundError,
    StorageError,
    StorageTimeoutError,
    ValidationError,
    VersionConflictError,
    error_response,
)
from haccp_audit.core.logging_config import logger
from haccp_audit.core.middleware import RequestLoggingMiddleware, RequestSizeLimitMiddleware
from haccp_audit.api.v1.router import api_router


# Most specific classes first
ERROR_STATUS_CODES = (
    (PartialCompletionError, 207),
    (ResourceNotFoundError, 404),
    (ValidationError, 422),
    (VersionConflictError, 409),
    (RenderTimeoutError, 504),
    (RenderError, 500),
    (StorageTimeoutError, 504),
    (DocumentStoreError, 503),
    (StorageError, 502),
    (AuthenticationError, 401),
)


def status_code_for(error: AuditServiceError) -> int:
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_class):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    logger.info("=" * 60)
    logger.info(f"Starting {settings.APP_NAME}...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"API Version: {settings.API_VERSION}")
    logger.info(f"Storage mode: {settings.STORAGE_MODE}")
    logger.info("=" * 60)

    await init_db()
    logger.info("Database tables ready")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")
    await close_db()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Restaurant food-safety (HACCP) audit templates, versioned forms and PDF reports",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    redirect_slashes=False  # Prevent 307 redirects that break CORS
)

# Add middleware (order matters - last added runs first)
# 1. Request logging (runs first for all requests)
app.add_middleware(RequestLoggingMiddleware)

# 2. Request size limit (inline evidence images make bodies large)
app.add_middleware(RequestSizeLimitMiddleware, max_size=settings.MAX_REQUEST_SIZE)

# 3. CORS - Origins from CORS_ORIGINS_STR in .env
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Response-Time"],
)


# Exception handlers
@app.exception_handler(AuditServiceError)
async def audit_service_exception_handler(request: Request, exc: AuditServiceError):
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.log_error_with_context(exc, context=f"{request.method} {request.url.path}", error_code=exc.code)
    else:
        logger.warning(f"{exc.code}: {exc.message}")
    return JSONResponse(status_code=status_code, content=error_response(exc))


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg", ""),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": {"errors": errors},
            },
        }
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": "INTERNAL_ERROR",
                "message": str(exc) if settings.DEBUG else "An error occurred",
                "details": {},
            },
        }
    )


# Local-mode PDFs and evidence images
if settings.STORAGE_MODE.lower() == "local":
    app.mount(
        settings.MEDIA_URL_PATH,
        StaticFiles(directory=Path(settings.LOCAL_STORAGE_PATH), check_dir=False),
        name="media",
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "app_name": settings.APP_NAME,
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint"""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }


# Include API router
app.include_router(api_router, prefix=f"/api/{settings.API_VERSION}")


def run():
    import uvicorn
    uvicorn.run(
        "haccp_audit.main:app",
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        reload=settings.DEBUG
    )


if __name__ == "__main__":
    run()
