import json
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from plurr.core.config import settings
from plurr.core.database import create_db_and_tables
from plurr.core.exceptions import PlurrError
from plurr.middleware.auth import auth_middleware
from plurr.routers import images, lobbies, reports, users
from plurr.utils.blob_store import S3BlobStore, build_blob_store
from plurr.utils.image_transform import build_image_transformer


"""
FastAPI application with modular structure.
Separates app creation from runtime configuration.
"""


# Configure logging
def setup_logging():
    """Configure structured logging for the application."""
    log_level = logging.DEBUG if settings.DEBUG else logging.INFO

    # JSON formatter for structured logging
    class JSONFormatter(logging.Formatter):
        def format(self, record):
            log_entry = {
                'timestamp': self.formatTime(record, self.datefmt),
                'level': record.levelname,
                'logger': record.name,
                'message': record.getMessage(),
                'module': record.module,
                'function': record.funcName,
                'line': record.lineno
            }
            if record.exc_info:
                log_entry['exception'] = self.formatException(record.exc_info)
            return json.dumps(log_entry, ensure_ascii=False)

    # Setup root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove default handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Add our handler
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    return logging.getLogger(__name__)


# Initialize logger
logger = setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Application startup...")
    if getattr(app.state, "blob_store", None) is None:
        app.state.blob_store = build_blob_store(settings)
    if getattr(app.state, "image_transformer", None) is None:
        app.state.image_transformer = build_image_transformer(settings)

    if settings.FAST_TEST_MODE:
        logger.info("FAST_TEST_MODE enabled: skipping DB create and S3 bucket checks.")
    else:
        logger.info("Creating database tables if they don't exist...")
        await create_db_and_tables()
        logger.info("Database tables checked/created.")

        if isinstance(app.state.blob_store, S3BlobStore):
            logger.info(f"Checking/Creating S3 bucket: {settings.S3_BUCKET}")
            if not app.state.blob_store.ensure_bucket_exists():
                logger.error(f"FATAL: Could not ensure S3 bucket '{settings.S3_BUCKET}' exists. Uploads/Downloads will fail.")
            else:
                logger.info(f"S3 bucket '{settings.S3_BUCKET}' is ready.")
    logger.info("Application startup complete.")
    yield
    logger.info("Application shutdown...")
    logger.info("Application shutdown complete.")


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(PlurrError)
    async def plurr_exception_handler(request: Request, exc: PlurrError):
        if exc.status_code >= 500:
            logger.error(f"{exc.code}: {exc.message}", extra={
                'request_path': request.url.path,
                'request_method': request.method
            })
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Request validation errors are reported as plain bad input
    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(part) for part in error.get("loc", ())) for error in exc.errors()]
        logger.info(f"RequestValidationError on {request.method} {request.url.path}: {fields}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "Invalid input", "code": "INVALID_INPUT", "details": {"fields": fields}},
        )

    # Global exception handler for Pydantic ValidationError
    @app.exception_handler(ValidationError)
    async def validation_exception_handler(request: Request, exc: ValidationError):
        logger.error(f"ValidationError: {str(exc)}", extra={
            'request_path': request.url.path,
            'request_method': request.method
        })
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "Invalid input", "code": "INVALID_INPUT"},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error", "code": "INTERNAL_ERROR"},
        )


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.
    App factory pattern for clean separation of concerns.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        lifespan=lifespan
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["etag", "content-range", "last-modified"],
    )

    # Add authentication middleware
    app.middleware("http")(auth_middleware)

    register_exception_handlers(app)

    app.include_router(images.router)
    app.include_router(lobbies.router)
    app.include_router(users.router)
    app.include_router(reports.router)

    return app


# Create the app instance
app = create_app()
