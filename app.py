"""
FixIt Hostel API: issue reporting, lost & found and announcements for hostels.
"""
import shutil
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse
from fastapi_mail import ConnectionConfig, FastMail
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from core.errors import AppError, NotFoundError
from core.logger import logger
from database.connection import Database
from database.models import RecordKind
from middleware.auth_middleware import AuthRequiredMiddleware
from middleware.security import (
    RateLimitMiddleware, SecurityHeadersMiddleware,
    setup_cors, setup_trusted_hosts
)
from routers.announcements import announcements_router, notices_router
from routers.auth import router as auth_router
from routers.management import router as management_router
from routers.records import issues_router, lost_found_router
from routers.users import router as users_router
from services.announcement_service import AnnouncementService
from services.change_notifier import ChangeNotifier
from services.credential_store import CredentialStore, LocalCredentialStore, RemoteUserMirror
from services.otp_service import OtpStore, OtpSweeper
from services.record_service import RecordService
from storage.image_store import ImageStore
from storage.s3_client import S3Client


def build_mail() -> "FastMail | None":
    """FastMail for OTP delivery, or None when SMTP is not configured (demo mode)."""
    if not (config.SMTP_USER and config.SMTP_PASSWORD):
        logger.warning("SMTP credentials not set (SMTP_USER/SMTP_PASSWORD). OTPs will be logged instead of emailed.")
        return None
    try:
        mail_conf = ConnectionConfig(
            MAIL_USERNAME=config.SMTP_USER,
            MAIL_PASSWORD=config.SMTP_PASSWORD,
            MAIL_FROM=config.SMTP_FROM_EMAIL or config.SMTP_USER,
            MAIL_FROM_NAME=config.SMTP_FROM_NAME,
            MAIL_PORT=config.SMTP_PORT,
            MAIL_SERVER=config.SMTP_HOST,
            MAIL_STARTTLS=config.SMTP_USE_TLS,
            MAIL_SSL_TLS=config.SMTP_USE_SSL,
            USE_CREDENTIALS=True,
            VALIDATE_CERTS=True,
        )
        logger.info("FastAPI-Mail initialized successfully")
        return FastMail(mail_conf)
    except Exception as e:
        logger.error(f"Failed to initialize FastAPI-Mail: {e}", exc_info=True)
        return None


def build_s3_client():
    if not config.USE_S3:
        logger.info("S3 storage disabled - images are stored locally")
        return None
    try:
        client = S3Client(
            bucket_name=config.S3_BUCKET_NAME,
            aws_access_key_id=config.S3_ACCESS_KEY_ID,
            aws_secret_access_key=config.S3_SECRET_ACCESS_KEY,
            region_name=config.S3_REGION,
            endpoint_url=config.S3_ENDPOINT_URL,
            public_base_url=config.S3_PUBLIC_BASE_URL,
            auto_create_bucket=True,
        )
        logger.info(f"S3 client initialized (bucket: {config.S3_BUCKET_NAME})")
        return client
    except Exception as e:
        logger.error(f"Failed to initialize S3 client: {e}", exc_info=True)
        logger.warning("Continuing without S3 - images will be stored locally")
        return None


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan events for FastAPI app.
    Initialize database, storage, credential stores and the change notifier.
    """
    logger.info("=" * 60)
    logger.info(f"Starting {config.APP_NAME}...")
    logger.info("=" * 60)

    # Initialize database
    try:
        config.db = Database(
            database_url=config.DATABASE_URL,
            pool_size=config.DB_POOL_SIZE,
            max_overflow=config.DB_MAX_OVERFLOW
        )
        config.db.create_tables()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}", exc_info=True)
        raise

    config.s3_client = build_s3_client()
    config.UPLOADS_DIR.mkdir(parents=True, exist_ok=True)
    app.state.image_store = ImageStore(
        uploads_dir=config.UPLOADS_DIR,
        public_base_url=config.PUBLIC_BASE_URL,
        s3_client=config.s3_client,
        max_size_bytes=config.MAX_IMAGE_SIZE_MB * 1024 * 1024,
        allowed_extensions=config.ALLOWED_IMAGE_EXTENSIONS,
    )
    app.state.mail = build_mail()

    app.state.credentials = CredentialStore(
        local=LocalCredentialStore(config.USERS_DB_FILE),
        mirror=RemoteUserMirror(config.db),
    )
    logger.info(f"Credential store: {config.USERS_DB_FILE}")

    app.state.otp_store = OtpStore(ttl_seconds=config.OTP_TTL_SECONDS)
    sweeper = OtpSweeper(app.state.otp_store, config.OTP_SWEEP_INTERVAL_SECONDS)
    sweeper.start()

    notifier = ChangeNotifier(queue_size=config.CHANGE_STREAM_QUEUE_SIZE)
    for kind in RecordKind:
        notifier.register(kind.value, RecordService.snapshot_loader(config.db, kind))
    notifier.register("announcements", AnnouncementService.snapshot_loader(config.db))
    app.state.notifier = notifier

    logger.info("=" * 60)
    logger.info("Server ready!")
    logger.info(f"Environment: {config.ENVIRONMENT}")
    logger.info(f"Image storage: {app.state.image_store.backend}")
    logger.info("=" * 60)

    yield

    # Cleanup on shutdown
    logger.info("Shutting down...")
    await sweeper.stop()
    await notifier.aclose()
    if config.db:
        config.db.engine.dispose()
        logger.info("Database connections closed")


# Initialize FastAPI app
app = FastAPI(
    title=config.APP_NAME,
    description="Hostel facility management: issues, lost & found and announcements",
    version=config.APP_VERSION,
    lifespan=lifespan
)

# Setup security middleware
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    RateLimitMiddleware,
    requests_per_minute=config.RATE_LIMIT_PER_MINUTE,
    requests_per_hour=config.RATE_LIMIT_PER_HOUR,
    exempt_paths=["/uploads/", "/health"],
)
app.add_middleware(AuthRequiredMiddleware)
setup_cors(app, config.CORS_ORIGINS)
if config.ENVIRONMENT == "production":
    setup_trusted_hosts(app, config.TRUSTED_HOSTS)

# Include routers
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(issues_router)
app.include_router(lost_found_router)
app.include_router(announcements_router)
app.include_router(notices_router)
app.include_router(management_router)


# ============================================================================
# Error responses: {"success": false, "message": ...}
# ============================================================================

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        err = errors[0]
        field = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path"))
        message = f"{field}: {err.get('msg')}" if field else err.get("msg", message)
    return JSONResponse(status_code=400, content={"success": False, "message": message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": str(exc) if config.DEBUG else "Internal server error"},
    )


@app.get("/")
async def root():
    """Root endpoint with API information. Public endpoint."""
    return {
        "message": config.APP_NAME,
        "version": config.APP_VERSION,
        "environment": config.ENVIRONMENT,
        "endpoints": {
            "auth": "/api/auth",
            "issues": "/api/issues",
            "lost_found": "/api/lost-found",
            "announcements": "/api/announcements",
        },
        "docs": "/docs",
        "s3_enabled": config.USE_S3 and config.s3_client is not None,
    }


@app.get("/uploads/{file_path:path}")
async def serve_upload(file_path: str, request: Request):
    """Locally stored images. Public endpoint."""
    path = request.app.state.image_store.local_file(file_path)
    if path is None or not path.is_file():
        raise NotFoundError("File not found")
    return FileResponse(path)


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint for monitoring. Public endpoint."""
    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "checks": {}
    }

    # Check database
    try:
        if config.db is None:
            health_status["checks"]["database"] = {"status": "error", "error": "not initialized"}
            health_status["status"] = "degraded"
        else:
            with config.db.get_session() as db:
                db.execute(text("SELECT 1"))
            health_status["checks"]["database"] = {"status": "ok"}
    except Exception as e:
        health_status["checks"]["database"] = {"status": "error", "error": str(e)}
        health_status["status"] = "degraded"

    # Check S3
    if config.s3_client:
        try:
            config.s3_client.s3_client.head_bucket(Bucket=config.s3_client.bucket_name)
            health_status["checks"]["s3"] = {"status": "ok", "bucket": config.s3_client.bucket_name}
        except Exception as e:
            health_status["checks"]["s3"] = {"status": "error", "error": str(e)}
            health_status["status"] = "degraded"
    else:
        health_status["checks"]["s3"] = {"status": "disabled", "message": "Images are stored locally"}

    health_status["checks"]["email"] = {
        "status": "ok" if getattr(request.app.state, "mail", None) else "demo",
    }
    otp_store = getattr(request.app.state, "otp_store", None)
    health_status["checks"]["otp"] = {"pending": len(otp_store) if otp_store is not None else 0}

    # Check disk space
    try:
        disk_usage = shutil.disk_usage(config.UPLOADS_DIR)
        free_gb = disk_usage.free / (1024 ** 3)
        health_status["checks"]["disk"] = {
            "free_gb": round(free_gb, 2),
            "percent_free": round((disk_usage.free / disk_usage.total) * 100, 2)
        }
        if free_gb < 1:
            health_status["status"] = "degraded"
    except Exception as e:
        health_status["checks"]["disk"] = {"error": str(e)}

    return health_status


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
