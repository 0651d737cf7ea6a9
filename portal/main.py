from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import JSONResponse
import logging
import os
import time
import uuid
from typing import Callable
from redis.asyncio import Redis
from sqlalchemy import text

from portal.db.session import engine, SessionLocal
from portal.db.init_db import init_db
from portal.routers import assignments, groups, notifications, submissions
from portal.core.config.settings import get_settings
from portal.core.config.logging_config import request_id_var, setup_logging
from portal.core.errors import ErrorCode, PortalError

# Setup logging
logger = setup_logging()
error_logger = logging.getLogger("portal.errors")

# Create necessary directories
os.makedirs(get_settings().UPLOAD_DIR, exist_ok=True)

# Initialize FastAPI app
app = FastAPI(
    title=get_settings().PROJECT_NAME,
    debug=get_settings().DEBUG,
    openapi_url=f"{get_settings().API_V1_PREFIX}/openapi.json",
    docs_url=f"{get_settings().API_V1_PREFIX}/docs",
    redoc_url=f"{get_settings().API_V1_PREFIX}/redoc",
)

# Redis connection instance
redis = None

@app.on_event("startup")
async def startup_event():
    global redis
    # Initialize Redis if URL is configured
    if get_settings().REDIS_URL:
        try:
            redis = Redis.from_url(
                get_settings().REDIS_URL,
                encoding="utf-8",
                decode_responses=True
            )
            await redis.ping()
            logger.info("Redis connection established")
        except Exception as e:
            redis = None
            logger.error(f"Failed to connect to Redis: {str(e)}")

    # Initialize database
    try:
        init_db(engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")

@app.on_event("shutdown")
async def shutdown_event():
    global redis
    if redis:
        await redis.close()
        logger.info("Redis connection closed")

# Middleware for request logging
@app.middleware("http")
async def log_requests(request: Request, call_next: Callable):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id
    token = request_id_var.set(request_id)
    try:
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time
        response.headers["X-Request-ID"] = request_id
        logger.info(
            f"Method: {request.method} Path: {request.url.path} "
            f"Status: {response.status_code} Duration: {duration:.2f}s"
        )
        return response
    finally:
        request_id_var.reset(token)

# Rate limiting middleware
@app.middleware("http")
async def rate_limit(request: Request, call_next: Callable):
    if redis and request.client:
        client_ip = request.client.host
        key = f"rate_limit:{client_ip}"
        requests = await redis.incr(key)

        if requests == 1:
            await redis.expire(key, 60)  # Reset after 60 seconds

        if requests > get_settings().RATE_LIMIT_PER_MINUTE:
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"message": "Too many requests", "success": False, "error": "RATE_LIMITED"}
            )

    return await call_next(request)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount uploaded attachments
app.mount("/uploads", StaticFiles(directory=get_settings().UPLOAD_DIR), name="uploads")

# Include routers with prefix
api_prefix = get_settings().API_V1_PREFIX
app.include_router(assignments.router, prefix=api_prefix)
app.include_router(groups.router, prefix=api_prefix)
app.include_router(notifications.router, prefix=api_prefix)
app.include_router(submissions.router, prefix=api_prefix)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "-")

# Exception handlers
@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    if exc.status_code >= 500:
        error_logger.error(f"{exc.code.value}: {exc.message}")
    else:
        logger.warning(f"{exc.code.value}: {exc.message} Path: {request.url.path}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = {}
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors[".".join(location) or "request"] = error.get("msg", "Invalid value")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "message": "Please correct the following validation errors:",
            "success": False,
            "error": ErrorCode.VALIDATION_ERROR.value,
            "errors": errors,
        },
    )

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    logger.error(f"HTTP Exception: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail, "success": False, "detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    error_logger.error(f"Unhandled Exception: {str(exc)} RequestID: {_request_id(request)}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "message": "Internal server error",
            "success": False,
            "error": ErrorCode.INTERNAL_SERVER_ERROR.value,
            "request_id": _request_id(request),
        },
    )

# Health check endpoint with additional status info
@app.get(f"{api_prefix}/health")
async def health_check():
    status_info = {
        "status": "healthy",
        "timestamp": time.time(),
        "database": "connected",
        "redis": "connected" if redis else "not configured"
    }

    # Check database connection
    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
    except Exception as e:
        status_info["database"] = "disconnected"
        status_info["status"] = "unhealthy"
        logger.error(f"Database health check failed: {str(e)}")

    # Check Redis connection if configured
    if redis:
        try:
            await redis.ping()
        except Exception as e:
            status_info["redis"] = "disconnected"
            status_info["status"] = "unhealthy"
            logger.error(f"Redis health check failed: {str(e)}")

    return status_info
