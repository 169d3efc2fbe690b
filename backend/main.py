from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text
from contextlib import asynccontextmanager
import asyncio
import logging
from api import verification, admin, offers, session
from middleware.security import (
    SecurityHeadersMiddleware,
    RateLimitMiddleware,
    SecurityLoggingMiddleware
)
from services.db import SessionLocal
from services.email import build_email_sender
from services.security import security_config, SecurityUtils
from services.verification import purge_verification_codes

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build process-wide collaborators and run the verification purge task."""
    app.state.email_sender = build_email_sender(security_config)
    purge_task = asyncio.create_task(
        purge_verification_codes(SessionLocal, security_config.purge_interval_seconds)
    )

    logger.info("Starting CHEATPLACE-STUDIO verification API")
    logger.info(f"  - Email sender: {type(app.state.email_sender).__name__}")
    logger.info(f"  - Code length: {security_config.verification_code_length} digits")
    logger.info(f"  - Code expiry: {security_config.verification_code_expiry_minutes} minutes")
    logger.info(
        f"  - Rate limit: {security_config.verification_rate_limit_max_attempts} per "
        f"{security_config.verification_rate_limit_window_minutes} minutes "
        f"(fail {'open' if security_config.rate_limit_fail_open else 'closed'})"
    )

    yield

    purge_task.cancel()
    try:
        await purge_task
    except asyncio.CancelledError:
        logger.info("Verification purge task stopped")

    logger.info("CHEATPLACE-STUDIO verification API shutdown complete")

app = FastAPI(
    title="CHEATPLACE-STUDIO API",
    description="Email verification codes and admin operations for the CHEATPLACE-STUDIO marketplace",
    version="1.0.0",
    lifespan=lifespan
)

# Order matters - last added is executed first
app.add_middleware(SecurityLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["OPTIONS", "POST"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

app.include_router(verification.router, tags=["verification"])
app.include_router(admin.router, tags=["admin"])
app.include_router(offers.router, tags=["offers"])
app.include_router(session.router, tags=["session"])

@app.get("/")
def root():
    return {
        "message": "CHEATPLACE-STUDIO API",
        "version": "1.0.0",
        "docs": "/docs",
        "status": "operational"
    }

@app.get("/health")
def health_check():
    """Health check endpoint for load balancers and monitoring."""
    return {
        "status": "healthy",
        "timestamp": SecurityUtils.get_utc_now().isoformat(),
        "version": "1.0.0"
    }

@app.get("/health/ready")
async def readiness_check():
    """Readiness check: the store must answer."""
    try:
        async with SessionLocal() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "timestamp": SecurityUtils.get_utc_now().isoformat(),
                "error": "Database connection failed"
            }
        )

    return {
        "status": "ready",
        "timestamp": SecurityUtils.get_utc_now().isoformat(),
        "checks": {"database": "healthy"}
    }

@app.get("/health/live")
def liveness_check():
    return {
        "status": "alive",
        "timestamp": SecurityUtils.get_utc_now().isoformat()
    }

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies on FastAPI-parsed routes are client errors."""
    SecurityUtils.log_security_event(
        "request_validation_error",
        {
            "path": request.url.path,
            "method": request.method,
            "errors": [error.get("loc") for error in exc.errors()]
        },
        client_ip=SecurityUtils.get_client_ip(request)
    )

    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request format"}
    )

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP exceptions as {"error": ...}."""
    if exc.status_code in [400, 401, 403, 404, 429]:
        SecurityUtils.log_security_event(
            "http_exception",
            {
                "status_code": exc.status_code,
                "path": request.url.path,
                "method": request.method
            },
            client_ip=SecurityUtils.get_client_ip(request)
        )

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail if hasattr(exc, 'detail') else "Request failed"},
        headers=getattr(exc, "headers", None)
    )

@app.exception_handler(Exception)
async def internal_server_error_handler(request: Request, exc: Exception):
    """Unhandled errors: log the detail, return a generic body."""
    SecurityUtils.log_security_event(
        "internal_server_error",
        {
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__
        },
        client_ip=SecurityUtils.get_client_ip(request)
    )

    logger.error(f"Internal server error: {exc}")

    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )
