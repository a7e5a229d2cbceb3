# sarah_booking/main.py
from __future__ import annotations

# Load .env early so os.getenv works everywhere
from dotenv import load_dotenv
load_dotenv()

import secrets

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from sarah_booking.core.config import settings
from sarah_booking.core.errors import ErrorSeverity, log_error
from sarah_booking.core.logging import LoggingMiddleware, get_logger, setup_logging
from sarah_booking.db.base import init_db
from sarah_booking.services.booking import FAILED_MESSAGE

# Routers
from sarah_booking.api.routes.tools import router as tools_router
from sarah_booking.api.routes.webhooks import router as webhooks_router

# Set up structured logging
setup_logging(debug=settings.is_development, max_log_length=settings.MAX_LOG_LENGTH, level=settings.LOG_LEVEL)
logger = get_logger(__name__)

SERVICE_NAME = "sarah-booking"

app = FastAPI(title="Sarah Booking", description="Voice-agent booking webhooks for ServiceTitan")

# -------- Global security gate (single place) --------
# Public paths (do NOT require X-API-Key here)
PUBLIC_EXACT = {
    "/",
    "/health",
    "/api/health",
    "/favicon.ico",  # avoid 401 on favicon
}


def _is_public(path: str) -> bool:
    return path in PUBLIC_EXACT


@app.middleware("http")
async def lock_all(request: Request, call_next):
    api_key_required = settings.SARAH_API_KEY
    if not api_key_required or _is_public(request.url.path):
        return await call_next(request)

    api_key = request.headers.get("X-API-Key", "")
    if not secrets.compare_digest(api_key, api_key_required):
        log_error(Exception("API key validation failed"),
                  {"endpoint": request.url.path, "has_key": bool(api_key)},
                  ErrorSeverity.MEDIUM)
        return JSONResponse({"detail": "Invalid or missing API key"}, status_code=401)

    return await call_next(request)


# Registered after the gate so it runs outermost and every request gets a correlation id
app.middleware("http")(LoggingMiddleware(
    log_requests=settings.LOG_REQUESTS,
    slow_threshold=settings.SLOW_REQUEST_THRESHOLD,
))


# -------- Backstop: the voice agent only understands conversational replies --------
@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception):
    log_error(exc, {"endpoint": request.url.path}, ErrorSeverity.HIGH)
    return JSONResponse({"result": FAILED_MESSAGE, "success": False, "status": "error"}, status_code=200)


# -------- Health (public) --------
def _health() -> dict:
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "tenant": "configured" if settings.tenant_configured else "missing",
    }


@app.get("/", include_in_schema=False)
async def root():
    return _health()


@app.get("/health", include_in_schema=False)
async def health():
    return _health()


@app.get("/api/health", include_in_schema=False)
async def api_health():
    return _health()


# -------- Include routers --------
app.include_router(tools_router)
app.include_router(webhooks_router)


# -------- Application startup --------
@app.on_event("startup")
async def startup_event():
    """Create the idempotency ledger tables."""
    logger.info("application_startup", env=settings.APP_ENV, tenant_configured=settings.tenant_configured)
    await init_db()
