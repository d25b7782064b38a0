"""
Quote Wizard API - FastAPI backend for the storefront quote & checkout wizard
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.database import dispose_engine
from app.quote_wizard.errors import (
    AuthRequiredError,
    ConsistencyError,
    DraftNotReadyError,
    FieldValidationError,
    QuoteWizardError,
    ServiceNotFoundError,
    TransientIOError,
)
from app.security import setup_security

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

from app.routers import health, quote_wizard


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Quote Wizard API starting up")
    yield
    registry = quote_wizard.wizard_registry
    for session_id in registry.session_ids():
        registry.remove(session_id)
    await dispose_engine()
    logger.info("Quote Wizard API shut down")


# Initialize FastAPI app
app = FastAPI(
    title="Quote Wizard API",
    description="Quote requests and checkout for storefront services",
    version="1.0.0",
    lifespan=lifespan,
)

setup_security(app)

# =============================================================================
# CORS Configuration
# =============================================================================
# Production accepts HTTPS origins only; development defaults to localhost.

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()


def _allowed_origins() -> List[str]:
    if ENVIRONMENT == "production":
        raw = os.getenv("ALLOWED_ORIGINS", "").split(",")
        origins = []
        for origin in raw:
            origin = origin.strip()
            if not origin:
                continue
            if not origin.startswith("https://"):
                logger.warning("[CORS] Rejecting non-HTTPS origin in production: %s", origin)
                continue
            origins.append(origin)
        return origins

    default_origins = "http://localhost:3000,http://localhost:5173"
    raw = os.getenv("ALLOWED_ORIGINS", default_origins).split(",")
    return [origin.strip() for origin in raw if origin.strip()]


ALLOWED_ORIGINS = _allowed_origins()
logger.info("[CORS] Environment: %s, allowed origins: %s", ENVIRONMENT, ALLOWED_ORIGINS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With"],
)


# =============================================================================
# Error envelope
# =============================================================================


def _make_error_response(
    code: str,
    message: str,
    details: Optional[List[dict[str, Any]]] = None,
    status_code: int = 500,
) -> JSONResponse:
    """Build a standard {error: {code, message, details}} response."""
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details or [],
        }
    }
    return JSONResponse(status_code=status_code, content=body)


def _status_for(exc: QuoteWizardError) -> int:
    if isinstance(exc, AuthRequiredError):
        return 401
    if isinstance(exc, ServiceNotFoundError):
        return 404
    if isinstance(exc, ConsistencyError):
        return 409
    if isinstance(exc, FieldValidationError):
        return 422
    if isinstance(exc, TransientIOError):
        return 503
    return 500


@app.exception_handler(QuoteWizardError)
async def quote_wizard_exception_handler(
    request: Request, exc: QuoteWizardError
) -> JSONResponse:
    """Map wizard errors onto HTTP statuses; the message is always user-safe."""
    details: List[dict[str, Any]] = []
    if isinstance(exc, FieldValidationError):
        details.append({"field": exc.field, "issue": exc.message, "suggestion": exc.suggestion})
    if getattr(exc, "retryable", False):
        details.append({"retryable": True})

    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error("Wizard error on %s %s: %s", request.method, request.url.path, exc)
    elif not isinstance(exc, DraftNotReadyError):
        logger.info("Wizard error on %s %s: %s", request.method, request.url.path, exc.code)
    return _make_error_response(
        code=exc.code,
        message=exc.message,
        details=details,
        status_code=status_code,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return every request-shape violation in one response."""
    details = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        details.append({"field": field or None, "issue": error["msg"]})
    return _make_error_response(
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details=details,
        status_code=422,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code_map = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
    }
    code = code_map.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _make_error_response(
        code=code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )


# =============================================================================
# Routers
# =============================================================================

app.include_router(health.router)
app.include_router(quote_wizard.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
