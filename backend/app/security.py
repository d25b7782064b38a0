"""
Security Module for the Quote Wizard API

Implements request hardening for the public storefront endpoints:
- Rate limiting (IP-based using slowapi)
- Request ID and security headers middleware
- Payment gateway webhook signature checks (HMAC-SHA256)

Configuration via environment variables:
- RATE_LIMIT_ENABLED: 'false' disables rate limiting (default: true)
- RATE_LIMIT_PER_MINUTE: Requests per minute per IP (default: 100)
- TRUSTED_PROXY_COUNT: Proxies appending to X-Forwarded-For (default: 1)
"""

import hashlib
import hmac
import ipaddress
import logging
import os
import uuid
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = logging.getLogger(__name__)

# =============================================================================
# Configuration
# =============================================================================

RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() != "false"
RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE", "100"))
DEFAULT_RATE_LIMIT = f"{RATE_LIMIT_PER_MINUTE}/minute"

# Stricter limits for endpoints that create rows or move bytes
SESSION_RATE_LIMIT = "20/minute"
UPLOAD_RATE_LIMIT = "30/minute"
SUBMIT_RATE_LIMIT = "10/minute"

TRUSTED_PROXY_COUNT = int(os.getenv("TRUSTED_PROXY_COUNT", "1"))


# =============================================================================
# Rate Limiter Setup
# =============================================================================


def _is_valid_ip(ip_str: str) -> bool:
    if not ip_str or len(ip_str) > 45:  # Max length for IPv6
        return False
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def get_client_ip(request: Request) -> str:
    """
    Extract the client IP address, resistant to X-Forwarded-For spoofing.

    Proxies append the connecting address, so the entry just left of the
    trusted proxy chain is the real client; anything further left may be
    forged.

    Returns:
        The client IP address, or "unknown" if not determinable
    """
    direct_ip = request.client.host if request.client else None

    if forwarded_for := request.headers.get("X-Forwarded-For"):
        if ips := [ip.strip() for ip in forwarded_for.split(",") if ip.strip()]:
            if len(ips) > TRUSTED_PROXY_COUNT:
                client_ip = ips[-(TRUSTED_PROXY_COUNT + 1)]
            else:
                client_ip = ips[0]

            if _is_valid_ip(client_ip):
                return client_ip
            logger.warning("Invalid IP in X-Forwarded-For header: %r", client_ip[:50])

    if real_ip := request.headers.get("X-Real-IP"):
        real_ip = real_ip.strip()
        if _is_valid_ip(real_ip):
            return real_ip
        logger.warning("Invalid X-Real-IP header: %r", real_ip[:50])

    return direct_ip if direct_ip and _is_valid_ip(direct_ip) else "unknown"


limiter = Limiter(
    key_func=get_client_ip,
    default_limits=[DEFAULT_RATE_LIMIT],
    storage_uri="memory://",  # In-memory storage (use Redis for multi-instance)
    strategy="fixed-window",
    enabled=RATE_LIMIT_ENABLED,
)


# =============================================================================
# Payment Gateway Webhooks
# =============================================================================

WEBHOOK_SIGNATURE_HEADER = "X-Signature"


def sign_webhook_payload(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body, as the gateway computes it."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    payload: bytes, signature: Optional[str], secret: Optional[str]
) -> bool:
    if not secret or not signature:
        return False
    expected = sign_webhook_payload(payload, secret)
    return hmac.compare_digest(signature.strip().lower(), expected)


# =============================================================================
# Security Headers Middleware
# =============================================================================


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Tag every response with a request id and conservative browser headers."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Snapshots carry customer answers
        response.headers["Cache-Control"] = "no-store"
        return response


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 in the standard error envelope."""
    logger.warning(
        "Rate limit exceeded: client_ip=%s path=%s", get_client_ip(request), request.url.path
    )
    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMITED",
                "message": "Too many requests. Please wait a moment and try again.",
                "details": [{"retry_after_seconds": 60}],
            }
        },
        headers={"Retry-After": "60"},
    )


# =============================================================================
# Security Setup Function
# =============================================================================


def setup_security(app: FastAPI) -> None:
    """Configure rate limiting and security headers on *app*."""
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    logger.info(
        "Security middleware configured: rate_limit=%s (%s)",
        DEFAULT_RATE_LIMIT,
        "enabled" if RATE_LIMIT_ENABLED else "disabled",
    )
