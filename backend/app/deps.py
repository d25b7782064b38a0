"""Shared dependencies for the API routers.

Centralises the Supabase client singleton, the optional-user dependency, the
rate-limiter reference and the error-message helper so that every router
module can ``from app.deps import …`` without pulling in the ``main`` module.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from supabase import Client, create_client

from app.auth import get_optional_user  # noqa: F401
from app.security import limiter  # noqa: F401

load_dotenv()

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Supabase client (singleton)
# ---------------------------------------------------------------------------
_supabase_url = os.getenv("SUPABASE_URL")
_supabase_service_key = os.getenv("SUPABASE_SERVICE_KEY")

# Guard missing env vars gracefully for local runs and preview deployments
supabase: Optional[Client] = None
if _supabase_url and _supabase_service_key:
    supabase = create_client(_supabase_url, _supabase_service_key)
else:
    logger.warning("SUPABASE_URL / SUPABASE_SERVICE_KEY not set, catalog lookups disabled")


# ---------------------------------------------------------------------------
# Small utility helpers
# ---------------------------------------------------------------------------


def _safe_error(operation: str, e: Exception) -> str:
    """Log the full exception but return a safe message without internal details.

    This prevents leaking stack traces, file paths, or database internals
    to API consumers while preserving full diagnostics in server logs.
    """
    logger.exception("Error during %s", operation)
    return f"{operation} failed. Please try again or contact support."
