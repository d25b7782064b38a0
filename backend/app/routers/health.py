"""Health-check router."""

import os
import logging
from datetime import datetime, timezone

from fastapi import APIRouter

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/")
async def root():
    """Health check"""
    return {"status": "ok", "message": "Quote Wizard API is running"}


@router.get("/api/v1/health")
async def health_check():
    """Detailed health check with collaborator configuration status."""
    capabilities = []
    degraded = []

    if os.getenv("DATABASE_URL"):
        capabilities.append("applications")
    else:
        degraded.append("applications")

    if os.getenv("SUPABASE_URL") and os.getenv("SUPABASE_SERVICE_KEY"):
        capabilities.append("service_catalog")
    else:
        degraded.append("service_catalog")

    if os.getenv("AZURE_STORAGE_CONNECTION_STRING"):
        capabilities.append("attachments")
    else:
        degraded.append("attachments")

    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "capabilities": capabilities,
        "degraded": degraded if degraded else None,
        "mode": "full" if not degraded else "degraded",
    }
