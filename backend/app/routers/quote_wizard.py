"""Quote & checkout wizard router.

Exposes one wizard run per session id.  Every endpoint returns the
controller's snapshot so the storefront renders from a single source of
truth; wizard errors are translated to the standard error envelope by the
handlers registered in ``app.main``.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from pydantic import BaseModel, Field

from app.deps import _safe_error, get_optional_user, limiter
from app.quote_wizard.config import wizard_settings
from app.quote_wizard.errors import AuthRequiredError, ConsistencyError, QuoteWizardError
from app.quote_wizard.models import FlowMode, IncomingFile, WizardSnapshot, WizardStatus
from app.security import (
    SESSION_RATE_LIMIT,
    SUBMIT_RATE_LIMIT,
    UPLOAD_RATE_LIMIT,
    WEBHOOK_SIGNATURE_HEADER,
    verify_webhook_signature,
)
from app.services.wizard_sessions import (
    WizardBackend,
    WizardSessionEntry,
    WizardSessionRegistry,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["quote-wizard"])


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class CreateWizardSessionRequest(BaseModel):
    service_id: str = Field(..., min_length=1)
    flow_mode: FlowMode = FlowMode.QUOTE
    locale: str = "en"


class SetFieldRequest(BaseModel):
    value: Optional[str] = None


class SubmitRequest(BaseModel):
    acknowledge_missing_documents: bool = False


class PaymentOutcomeRequest(BaseModel):
    invoice_id: Optional[str] = None


class WizardSessionResponse(BaseModel):
    session_id: str
    snapshot: WizardSnapshot


class NavigationResponse(BaseModel):
    moved: bool
    snapshot: WizardSnapshot


class FileUrlResponse(BaseModel):
    url: str


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

wizard_registry = WizardSessionRegistry(ttl_seconds=wizard_settings.session_ttl_seconds)
_default_backend: Optional[WizardBackend] = None


def get_registry() -> WizardSessionRegistry:
    return wizard_registry


def get_wizard_backend() -> WizardBackend:
    """Production wiring: Supabase catalog, Azure storage, SQL records."""
    global _default_backend
    if _default_backend is None:
        from app.catalog import SupabaseServiceCatalog
        from app.database import async_session_factory
        from app.deps import supabase
        from app.quote_wizard.session_store import build_session_store
        from app.services.application_store import ServiceApplicationStore
        from app.storage import customer_upload_storage

        if async_session_factory is None:
            raise RuntimeError("Database not configured. Set DATABASE_URL environment variable.")

        catalog = SupabaseServiceCatalog(supabase)
        _default_backend = WizardBackend(
            catalog=catalog,
            object_store=customer_upload_storage,
            record_factory=lambda auth: ServiceApplicationStore(
                async_session_factory, catalog, auth
            ),
            session_store=build_session_store(wizard_settings.draft_cache_dir),
        )
    return _default_backend


async def _entry_for(
    session_id: str,
    user: Optional[dict[str, Any]],
    registry: WizardSessionRegistry,
) -> WizardSessionEntry:
    """Look up a session and bring its identity in line with this request.

    Raises:
        HTTPException 404: Unknown, expired, or owned by another user.
        AuthRequiredError: The owner's sign-in is missing or expired.
    """
    entry = registry.get(session_id)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Wizard session not found",
        )

    user_id = user["id"] if user else None
    if user_id and entry.owner_id and user_id != entry.owner_id:
        logger.warning("User %s denied access to wizard session %s", user_id, session_id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Wizard session not found",
        )
    if user_id and entry.owner_id is None:
        entry.owner_id = user_id

    entry.auth.update(user)
    if user is None and entry.owner_id:
        raise AuthRequiredError()
    if user is not None and entry.controller.status is WizardStatus.UNAUTHENTICATED:
        await entry.controller.refresh_auth()
    return entry


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post(
    "/quote-sessions",
    response_model=WizardSessionResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(SESSION_RATE_LIMIT)
async def create_wizard_session(
    request: Request,
    body: CreateWizardSessionRequest,
    user: Optional[dict[str, Any]] = Depends(get_optional_user),
    registry: WizardSessionRegistry = Depends(get_registry),
    backend: WizardBackend = Depends(get_wizard_backend),
):
    """Start a wizard run for a service.

    Anonymous callers get a session in the ``unauthenticated`` state; it
    resumes once the same session id is used with a valid token.
    """
    try:
        controller, auth, payment_flow = backend.build(user)
        entry = registry.add(controller, auth, payment_flow)
        try:
            snapshot = await controller.initialize(body.service_id, body.flow_mode, body.locale)
        except QuoteWizardError:
            registry.remove(entry.session_id)
            raise
        logger.info(
            "Wizard session %s started for service %s", entry.session_id, body.service_id
        )
        return WizardSessionResponse(session_id=entry.session_id, snapshot=snapshot)
    except HTTPException:
        raise
    except QuoteWizardError:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("starting the request wizard", e),
        ) from e


@router.get("/quote-sessions/{session_id}", response_model=WizardSnapshot)
async def get_wizard_session(
    session_id: str,
    user: Optional[dict[str, Any]] = Depends(get_optional_user),
    registry: WizardSessionRegistry = Depends(get_registry),
):
    entry = await _entry_for(session_id, user, registry)
    return entry.controller.snapshot()


@router.delete("/quote-sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_wizard_session(
    session_id: str,
    user: Optional[dict[str, Any]] = Depends(get_optional_user),
    registry: WizardSessionRegistry = Depends(get_registry),
):
    await _entry_for(session_id, user, registry)
    registry.remove(session_id)


@router.post("/quote-sessions/{session_id}/reset", response_model=WizardSnapshot)
async def reset_wizard_session(
    session_id: str,
    user: Optional[dict[str, Any]] = Depends(get_optional_user),
    registry: WizardSessionRegistry = Depends(get_registry),
):
    entry = await _entry_for(session_id, user, registry)
    return entry.controller.reset()


# ---------------------------------------------------------------------------
# Fields and files
# ---------------------------------------------------------------------------


@router.put("/quote-sessions/{session_id}/fields/{field_name}", response_model=WizardSnapshot)
async def set_wizard_field(
    session_id: str,
    field_name: str,
    body: SetFieldRequest,
    user: Optional[dict[str, Any]] = Depends(get_optional_user),
    registry: WizardSessionRegistry = Depends(get_registry),
):
    entry = await _entry_for(session_id, user, registry)
    return entry.controller.set_field(field_name, body.value)


@router.post("/quote-sessions/{session_id}/files/{field_name}", response_model=WizardSnapshot)
@limiter.limit(UPLOAD_RATE_LIMIT)
async def upload_wizard_file(
    request: Request,
    session_id: str,
    field_name: str,
    file: UploadFile = File(...),
    user: Optional[dict[str, Any]] = Depends(get_optional_user),
    registry: WizardSessionRegistry = Depends(get_registry),
):
    """Upload a document for a file field; replaces any earlier upload."""
    entry = await _entry_for(session_id, user, registry)
    try:
        data = await file.read()
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_safe_error("reading the uploaded file", e),
        ) from e

    incoming = IncomingFile(
        file_name=file.filename or "upload",
        content_type=(file.content_type or "").lower(),
        data=data,
    )
    await entry.controller.attach_file(field_name, incoming)
    return entry.controller.snapshot()


@router.delete("/quote-sessions/{session_id}/files/{field_name}", response_model=WizardSnapshot)
async def remove_wizard_file(
    session_id: str,
    field_name: str,
    user: Optional[dict[str, Any]] = Depends(get_optional_user),
    registry: WizardSessionRegistry = Depends(get_registry),
):
    entry = await _entry_for(session_id, user, registry)
    await entry.controller.detach_file(field_name)
    return entry.controller.snapshot()


@router.get(
    "/quote-sessions/{session_id}/files/{field_name}/url",
    response_model=FileUrlResponse,
)
async def get_wizard_file_url(
    session_id: str,
    field_name: str,
    user: Optional[dict[str, Any]] = Depends(get_optional_user),
    registry: WizardSessionRegistry = Depends(get_registry),
    backend: WizardBackend = Depends(get_wizard_backend),
):
    """Short-lived download link for a file the customer uploaded."""
    entry = await _entry_for(session_id, user, registry)
    attachment = entry.controller.snapshot().attachments.get(field_name)
    if attachment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No file uploaded for this field",
        )
    generate = getattr(backend.object_store, "generate_sas_url", None)
    if generate is None:
        raise ConsistencyError("File links are not available for this storage backend.")
    try:
        return FileUrlResponse(url=await generate(attachment.storage_path))
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("generating file link", e),
        ) from e


# ---------------------------------------------------------------------------
# Navigation and submission
# ---------------------------------------------------------------------------


@router.post("/quote-sessions/{session_id}/next", response_model=NavigationResponse)
async def next_wizard_step(
    session_id: str,
    user: Optional[dict[str, Any]] = Depends(get_optional_user),
    registry: WizardSessionRegistry = Depends(get_registry),
):
    entry = await _entry_for(session_id, user, registry)
    moved = entry.controller.go_next()
    return NavigationResponse(moved=moved, snapshot=entry.controller.snapshot())


@router.post("/quote-sessions/{session_id}/back", response_model=NavigationResponse)
async def previous_wizard_step(
    session_id: str,
    user: Optional[dict[str, Any]] = Depends(get_optional_user),
    registry: WizardSessionRegistry = Depends(get_registry),
):
    entry = await _entry_for(session_id, user, registry)
    moved = entry.controller.go_back()
    return NavigationResponse(moved=moved, snapshot=entry.controller.snapshot())


@router.post("/quote-sessions/{session_id}/submit", response_model=WizardSnapshot)
@limiter.limit(SUBMIT_RATE_LIMIT)
async def submit_wizard(
    request: Request,
    session_id: str,
    body: SubmitRequest,
    user: Optional[dict[str, Any]] = Depends(get_optional_user),
    registry: WizardSessionRegistry = Depends(get_registry),
):
    """Validate every step and submit the request (or start checkout)."""
    entry = await _entry_for(session_id, user, registry)
    return await entry.controller.submit_final(
        acknowledge_missing_documents=body.acknowledge_missing_documents
    )


@router.post("/quote-sessions/{session_id}/payment/confirm", response_model=WizardSnapshot)
async def confirm_wizard_payment(
    request: Request,
    session_id: str,
    body: PaymentOutcomeRequest,
    user: Optional[dict[str, Any]] = Depends(get_optional_user),
    registry: WizardSessionRegistry = Depends(get_registry),
    backend: WizardBackend = Depends(get_wizard_backend),
):
    """Settle the pending invoice as paid.

    Accepted from the payment gateway, signed with the shared webhook
    secret in the ``X-Signature`` header, or from the signed-in customer
    when ``payment_test_mode`` is on.  Cancellation stays customer-callable.
    """
    settings = backend.settings
    signature = request.headers.get(WEBHOOK_SIGNATURE_HEADER)
    if verify_webhook_signature(
        await request.body(), signature, settings.payment_webhook_secret
    ):
        if not body.invoice_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="invoice_id is required",
            )
        entry = registry.get(session_id)
        if entry is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Wizard session not found",
            )
        logger.info("Gateway confirmed invoice %s for session %s", body.invoice_id, session_id)
    elif settings.payment_test_mode:
        entry = await _entry_for(session_id, user, registry)
        logger.warning("Test-mode payment confirmation for session %s", session_id)
    else:
        logger.warning(
            "Refused unverified payment confirmation for session %s (signature %s)",
            session_id,
            "invalid" if signature else "missing",
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Payments can only be confirmed by the payment gateway.",
        )

    await entry.payment_flow.confirm(body.invoice_id)
    return entry.controller.snapshot()


@router.post("/quote-sessions/{session_id}/payment/cancel", response_model=WizardSnapshot)
async def cancel_wizard_payment(
    session_id: str,
    body: PaymentOutcomeRequest,
    user: Optional[dict[str, Any]] = Depends(get_optional_user),
    registry: WizardSessionRegistry = Depends(get_registry),
):
    entry = await _entry_for(session_id, user, registry)
    await entry.payment_flow.cancel(body.invoice_id)
    return entry.controller.snapshot()
