"""SQL-backed collaborators for the quote wizard.

``ServiceApplicationStore`` implements the draft-creation, attachment-record,
submission and checkout contracts against the ``service_applications``,
``service_application_attachments`` and ``service_invoices`` tables.

Every call opens its own short-lived session from ``async_sessionmaker``; a
wizard run spans many HTTP requests and must not pin a connection.  Prices
are always recomputed here from the catalog, never taken from the client.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.auth import SessionAuth
from app.models.db.service_application import ServiceApplication
from app.models.db.service_application_attachment import ServiceApplicationAttachment
from app.models.db.service_invoice import ServiceInvoice
from app.quote_wizard.config import WizardSettings, wizard_settings
from app.quote_wizard.contracts import ServiceCatalog
from app.quote_wizard.errors import AuthRequiredError, ConsistencyError
from app.quote_wizard.models import (
    CheckoutReceipt,
    FlowMode,
    IncomingFile,
    PricingQuote,
    SubmissionReceipt,
)
from app.quote_wizard.pricing import quote_from_answers, shipping_from_answers
from app.quote_wizard.steps import (
    DELIVERY_COUNT_FIELD,
    DELIVERY_TYPE_FIELD,
    SHIPPING_LOCATION_FIELD,
    URGENCY_FIELD,
)
from app.quote_wizard.validation import format_phone, normalize_phone

logger = logging.getLogger(__name__)

CONTACT_FIELDS = ("name", "email", "phone")
_RESERVED_FIELDS = set(CONTACT_FIELDS) | {
    URGENCY_FIELD,
    "details",
    "message",
    SHIPPING_LOCATION_FIELD,
    DELIVERY_TYPE_FIELD,
    DELIVERY_COUNT_FIELD,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def generate_order_number(now: Optional[datetime] = None) -> str:
    """Human-friendly order reference, e.g. ``ORD-20261019-3F9A2C``."""
    now = now or datetime.now(timezone.utc)
    return f"ORD-{now:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def _money(value: Decimal) -> str:
    return str(value)


def _attachment_dict(row: ServiceApplicationAttachment) -> Dict[str, Any]:
    return {
        "id": str(row.id),
        "field_name": row.field_name,
        "file_name": row.file_name,
        "storage_path": row.storage_path,
        "content_type": row.content_type,
        "file_size": row.file_size,
    }


def build_submission_payload(
    answers: Dict[str, str],
    attachments: List[Dict[str, Any]],
    flow_mode: FlowMode,
    pricing: PricingQuote,
    settings: WizardSettings = wizard_settings,
) -> Dict[str, Any]:
    """Assemble the JSON payload stored on the application at submission.

    Contact details are split out, the phone number is stored in display
    form when it normalizes, and every catalog-specific answer lands under
    ``service_specific``.
    """
    phone = (answers.get("phone") or "").strip()
    phone_check = normalize_phone(phone, settings)
    payload: Dict[str, Any] = {
        "contact": {
            "name": (answers.get("name") or "").strip(),
            "email": (answers.get("email") or "").strip(),
            "phone": format_phone(phone_check.canonical, settings) if phone_check.ok else phone,
        },
        "urgency": answers.get(URGENCY_FIELD) or "standard",
        "details": answers.get("details") or "",
        "additional_notes": answers.get("message") or "",
        "service_specific": {
            name: value for name, value in answers.items() if name not in _RESERVED_FIELDS
        },
        "attachments": attachments,
        "pricing": {
            "base": _money(pricing.base),
            "urgency_fee": _money(pricing.urgency_fee),
            "shipping_fee": _money(pricing.shipping_fee),
            "total": _money(pricing.total),
            "custom_pricing": pricing.custom_pricing,
        },
        "checkout_flow": flow_mode is FlowMode.CHECKOUT,
    }

    if flow_mode is FlowMode.CHECKOUT:
        shipping = shipping_from_answers(answers)
        if shipping is not None:
            payload["shipping"] = {
                "location": shipping.location.value,
                "delivery_type": shipping.delivery_type.value,
                "delivery_count": shipping.delivery_count,
                "amount": _money(pricing.shipping_fee),
            }
    return payload


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ServiceApplicationStore:
    """Drafts, attachment rows, submissions and invoices for one wizard user.

    Args:
        session_factory: ``async_sessionmaker`` producing AsyncSessions.
        catalog: Catalog used to recompute prices server-side.
        auth: Identity of the wizard session; every write is attributed to it.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: ServiceCatalog,
        auth: SessionAuth,
        settings: WizardSettings = wizard_settings,
    ) -> None:
        self._session_factory = session_factory
        self._catalog = catalog
        self._auth = auth
        self._settings = settings

    def _user_id(self) -> uuid.UUID:
        if self._auth.user_id is None:
            raise AuthRequiredError()
        return uuid.UUID(str(self._auth.user_id))

    async def _owned_application(
        self, db: AsyncSession, draft_id: str, user_id: uuid.UUID
    ) -> ServiceApplication:
        result = await db.execute(
            select(ServiceApplication).where(ServiceApplication.id == uuid.UUID(draft_id))
        )
        application = result.scalar_one_or_none()
        if application is None or application.user_id != user_id:
            raise ConsistencyError("This request no longer exists.")
        return application

    async def _attachments_of(self, db: AsyncSession, application_id: uuid.UUID) -> List[Dict[str, Any]]:
        result = await db.execute(
            select(ServiceApplicationAttachment)
            .where(ServiceApplicationAttachment.application_id == application_id)
            .order_by(ServiceApplicationAttachment.created_at)
        )
        return [_attachment_dict(row) for row in result.scalars().all()]

    # -- DraftCreator ------------------------------------------------------

    async def create_draft(self, service_slug: str, locale: str) -> str:
        """Insert a ``draft`` application and return its id.

        Raises:
            AuthRequiredError: No signed-in user.
        """
        user_id = self._user_id()
        async with self._session_factory() as db:
            application = ServiceApplication(
                user_id=user_id,
                service_slug=service_slug,
                status="draft",
                locale=locale,
                order_number=generate_order_number(),
                payload={},
            )
            db.add(application)
            await db.commit()
            await db.refresh(application)
        logger.info("Created draft application %s for service %s", application.id, service_slug)
        return str(application.id)

    # -- AttachmentRecordStore ----------------------------------------------

    async def create(
        self, draft_id: str, field_name: str, storage_path: str, file: IncomingFile
    ) -> str:
        user_id = self._user_id()
        async with self._session_factory() as db:
            await self._owned_application(db, draft_id, user_id)
            row = ServiceApplicationAttachment(
                application_id=uuid.UUID(draft_id),
                field_name=field_name,
                storage_path=storage_path,
                file_name=file.file_name,
                content_type=file.content_type or "application/octet-stream",
                file_size=file.size,
                uploaded_by=user_id,
            )
            db.add(row)
            await db.commit()
            await db.refresh(row)
        logger.info("Recorded attachment %s for application %s", row.id, draft_id)
        return str(row.id)

    async def delete(self, attachment_id: str) -> None:
        user_id = self._user_id()
        async with self._session_factory() as db:
            row = await db.get(ServiceApplicationAttachment, uuid.UUID(attachment_id))
            if row is None:
                logger.info("Attachment %s already deleted", attachment_id)
                return
            if row.uploaded_by != user_id:
                raise ConsistencyError("This file belongs to another request.")
            await db.delete(row)
            await db.commit()
        logger.info("Deleted attachment record %s", attachment_id)

    # -- Submitter / CheckoutSubmitter -------------------------------------

    async def _finalize(
        self, draft_id: str, answers: Dict[str, str], flow_mode: FlowMode
    ) -> tuple[ServiceApplication, PricingQuote, Optional[ServiceInvoice]]:
        user_id = self._user_id()
        async with self._session_factory() as db:
            application = await self._owned_application(db, draft_id, user_id)
            if application.status not in ("draft", "pending_payment"):
                raise ConsistencyError("This request has already been submitted.")

            meta = await self._catalog.get_service_pricing_meta(application.service_slug)
            if flow_mode is FlowMode.CHECKOUT and not meta.has_numeric_tariff:
                raise ConsistencyError(
                    "This service is priced by custom quote and cannot be checked out online."
                )
            pricing = quote_from_answers(meta, answers, flow_mode)
            attachments = await self._attachments_of(db, application.id)

            application.payload = build_submission_payload(
                answers, attachments, flow_mode, pricing, self._settings
            )
            application.total_amount = None if pricing.custom_pricing else pricing.total
            application.currency = self._settings.currency
            application.submitted_at = datetime.now(timezone.utc)

            invoice = None
            if flow_mode is FlowMode.CHECKOUT:
                application.status = "pending_payment"
                invoice = ServiceInvoice(
                    application_id=application.id,
                    order_number=application.order_number,
                    amount=pricing.total,
                    currency=self._settings.currency,
                    status="pending",
                )
                db.add(invoice)
            else:
                application.status = "submitted"

            await db.commit()
            if invoice is not None:
                await db.refresh(invoice)
        return application, pricing, invoice

    async def submit(self, draft_id: str, answers: Dict[str, str]) -> SubmissionReceipt:
        application, _, _ = await self._finalize(draft_id, answers, FlowMode.QUOTE)
        logger.info("Application %s submitted as %s", draft_id, application.order_number)
        return SubmissionReceipt(order_number=application.order_number)

    async def submit_checkout(self, draft_id: str, answers: Dict[str, str]) -> CheckoutReceipt:
        application, pricing, invoice = await self._finalize(
            draft_id, answers, FlowMode.CHECKOUT
        )
        logger.info(
            "Application %s awaiting payment on invoice %s", draft_id, invoice.id
        )
        return CheckoutReceipt(
            invoice_id=str(invoice.id),
            order_number=application.order_number,
            amount=pricing.total,
        )

    # -- Payment outcome ----------------------------------------------------

    async def settle_invoice(self, invoice_id: str, paid: bool) -> None:
        """Record the payment outcome on the invoice and its application."""
        async with self._session_factory() as db:
            invoice = await db.get(ServiceInvoice, uuid.UUID(invoice_id))
            if invoice is None:
                raise ConsistencyError("Invoice not found.")
            application = await db.get(ServiceApplication, invoice.application_id)
            if paid:
                invoice.status = "paid"
                invoice.paid_at = datetime.now(timezone.utc)
                if application is not None:
                    application.status = "paid"
            else:
                invoice.status = "cancelled"
                if application is not None:
                    application.status = "draft"
            await db.commit()
        logger.info("Invoice %s %s", invoice_id, "paid" if paid else "cancelled")
