"""
In-memory collaborators for quote wizard tests.

Every fake records its calls and can be told to fail, so tests can drive
the wizard through success, transient failure and sign-in paths without a
database, blob storage or network.
"""

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from app.quote_wizard.config import WizardSettings
from app.quote_wizard.controller import QuoteWizardController
from app.quote_wizard.errors import AuthRequiredError
from app.quote_wizard.models import (
    CheckoutReceipt,
    FieldKind,
    FieldSchema,
    IncomingFile,
    PaymentRequest,
    ServicePricingMeta,
    SubmissionReceipt,
    TariffType,
)
from app.quote_wizard.session_store import DraftSessionStore, MemoryCacheBackend


# ============================================================================
# TEST DATA FACTORIES
# ============================================================================

SERVICE_SLUG = "certified-translation"
TEST_USER = {"id": "5b7c2f7e-0d7a-4f55-9a7c-3f0a1e2d4c11", "email": "lina@example.com"}


def make_catalog_fields() -> List[FieldSchema]:
    """Catalog fields of a translation service: one required document and a language."""
    return [
        FieldSchema(
            name="passport_copy",
            kind=FieldKind.FILE,
            required=True,
            label={"en": "Passport copy"},
        ),
        FieldSchema(
            name="supporting_letter",
            kind=FieldKind.FILE,
            label={"en": "Supporting letter"},
        ),
        FieldSchema(
            name="target_language",
            kind=FieldKind.SELECT,
            required=True,
            options=["ar", "en", "fr"],
        ),
    ]


def make_pricing_meta(
    tariff_type: TariffType = TariffType.FIXED,
    base_amount: Optional[str] = "100",
    required_documents: Optional[List[str]] = None,
) -> ServicePricingMeta:
    return ServicePricingMeta(
        tariff_type=tariff_type,
        base_amount=Decimal(base_amount) if base_amount is not None else None,
        required_documents=required_documents if required_documents is not None else [],
    )


def make_file(
    file_name: str = "passport.pdf",
    content_type: str = "application/pdf",
    size: int = 2048,
) -> IncomingFile:
    return IncomingFile(file_name=file_name, content_type=content_type, data=b"%" * size)


VALID_CONTACT = {
    "name": "Lina Haddad",
    "email": "lina@example.com",
    "phone": "0592123456",
}


# ============================================================================
# FAKE COLLABORATORS
# ============================================================================


class FakeCatalog:
    def __init__(
        self,
        fields: Optional[List[FieldSchema]] = None,
        meta: Optional[ServicePricingMeta] = None,
    ) -> None:
        self.fields = fields if fields is not None else make_catalog_fields()
        self.meta = meta if meta is not None else make_pricing_meta()
        self.fail = False
        self.calls: List[str] = []

    async def get_field_schemas(self, service_slug: str) -> List[FieldSchema]:
        self.calls.append(service_slug)
        if self.fail:
            raise ConnectionError("catalog unavailable")
        return list(self.fields)

    async def get_service_pricing_meta(self, service_slug: str) -> ServicePricingMeta:
        if self.fail:
            raise ConnectionError("catalog unavailable")
        return self.meta


class FakeAuth:
    def __init__(self, user: Optional[Dict[str, Any]] = TEST_USER) -> None:
        self.user = user
        self.listeners: List[Callable] = []

    async def get_current_user(self) -> Optional[Dict[str, Any]]:
        return self.user

    def subscribe(self, listener: Callable) -> Callable[[], None]:
        self.listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self.listeners:
                self.listeners.remove(listener)

        return unsubscribe

    def sign_in(self, user: Dict[str, Any] = TEST_USER) -> None:
        self.user = user
        for listener in list(self.listeners):
            listener(user)

    def sign_out(self) -> None:
        self.user = None
        for listener in list(self.listeners):
            listener(None)


class FakeDraftCreator:
    """Creates ``draft-1``, ``draft-2``, ... optionally waiting on ``gate``."""

    def __init__(self, auth: Optional[FakeAuth] = None) -> None:
        self.auth = auth
        self.calls = 0
        self.gate: Optional[asyncio.Event] = None
        self.fail_with: Optional[Exception] = None

    async def create_draft(self, service_slug: str, locale: str) -> str:
        self.calls += 1
        number = self.calls
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        if self.auth is not None and self.auth.user is None:
            raise AuthRequiredError()
        return f"draft-{number}"


class FakeObjectStore:
    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.deleted: List[str] = []
        self.fail_upload = False
        self.fail_delete = False
        self.upload_gate: Optional[asyncio.Event] = None

    async def upload(self, draft_id: str, field_name: str, file: IncomingFile) -> str:
        if self.upload_gate is not None:
            await self.upload_gate.wait()
        if self.fail_upload:
            raise ConnectionError("storage unavailable")
        path = f"applications/{draft_id}/{field_name}/{file.file_name}"
        self.objects[path] = file.data
        return path

    async def delete(self, storage_path: str) -> None:
        if self.fail_delete:
            raise ConnectionError("storage unavailable")
        self.objects.pop(storage_path, None)
        self.deleted.append(storage_path)


class FakeRecordStore:
    def __init__(self) -> None:
        self.rows: Dict[str, Dict[str, str]] = {}
        self.fail_create = False
        self.fail_delete = False
        self._next = 0

    async def create(
        self, draft_id: str, field_name: str, storage_path: str, file: IncomingFile
    ) -> str:
        if self.fail_create:
            raise ConnectionError("database unavailable")
        self._next += 1
        attachment_id = f"att-{self._next}"
        self.rows[attachment_id] = {
            "draft_id": draft_id,
            "field_name": field_name,
            "storage_path": storage_path,
        }
        return attachment_id

    async def delete(self, attachment_id: str) -> None:
        if self.fail_delete:
            raise ConnectionError("database unavailable")
        self.rows.pop(attachment_id, None)


class FakeSubmitter:
    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.fail_with: Optional[Exception] = None

    async def submit(self, draft_id: str, answers: Dict[str, str]) -> SubmissionReceipt:
        self.calls.append({"draft_id": draft_id, "answers": dict(answers)})
        if self.fail_with is not None:
            raise self.fail_with
        return SubmissionReceipt(order_number="ORD-20261019-A1B2C3")


class FakeCheckout:
    def __init__(self, amount: Optional[Decimal] = None) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.amount = amount
        self.fail_with: Optional[Exception] = None

    async def submit_checkout(self, draft_id: str, answers: Dict[str, str]) -> CheckoutReceipt:
        self.calls.append({"draft_id": draft_id, "answers": dict(answers)})
        if self.fail_with is not None:
            raise self.fail_with
        return CheckoutReceipt(
            invoice_id="inv-1", order_number="ORD-20261019-D4E5F6", amount=self.amount
        )


class FakePaymentFlow:
    def __init__(self) -> None:
        self.request: Optional[PaymentRequest] = None
        self.on_success = None
        self.on_cancel = None
        self.fail = False

    async def start(self, request: PaymentRequest, on_success, on_cancel) -> None:
        if self.fail:
            raise ConnectionError("gateway unavailable")
        self.request = request
        self.on_success = on_success
        self.on_cancel = on_cancel


# ============================================================================
# HARNESS
# ============================================================================


@dataclass
class WizardHarness:
    """A controller wired to fresh fakes, with handles on every fake."""

    catalog: FakeCatalog = field(default_factory=FakeCatalog)
    auth: FakeAuth = field(default_factory=FakeAuth)
    objects: FakeObjectStore = field(default_factory=FakeObjectStore)
    records: FakeRecordStore = field(default_factory=FakeRecordStore)
    submitter: FakeSubmitter = field(default_factory=FakeSubmitter)
    checkout: FakeCheckout = field(default_factory=FakeCheckout)
    payment: FakePaymentFlow = field(default_factory=FakePaymentFlow)
    cache: MemoryCacheBackend = field(default_factory=MemoryCacheBackend)
    settings: WizardSettings = field(default_factory=WizardSettings)
    drafts: Optional[FakeDraftCreator] = None
    controller: Optional[QuoteWizardController] = None
    events: List[Any] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.drafts is None:
            self.drafts = FakeDraftCreator(self.auth)
        self.store = DraftSessionStore(self.cache)
        self.controller = self.build_controller()
        self.controller.subscribe(self.events.append)

    def build_controller(self) -> QuoteWizardController:
        return QuoteWizardController(
            catalog=self.catalog,
            auth=self.auth,
            draft_creator=self.drafts,
            object_store=self.objects,
            record_store=self.records,
            submitter=self.submitter,
            checkout=self.checkout,
            payment_flow=self.payment,
            session_store=self.store,
            settings=self.settings,
        )

    def event_types(self) -> List[str]:
        return [event.type for event in self.events]

    def fill(self, answers: Dict[str, str]) -> None:
        for name, value in answers.items():
            self.controller.set_field(name, value)
