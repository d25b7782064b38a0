"""Data model for the quote & checkout wizard.

Pydantic models are used for everything that leaves the wizard (catalog
schemas, attachments, pricing, snapshots, events).  The in-memory session
aggregate is a plain dataclass because the controller mutates it in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field


class FlowMode(str, Enum):
    """Quote ends in a request submission, checkout ends in payment."""

    QUOTE = "quote"
    CHECKOUT = "checkout"


class FieldKind(str, Enum):
    TEXT = "text"
    EMAIL = "email"
    TEL = "tel"
    SELECT = "select"
    TEXTAREA = "textarea"
    FILE = "file"
    DATE = "date"


class TariffType(str, Enum):
    """How a catalog entry is priced.

    - FIXED / STARTING: a numeric base amount is known up front.
    - QUOTE: pricing is custom; the wizard shows a disclosure only.
    """

    FIXED = "fixed"
    STARTING = "starting"
    QUOTE = "quote"


class UrgencyTier(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"
    URGENT = "urgent"


class ShippingLocation(str, Enum):
    WEST_BANK = "west_bank"
    JERUSALEM = "jerusalem"
    AREA_48 = "area_48"
    INTERNATIONAL = "international"


class DeliveryType(str, Enum):
    SINGLE = "single"
    MULTIPLE = "multiple"


class WizardStatus(str, Enum):
    CHECKING = "checking"
    UNAUTHENTICATED = "unauthenticated"
    READY = "ready"
    SUBMITTING = "submitting"
    PAYMENT = "payment"
    SUBMITTED = "submitted"
    PAYMENT_CONFIRMED = "payment_confirmed"


class StepKey(str, Enum):
    CONTACT = "contact"
    REQUIREMENTS = "requirements"
    REVIEW = "review"
    PAYMENT = "payment"


# ---------------------------------------------------------------------------
# Catalog-owned schemas
# ---------------------------------------------------------------------------


class FieldSchema(BaseModel):
    """Static description of one intake field, owned by the catalog."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: FieldKind = FieldKind.TEXT
    required: bool = False
    label: Dict[str, str] = Field(default_factory=dict)
    placeholder: Dict[str, str] = Field(default_factory=dict)
    help: Dict[str, str] = Field(default_factory=dict)
    options: List[str] = Field(default_factory=list)

    def label_for(self, locale: str = "en") -> str:
        return self.label.get(locale) or self.label.get("en") or self.name


class ServicePricingMeta(BaseModel):
    """Pricing and document requirements of one catalog entry."""

    model_config = ConfigDict(frozen=True)

    tariff_type: TariffType = TariffType.QUOTE
    base_amount: Optional[Decimal] = None
    required_documents: List[str] = Field(default_factory=list)

    @property
    def has_numeric_tariff(self) -> bool:
        return (
            self.tariff_type in (TariffType.FIXED, TariffType.STARTING)
            and self.base_amount is not None
            and self.base_amount > 0
        )


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IncomingFile:
    """A file picked by the user, not yet uploaded."""

    file_name: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class Attachment(BaseModel):
    """One uploaded file bound to a wizard field.

    Exists only while both the stored object and its metadata row exist.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    field_name: str
    storage_path: str
    file_name: str
    file_size: int
    content_type: str = "application/octet-stream"


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------


class ShippingSelection(BaseModel):
    """Checkout-only shipping inputs."""

    model_config = ConfigDict(frozen=True)

    location: ShippingLocation
    delivery_type: DeliveryType = DeliveryType.SINGLE
    delivery_count: int = 1


class PricingQuote(BaseModel):
    """Derived, never persisted."""

    model_config = ConfigDict(frozen=True)

    base: Decimal = Decimal("0")
    urgency_fee: Decimal = Decimal("0")
    shipping_fee: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    custom_pricing: bool = False


# ---------------------------------------------------------------------------
# Collaborator results
# ---------------------------------------------------------------------------


class SubmissionReceipt(BaseModel):
    order_number: str


class CheckoutReceipt(BaseModel):
    invoice_id: str
    order_number: str
    # Server-computed amount due; the payment request uses it when present.
    amount: Optional[Decimal] = None


class PaymentRequest(BaseModel):
    invoice_id: str
    amount: Decimal
    currency: str


# ---------------------------------------------------------------------------
# Session aggregate
# ---------------------------------------------------------------------------


@dataclass
class WizardSession:
    """In-memory aggregate for one run of the wizard."""

    service_id: str
    flow_mode: FlowMode
    current_step_index: int = 0
    answers: Dict[str, str] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    draft_id: Optional[str] = None
    attachments: Dict[str, Attachment] = field(default_factory=dict)
    uploading_fields: Set[str] = field(default_factory=set)

    def clear(self) -> None:
        self.current_step_index = 0
        self.answers.clear()
        self.errors.clear()
        self.draft_id = None
        self.attachments.clear()
        self.uploading_fields.clear()


# ---------------------------------------------------------------------------
# Observer payloads
# ---------------------------------------------------------------------------


class WizardSnapshot(BaseModel):
    """Immutable view of the controller handed to subscribers."""

    model_config = ConfigDict(frozen=True)

    status: WizardStatus
    service_id: Optional[str] = None
    flow_mode: Optional[FlowMode] = None
    locale: str = "en"
    step_index: int = 0
    step_key: Optional[StepKey] = None
    step_count: int = 0
    answers: Dict[str, str] = Field(default_factory=dict)
    errors: Dict[str, str] = Field(default_factory=dict)
    suggestions: Dict[str, str] = Field(default_factory=dict)
    notices: Dict[str, str] = Field(default_factory=dict)
    attachments: Dict[str, Attachment] = Field(default_factory=dict)
    uploading_fields: List[str] = Field(default_factory=list)
    has_draft: bool = False
    pricing: Optional[PricingQuote] = None
    busy: bool = False
    banner: Optional[str] = None
    missing_documents: List[str] = Field(default_factory=list)
    order_number: Optional[str] = None
    invoice_id: Optional[str] = None


class WizardEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    snapshot: WizardSnapshot
    payload: Dict[str, Any] = Field(default_factory=dict)
