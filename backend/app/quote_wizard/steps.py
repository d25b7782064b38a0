"""Step plans for the two flow modes.

Quote:    Contact -> Requirements -> Review
Checkout: Contact -> Requirements -> Review -> Payment

The requirements step is data-driven: catalog field schemas for the service
come first, followed by the built-in urgency / details fields and, in
checkout mode, the shipping fields.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from app.quote_wizard.models import (
    DeliveryType,
    FieldKind,
    FieldSchema,
    FlowMode,
    ShippingLocation,
    StepKey,
    UrgencyTier,
)

URGENCY_FIELD = "urgency"
SHIPPING_LOCATION_FIELD = "shipping_location"
DELIVERY_TYPE_FIELD = "delivery_type"
DELIVERY_COUNT_FIELD = "delivery_count"

# Fields whose change triggers a pricing recompute.
PRICE_FIELDS = frozenset(
    {URGENCY_FIELD, SHIPPING_LOCATION_FIELD, DELIVERY_TYPE_FIELD, DELIVERY_COUNT_FIELD}
)

DEFAULT_URGENCY = UrgencyTier.STANDARD
DEFAULT_DELIVERY_TYPE = DeliveryType.SINGLE


@dataclass(frozen=True)
class WizardStep:
    key: StepKey
    fields: List[FieldSchema] = field(default_factory=list)

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]


CONTACT_FIELDS = [
    FieldSchema(
        name="name",
        kind=FieldKind.TEXT,
        required=True,
        label={"en": "Full name", "ar": "الاسم الكامل"},
    ),
    FieldSchema(
        name="email",
        kind=FieldKind.EMAIL,
        required=True,
        label={"en": "Email", "ar": "البريد الإلكتروني"},
        placeholder={"en": "name@example.com"},
    ),
    FieldSchema(
        name="phone",
        kind=FieldKind.TEL,
        required=True,
        label={"en": "Phone", "ar": "رقم الهاتف"},
        placeholder={"en": "05X XXX XXXX"},
    ),
]

REQUIREMENT_FIELDS = [
    FieldSchema(
        name=URGENCY_FIELD,
        kind=FieldKind.SELECT,
        label={"en": "Urgency", "ar": "الاستعجال"},
        options=[tier.value for tier in UrgencyTier],
    ),
    FieldSchema(
        name="details",
        kind=FieldKind.TEXTAREA,
        label={"en": "Request details", "ar": "تفاصيل الطلب"},
    ),
]

SHIPPING_FIELDS = [
    FieldSchema(
        name=SHIPPING_LOCATION_FIELD,
        kind=FieldKind.SELECT,
        required=True,
        label={"en": "Shipping location", "ar": "موقع التوصيل"},
        options=[location.value for location in ShippingLocation],
    ),
    FieldSchema(
        name=DELIVERY_TYPE_FIELD,
        kind=FieldKind.SELECT,
        label={"en": "Delivery type", "ar": "نوع التسليم"},
        options=[delivery.value for delivery in DeliveryType],
    ),
    FieldSchema(
        name=DELIVERY_COUNT_FIELD,
        kind=FieldKind.TEXT,
        label={"en": "Number of deliveries", "ar": "عدد التسليمات"},
    ),
]

REVIEW_FIELDS = [
    FieldSchema(
        name="message",
        kind=FieldKind.TEXTAREA,
        label={"en": "Additional notes", "ar": "ملاحظات إضافية"},
    ),
]


def build_steps(flow_mode: FlowMode, catalog_fields: Sequence[FieldSchema]) -> List[WizardStep]:
    """Return the ordered step list for *flow_mode*.

    Catalog fields that reuse a built-in name replace the built-in one.
    """
    catalog_names = {f.name for f in catalog_fields}

    def builtin(fields: List[FieldSchema]) -> List[FieldSchema]:
        return [f for f in fields if f.name not in catalog_names]

    requirements = list(catalog_fields) + builtin(REQUIREMENT_FIELDS)
    if flow_mode is FlowMode.CHECKOUT:
        requirements += builtin(SHIPPING_FIELDS)

    steps = [
        WizardStep(StepKey.CONTACT, builtin(CONTACT_FIELDS)),
        WizardStep(StepKey.REQUIREMENTS, requirements),
        WizardStep(StepKey.REVIEW, builtin(REVIEW_FIELDS)),
    ]
    if flow_mode is FlowMode.CHECKOUT:
        steps.append(WizardStep(StepKey.PAYMENT))
    return steps


def form_steps(steps: Sequence[WizardStep]) -> List[WizardStep]:
    """Steps the user fills in; the payment step is entered only via checkout."""
    return [step for step in steps if step.key is not StepKey.PAYMENT]


def all_fields(steps: Sequence[WizardStep]) -> Dict[str, FieldSchema]:
    return {f.name: f for step in steps for f in step.fields}
