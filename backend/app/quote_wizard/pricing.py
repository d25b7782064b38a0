"""Pricing calculator for quote and checkout requests.

All arithmetic is done in ``Decimal`` and every quote is computed from the
same base inputs, so repeated recomputation never drifts.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Mapping, Optional

from app.quote_wizard.models import (
    DeliveryType,
    FlowMode,
    PricingQuote,
    ServicePricingMeta,
    ShippingLocation,
    ShippingSelection,
    UrgencyTier,
)
from app.quote_wizard.steps import (
    DEFAULT_DELIVERY_TYPE,
    DEFAULT_URGENCY,
    DELIVERY_COUNT_FIELD,
    DELIVERY_TYPE_FIELD,
    SHIPPING_LOCATION_FIELD,
    URGENCY_FIELD,
)

_TWO_PLACES = Decimal("0.01")

URGENCY_MULTIPLIERS: Dict[UrgencyTier, Decimal] = {
    UrgencyTier.STANDARD: Decimal("1.0"),
    UrgencyTier.EXPRESS: Decimal("1.3"),
    UrgencyTier.URGENT: Decimal("1.5"),
}

# (single delivery, per delivery when multiple), NIS
SHIPPING_RATES: Dict[ShippingLocation, Dict[DeliveryType, Decimal]] = {
    ShippingLocation.WEST_BANK: {
        DeliveryType.SINGLE: Decimal("20"),
        DeliveryType.MULTIPLE: Decimal("15"),
    },
    ShippingLocation.JERUSALEM: {
        DeliveryType.SINGLE: Decimal("30"),
        DeliveryType.MULTIPLE: Decimal("50"),
    },
    ShippingLocation.AREA_48: {
        DeliveryType.SINGLE: Decimal("70"),
        DeliveryType.MULTIPLE: Decimal("65"),
    },
    ShippingLocation.INTERNATIONAL: {
        DeliveryType.SINGLE: Decimal("200"),
        DeliveryType.MULTIPLE: Decimal("200"),
    },
}

MIN_MULTIPLE_DELIVERIES = 2

LOCATION_LABELS: Dict[ShippingLocation, Dict[str, str]] = {
    ShippingLocation.WEST_BANK: {"en": "West Bank", "ar": "الضفة الغربية"},
    ShippingLocation.JERUSALEM: {"en": "Jerusalem", "ar": "القدس"},
    ShippingLocation.AREA_48: {"en": "1948 Areas", "ar": "المناطق المحتلة عام 48"},
    ShippingLocation.INTERNATIONAL: {"en": "International", "ar": "دولي"},
}

DELIVERY_TYPE_LABELS: Dict[DeliveryType, Dict[str, str]] = {
    DeliveryType.SINGLE: {"en": "Single Delivery", "ar": "تسليم واحد"},
    DeliveryType.MULTIPLE: {"en": "Multiple Deliveries", "ar": "تسليمات متعددة"},
}


def _money(value: Decimal) -> Decimal:
    return value.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def location_label(location: ShippingLocation, locale: str = "en") -> str:
    labels = LOCATION_LABELS[location]
    return labels.get(locale, labels["en"])


def delivery_type_label(delivery_type: DeliveryType, locale: str = "en") -> str:
    labels = DELIVERY_TYPE_LABELS[delivery_type]
    return labels.get(locale, labels["en"])


def shipping_fee(shipping: Optional[ShippingSelection]) -> Decimal:
    """Look up the shipping fee for a location / delivery type selection.

    Multiple deliveries are billed per delivery, never fewer than two.
    """
    if shipping is None:
        return _money(Decimal("0"))
    rate = SHIPPING_RATES[shipping.location][shipping.delivery_type]
    if shipping.delivery_type is DeliveryType.MULTIPLE:
        rate = rate * max(MIN_MULTIPLE_DELIVERIES, shipping.delivery_count)
    return _money(rate)


def price(
    pricing_meta: ServicePricingMeta,
    urgency: UrgencyTier = UrgencyTier.STANDARD,
    shipping: Optional[ShippingSelection] = None,
) -> PricingQuote:
    """Compute an itemized quote.

    Args:
        pricing_meta: Tariff type and base amount of the service.
        urgency: Selected urgency tier.
        shipping: Shipping selection (checkout mode only).

    Returns:
        PricingQuote with base, urgency fee, shipping fee and total.  Services
        priced by custom quote carry ``custom_pricing=True`` and a zero base
        and urgency fee; only the shipping fee is numeric for them.
    """
    ship = shipping_fee(shipping)

    if not pricing_meta.has_numeric_tariff:
        return PricingQuote(
            base=_money(Decimal("0")),
            urgency_fee=_money(Decimal("0")),
            shipping_fee=ship,
            total=ship,
            custom_pricing=True,
        )

    base = _money(pricing_meta.base_amount)
    urgency_fee = _money(base * (URGENCY_MULTIPLIERS[urgency] - Decimal("1")))
    return PricingQuote(
        base=base,
        urgency_fee=urgency_fee,
        shipping_fee=ship,
        total=base + urgency_fee + ship,
        custom_pricing=False,
    )


# ---------------------------------------------------------------------------
# Answers -> pricing inputs
# ---------------------------------------------------------------------------


def urgency_from_answers(answers: Mapping[str, str]) -> UrgencyTier:
    try:
        return UrgencyTier((answers.get(URGENCY_FIELD) or "").strip())
    except ValueError:
        return DEFAULT_URGENCY


def shipping_from_answers(answers: Mapping[str, str]) -> Optional[ShippingSelection]:
    """Build a shipping selection, or ``None`` while no location is chosen."""
    try:
        location = ShippingLocation((answers.get(SHIPPING_LOCATION_FIELD) or "").strip())
    except ValueError:
        return None
    try:
        delivery_type = DeliveryType((answers.get(DELIVERY_TYPE_FIELD) or "").strip())
    except ValueError:
        delivery_type = DEFAULT_DELIVERY_TYPE
    raw_count = (answers.get(DELIVERY_COUNT_FIELD) or "").strip()
    count = int(raw_count) if raw_count.isdigit() else 1
    return ShippingSelection(
        location=location, delivery_type=delivery_type, delivery_count=max(1, count)
    )


def quote_from_answers(
    pricing_meta: ServicePricingMeta,
    answers: Mapping[str, str],
    flow_mode: FlowMode = FlowMode.QUOTE,
) -> PricingQuote:
    """Price a request from raw wizard answers.

    Shipping only applies in checkout mode.
    """
    shipping = shipping_from_answers(answers) if flow_mode is FlowMode.CHECKOUT else None
    return price(pricing_meta, urgency_from_answers(answers), shipping)
