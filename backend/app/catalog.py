"""Service catalog backed by the Supabase ``services`` table.

Each catalog row carries the intake form definition of one service
(``form_fields``), its pricing (``tariff_type`` / ``base_amount``) and the
list of documents the customer is expected to upload
(``required_documents``).  Rows are cached for a few minutes so a wizard
run does not hit PostgREST on every step.
"""

import asyncio
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from supabase import Client

from app.quote_wizard.errors import ServiceNotFoundError
from app.quote_wizard.models import FieldKind, FieldSchema, ServicePricingMeta, TariffType

logger = logging.getLogger(__name__)

SERVICES_TABLE = "services"
_CACHE_TTL = 300  # 5 minutes


def _localized(value: Any) -> Dict[str, str]:
    """Accept ``{"en": .., "ar": ..}`` or a plain string (treated as English)."""
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items() if v}
    if value:
        return {"en": str(value)}
    return {}


def _options(raw: Any) -> List[str]:
    options = []
    for item in raw or []:
        if isinstance(item, dict):
            value = item.get("value")
        else:
            value = item
        if value is not None:
            options.append(str(value))
    return options


def parse_field_schema(raw: Dict[str, Any]) -> FieldSchema:
    """Convert one ``form_fields`` entry into a FieldSchema."""
    kind = raw.get("kind") or raw.get("type") or FieldKind.TEXT.value
    try:
        kind = FieldKind(kind)
    except ValueError:
        logger.warning("Unknown field kind %r for field %s, using text", kind, raw.get("name"))
        kind = FieldKind.TEXT
    return FieldSchema(
        name=raw["name"],
        kind=kind,
        required=bool(raw.get("required", False)),
        label=_localized(raw.get("label")),
        placeholder=_localized(raw.get("placeholder")),
        help=_localized(raw.get("help")),
        options=_options(raw.get("options")),
    )


def parse_pricing_meta(row: Dict[str, Any]) -> ServicePricingMeta:
    """Build pricing metadata from a catalog row.

    A missing or malformed tariff falls back to custom-quote pricing.
    """
    try:
        tariff_type = TariffType(row.get("tariff_type") or TariffType.QUOTE.value)
    except ValueError:
        tariff_type = TariffType.QUOTE

    base_amount: Optional[Decimal] = None
    if row.get("base_amount") is not None:
        try:
            base_amount = Decimal(str(row["base_amount"]))
        except InvalidOperation:
            logger.warning("Invalid base_amount for service %s", row.get("slug"))

    documents = row.get("required_documents") or []
    return ServicePricingMeta(
        tariff_type=tariff_type,
        base_amount=base_amount,
        required_documents=[str(d) for d in documents if d],
    )


class SupabaseServiceCatalog:
    """Catalog collaborator reading the ``services`` table via supabase-py."""

    def __init__(self, client: Optional[Client]) -> None:
        self.client = client
        self._cache: Dict[str, Tuple[Dict[str, Any], float]] = {}

    async def _row(self, service_slug: str) -> Dict[str, Any]:
        entry = self._cache.get(service_slug)
        if entry and time.time() - entry[1] < _CACHE_TTL:
            return entry[0]

        if self.client is None:
            raise RuntimeError("Supabase is not configured. Set SUPABASE_URL and SUPABASE_SERVICE_KEY.")

        # Wrap synchronous supabase-py call to avoid blocking the event loop
        response = await asyncio.to_thread(
            lambda: self.client.table(SERVICES_TABLE)
            .select("slug, tariff_type, base_amount, required_documents, form_fields")
            .eq("slug", service_slug)
            .limit(1)
            .execute()
        )
        if not response.data:
            raise ServiceNotFoundError(service_slug)

        row = response.data[0]
        self._cache[service_slug] = (row, time.time())
        return row

    async def get_field_schemas(self, service_slug: str) -> List[FieldSchema]:
        row = await self._row(service_slug)
        return [parse_field_schema(raw) for raw in row.get("form_fields") or []]

    async def get_service_pricing_meta(self, service_slug: str) -> ServicePricingMeta:
        return parse_pricing_meta(await self._row(service_slug))
