"""ServiceApplication ORM model.

Maps to the ``service_applications`` table from migration
``20261019_000001_service_applications``.  One row per wizard run: created
as a ``draft`` when the customer starts the wizard, overwritten wholesale
with the final answers on submission or checkout.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Numeric, Text, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.models.db.base import Base, TimestampMixin

__all__ = ["ServiceApplication", "APPLICATION_STATUSES"]

APPLICATION_STATUSES = ("draft", "submitted", "pending_payment", "paid", "cancelled")


class ServiceApplication(TimestampMixin, Base):
    __tablename__ = "service_applications"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )

    # References
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    service_slug: Mapped[str] = mapped_column(Text, nullable=False)

    # Lifecycle
    status: Mapped[str] = mapped_column(Text, nullable=False, server_default="draft")
    locale: Mapped[str] = mapped_column(Text, nullable=False, server_default="en")
    order_number: Mapped[Optional[str]] = mapped_column(Text, nullable=True, unique=True)

    # Final answers, shipping block and attachment list
    payload: Mapped[Optional[dict]] = mapped_column(
        JSONB, server_default="{}", nullable=True
    )

    # Pricing (server-computed)
    total_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    submitted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
