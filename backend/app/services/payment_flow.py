"""Deferred payment hand-off for checkout wizards.

The payment gateway is opaque to the backend: ``start`` records the
pending payment and its callbacks, and the gateway's return (surfaced
through the confirm / cancel endpoints) settles the invoice and fires
exactly one of the callbacks.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from app.quote_wizard.errors import ConsistencyError, call_collaborator
from app.quote_wizard.models import PaymentRequest

logger = logging.getLogger(__name__)

PaymentCallback = Callable[[], Awaitable[None]]
InvoiceSettler = Callable[[str, bool], Awaitable[None]]


@dataclass
class PendingPayment:
    request: PaymentRequest
    on_success: PaymentCallback
    on_cancel: PaymentCallback


class DeferredPaymentFlow:
    """PaymentFlow collaborator for one wizard session.

    Args:
        settle: Persists the outcome, ``settle(invoice_id, paid)``.
    """

    def __init__(self, settle: Optional[InvoiceSettler] = None) -> None:
        self._settle = settle
        self.pending: Optional[PendingPayment] = None

    async def start(
        self,
        request: PaymentRequest,
        on_success: PaymentCallback,
        on_cancel: PaymentCallback,
    ) -> None:
        self.pending = PendingPayment(request, on_success, on_cancel)
        logger.info(
            "Payment pending for invoice %s (%s %s)",
            request.invoice_id,
            request.amount,
            request.currency,
        )

    def _current(self, invoice_id: Optional[str]) -> PendingPayment:
        pending = self.pending
        if pending is None:
            raise ConsistencyError("There is no payment in progress.")
        if invoice_id is not None and invoice_id != pending.request.invoice_id:
            raise ConsistencyError("The payment does not match the current invoice.")
        return pending

    async def _resolve(self, invoice_id: Optional[str], paid: bool) -> None:
        pending = self._current(invoice_id)
        # A pending payment resolves at most once.
        self.pending = None
        if self._settle is not None:
            try:
                await call_collaborator(
                    "Recording the payment", self._settle(pending.request.invoice_id, paid)
                )
            except Exception:
                self.pending = pending
                raise
        callback = pending.on_success if paid else pending.on_cancel
        await callback()

    async def confirm(self, invoice_id: Optional[str] = None) -> None:
        await self._resolve(invoice_id, paid=True)

    async def cancel(self, invoice_id: Optional[str] = None) -> None:
        await self._resolve(invoice_id, paid=False)
