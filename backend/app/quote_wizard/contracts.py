"""Collaborator contracts consumed by the quote wizard.

Concrete implementations live outside this package (Supabase catalog,
JWT auth, Azure Blob storage, SQL repositories); tests substitute in-memory
fakes.  Every method that crosses a network boundary is a coroutine.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from app.quote_wizard.models import (
    CheckoutReceipt,
    FieldSchema,
    IncomingFile,
    PaymentRequest,
    ServicePricingMeta,
    SubmissionReceipt,
)

AuthListener = Callable[[Optional[Dict[str, Any]]], Any]
PaymentCallback = Callable[[], Awaitable[None]]


class ServiceCatalog(Protocol):
    async def get_field_schemas(self, service_slug: str) -> List[FieldSchema]:
        ...

    async def get_service_pricing_meta(self, service_slug: str) -> ServicePricingMeta:
        ...


class AuthProvider(Protocol):
    async def get_current_user(self) -> Optional[Dict[str, Any]]:
        ...

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register for sign-in / sign-out notifications; returns unsubscribe."""
        ...


class DraftCreator(Protocol):
    async def create_draft(self, service_slug: str, locale: str) -> str:
        """Create a draft application and return its id.

        Raises:
            AuthRequiredError: No signed-in user.
        """
        ...


class ObjectStore(Protocol):
    async def upload(self, draft_id: str, field_name: str, file: IncomingFile) -> str:
        """Store the bytes and return the storage path."""
        ...

    async def delete(self, storage_path: str) -> None:
        ...


class AttachmentRecordStore(Protocol):
    async def create(
        self, draft_id: str, field_name: str, storage_path: str, file: IncomingFile
    ) -> str:
        """Insert the metadata row and return the attachment id."""
        ...

    async def delete(self, attachment_id: str) -> None:
        ...


class Submitter(Protocol):
    async def submit(self, draft_id: str, answers: Dict[str, str]) -> SubmissionReceipt:
        ...


class CheckoutSubmitter(Protocol):
    async def submit_checkout(self, draft_id: str, answers: Dict[str, str]) -> CheckoutReceipt:
        ...


class PaymentFlow(Protocol):
    async def start(
        self,
        request: PaymentRequest,
        on_success: PaymentCallback,
        on_cancel: PaymentCallback,
    ) -> None:
        """Hand off to the payment gateway; exactly one callback fires later."""
        ...
