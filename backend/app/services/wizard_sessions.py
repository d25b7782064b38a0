"""In-process registry of live wizard sessions.

A wizard run spans many HTTP requests; its controller lives here, keyed by
an opaque session id, until it is closed or sits idle longer than
``QUOTE_SESSION_TTL_SECONDS``.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.auth import SessionAuth
from app.quote_wizard.config import WizardSettings, wizard_settings
from app.quote_wizard.contracts import ObjectStore, ServiceCatalog
from app.quote_wizard.controller import QuoteWizardController
from app.quote_wizard.session_store import DraftSessionStore
from app.services.payment_flow import DeferredPaymentFlow

logger = logging.getLogger(__name__)


@dataclass
class WizardSessionEntry:
    session_id: str
    controller: QuoteWizardController
    auth: SessionAuth
    payment_flow: DeferredPaymentFlow
    owner_id: Optional[str] = None
    last_seen: float = field(default_factory=time.monotonic)


class WizardSessionRegistry:
    """Create, look up and expire wizard sessions."""

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, WizardSessionEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def session_ids(self) -> List[str]:
        return list(self._entries)

    def add(
        self,
        controller: QuoteWizardController,
        auth: SessionAuth,
        payment_flow: DeferredPaymentFlow,
    ) -> WizardSessionEntry:
        self.purge_expired()
        entry = WizardSessionEntry(
            session_id=uuid.uuid4().hex,
            controller=controller,
            auth=auth,
            payment_flow=payment_flow,
            owner_id=auth.user_id,
            last_seen=self._clock(),
        )
        self._entries[entry.session_id] = entry
        return entry

    def get(self, session_id: str) -> Optional[WizardSessionEntry]:
        self.purge_expired()
        entry = self._entries.get(session_id)
        if entry is not None:
            entry.last_seen = self._clock()
        return entry

    def remove(self, session_id: str) -> None:
        entry = self._entries.pop(session_id, None)
        if entry is not None:
            entry.controller.close()

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [
            sid
            for sid, entry in self._entries.items()
            if now - entry.last_seen > self.ttl_seconds
        ]
        for sid in expired:
            self.remove(sid)
        if expired:
            logger.info("Expired %d idle wizard session(s)", len(expired))
        return len(expired)


# ---------------------------------------------------------------------------
# Collaborator wiring
# ---------------------------------------------------------------------------


class WizardBackend:
    """Builds the collaborators of a new wizard session.

    Args:
        catalog: Shared service catalog.
        object_store: Shared attachment storage.
        record_factory: ``record_factory(auth)`` returns the per-session SQL
            store (drafts, attachment rows, submission, checkout,
            ``settle_invoice``).
        session_store: Shared local draft cache.
        settings: Wizard settings.
    """

    def __init__(
        self,
        catalog: ServiceCatalog,
        object_store: ObjectStore,
        record_factory: Callable[[SessionAuth], Any],
        session_store: Optional[DraftSessionStore] = None,
        settings: WizardSettings = wizard_settings,
    ) -> None:
        self.catalog = catalog
        self.object_store = object_store
        self.record_factory = record_factory
        self.session_store = session_store if session_store is not None else DraftSessionStore()
        self.settings = settings

    def build(
        self, user: Optional[Dict[str, Any]]
    ) -> Tuple[QuoteWizardController, SessionAuth, DeferredPaymentFlow]:
        auth = SessionAuth(user)
        records = self.record_factory(auth)
        payment_flow = DeferredPaymentFlow(settle=records.settle_invoice)
        controller = QuoteWizardController(
            catalog=self.catalog,
            auth=auth,
            draft_creator=records,
            object_store=self.object_store,
            record_store=records,
            submitter=records,
            checkout=records,
            payment_flow=payment_flow,
            session_store=self.session_store,
            settings=self.settings,
        )
        return controller, auth, payment_flow
