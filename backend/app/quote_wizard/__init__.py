"""Quote & checkout wizard core.

Framework-free, asyncio-based logic behind the service-request wizard:

- validation.py: field / step / required-document validation
- pricing.py: base tariff x urgency + shipping
- session_store.py: local cache of in-progress answers
- drafts.py: lazy, exactly-once draft application creation
- attachments.py: two-phase upload / delete per file field
- controller.py: the wizard state machine composing all of the above

Concrete collaborators (storage, database, auth, catalog) live in the
surrounding ``app`` package.
"""

from app.quote_wizard.controller import QuoteWizardController  # noqa: F401
from app.quote_wizard.errors import (  # noqa: F401
    AttachmentRejectedError,
    AuthRequiredError,
    ConsistencyError,
    DraftNotReadyError,
    FieldValidationError,
    QuoteWizardError,
    TransientIOError,
)
from app.quote_wizard.models import FlowMode, WizardStatus  # noqa: F401
