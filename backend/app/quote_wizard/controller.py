"""Quote & checkout wizard controller.

State machine over the step plan of :mod:`app.quote_wizard.steps`:

    quote:    Contact -> Requirements -> Review -> [Submitted]
    checkout: Contact -> Requirements -> Review -> Payment -> [PaymentConfirmed]

Controller status (independent of the step):

    checking -> unauthenticated | ready
    ready -> submitting -> ready | submitted | payment
    payment -> payment_confirmed | ready

All collaborators are injected.  Consumers observe the controller through
``subscribe``; every mutation emits a ``WizardEvent`` carrying an immutable
snapshot.  Validation problems are data (``errors``), not exceptions.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from app.quote_wizard.attachments import AttachmentLifecycleManager
from app.quote_wizard.config import WizardSettings, wizard_settings
from app.quote_wizard.contracts import (
    AttachmentRecordStore,
    AuthProvider,
    CheckoutSubmitter,
    DraftCreator,
    ObjectStore,
    PaymentFlow,
    ServiceCatalog,
    Submitter,
)
from app.quote_wizard.drafts import DraftApplicationManager
from app.quote_wizard.errors import (
    AuthRequiredError,
    ConsistencyError,
    DraftNotReadyError,
    FieldValidationError,
    QuoteWizardError,
    TransientIOError,
    call_collaborator,
)
from app.quote_wizard.models import (
    Attachment,
    FieldKind,
    FieldSchema,
    FlowMode,
    IncomingFile,
    PaymentRequest,
    PricingQuote,
    ServicePricingMeta,
    StepKey,
    WizardEvent,
    WizardSession,
    WizardSnapshot,
    WizardStatus,
)
from app.quote_wizard.pricing import quote_from_answers
from app.quote_wizard.session_store import DraftSessionStore
from app.quote_wizard.steps import (
    DELIVERY_COUNT_FIELD,
    DELIVERY_TYPE_FIELD,
    PRICE_FIELDS,
    WizardStep,
    all_fields,
    build_steps,
    form_steps,
)
from app.quote_wizard.validation import (
    validate_field,
    validate_required_documents,
    validate_step,
)

logger = logging.getLogger(__name__)

Listener = Callable[[WizardEvent], Any]

SIGN_IN_MESSAGE = "Please sign in to continue your request."
DRAFT_WAIT_MESSAGE = "We're preparing your request. Please wait a moment, then upload again."
FIX_ERRORS_MESSAGE = "Please fix the highlighted fields before submitting."
MISSING_DOCUMENTS_MESSAGE = (
    "Some required documents appear to be missing. "
    "Upload them or confirm to submit anyway."
)
PAYMENT_CANCELLED_MESSAGE = (
    "Payment was cancelled. You can review your request and try again."
)
QUOTE_ONLY_MESSAGE = (
    "This service is priced by custom quote and cannot be checked out online."
)
SUBMIT_HINT_MESSAGE = "Everything is ready. Submit your request when you are done reviewing."

# Statuses in which the request has left the customer's hands
_IN_FLIGHT = (WizardStatus.SUBMITTING, WizardStatus.PAYMENT)


def _owner_of(user: Optional[Dict[str, Any]]) -> Optional[str]:
    if not user or not user.get("id"):
        return None
    return str(user["id"])


class QuoteWizardController:
    """Top-level wizard state machine for one service at a time.

    Args:
        catalog: Field schemas and pricing metadata per service.
        auth: Current-user lookup plus sign-in/sign-out notifications.
        draft_creator: Creates the server-side draft application.
        object_store: Stores attachment bytes.
        record_store: Stores attachment metadata rows.
        submitter: Final submission in quote mode.
        checkout: Checkout call in checkout mode.
        payment_flow: Payment hand-off in checkout mode.
        session_store: Local cache of in-progress answers.
        settings: Validation, upload and currency settings.
    """

    def __init__(
        self,
        *,
        catalog: ServiceCatalog,
        auth: AuthProvider,
        draft_creator: DraftCreator,
        object_store: ObjectStore,
        record_store: AttachmentRecordStore,
        submitter: Optional[Submitter] = None,
        checkout: Optional[CheckoutSubmitter] = None,
        payment_flow: Optional[PaymentFlow] = None,
        session_store: Optional[DraftSessionStore] = None,
        settings: WizardSettings = wizard_settings,
    ) -> None:
        self._catalog = catalog
        self._auth = auth
        self._objects = object_store
        self._records = record_store
        self._submitter = submitter
        self._checkout = checkout
        self._payment_flow = payment_flow
        self._store = session_store if session_store is not None else DraftSessionStore()
        self._settings = settings

        self._drafts = DraftApplicationManager(draft_creator)
        self._attachments: Optional[AttachmentLifecycleManager] = None
        self._listeners: List[Listener] = []
        self._tasks: Set[asyncio.Task] = set()
        self._auth_unsubscribe: Optional[Callable[[], None]] = None
        self._generation = 0
        self._owner_id: Optional[str] = None

        self.status = WizardStatus.CHECKING
        self.session: Optional[WizardSession] = None
        self.locale = "en"
        self.steps: List[WizardStep] = []
        self.fields: Dict[str, FieldSchema] = {}
        self.pricing_meta: Optional[ServicePricingMeta] = None
        self.pricing: Optional[PricingQuote] = None
        self._reset_view_state()

    def _reset_view_state(self) -> None:
        self.suggestions: Dict[str, str] = {}
        self.notices: Dict[str, str] = {}
        self.banner: Optional[str] = None
        self.missing_documents: List[str] = []
        self.order_number: Optional[str] = None
        self.invoice_id: Optional[str] = None
        self.busy = False

    # ------------------------------------------------------------------
    # Observer
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener* for wizard events; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event_type: str, **payload: Any) -> None:
        event = WizardEvent(type=event_type, snapshot=self.snapshot(), payload=payload)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Wizard listener failed on %s event", event_type)

    def snapshot(self) -> WizardSnapshot:
        session = self.session
        step = self.current_step
        return WizardSnapshot(
            status=self.status,
            service_id=session.service_id if session else None,
            flow_mode=session.flow_mode if session else None,
            locale=self.locale,
            step_index=session.current_step_index if session else 0,
            step_key=step.key if step else None,
            step_count=len(self.steps),
            answers=dict(session.answers) if session else {},
            errors=dict(session.errors) if session else {},
            suggestions=dict(self.suggestions),
            notices=dict(self.notices),
            attachments=dict(session.attachments) if session else {},
            uploading_fields=sorted(session.uploading_fields) if session else [],
            has_draft=bool(session and session.draft_id),
            pricing=self.pricing,
            busy=self.busy,
            banner=self.banner,
            missing_documents=list(self.missing_documents),
            order_number=self.order_number,
            invoice_id=self.invoice_id,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def current_step(self) -> Optional[WizardStep]:
        if self.session is None or not self.steps:
            return None
        return self.steps[self.session.current_step_index]

    @property
    def draft_id(self) -> Optional[str]:
        return self.session.draft_id if self.session else None

    def _form_steps(self) -> List[WizardStep]:
        return form_steps(self.steps)

    def _require_session(self) -> WizardSession:
        if self.session is None:
            raise ConsistencyError("The wizard has not been initialized.")
        return self.session

    def _require_ready(self) -> WizardSession:
        session = self._require_session()
        if self.status in (WizardStatus.CHECKING, WizardStatus.UNAUTHENTICATED):
            raise AuthRequiredError(SIGN_IN_MESSAGE)
        if self.status is not WizardStatus.READY:
            raise ConsistencyError(
                f"This action is not available while the request is {self.status.value}."
            )
        return session

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self.session is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(
        self, service_id: str, flow_mode: FlowMode = FlowMode.QUOTE, locale: str = "en"
    ) -> WizardSnapshot:
        """Start a wizard run for *service_id*.

        Loads the catalog entry and checks authentication concurrently,
        restores the signed-in user's cached answers, then materializes
        the draft.

        Raises:
            ConsistencyError: Checkout requested for a quote-priced service,
                or the collaborators for the flow mode are missing.
            TransientIOError: The catalog or auth collaborator failed.
        """
        flow_mode = FlowMode(flow_mode)
        if flow_mode is FlowMode.QUOTE and self._submitter is None:
            raise ConsistencyError("Quote mode requires a submission collaborator.")
        if flow_mode is FlowMode.CHECKOUT and (
            self._checkout is None or self._payment_flow is None
        ):
            raise ConsistencyError("Checkout mode requires checkout and payment collaborators.")

        self._generation += 1
        generation = self._generation
        self._drafts.reset()
        if self._attachments is not None:
            self._attachments.reset()

        self.locale = locale
        self.status = WizardStatus.CHECKING
        self.session = WizardSession(service_id=service_id, flow_mode=flow_mode)
        self._attachments = AttachmentLifecycleManager(
            self.session,
            self._objects,
            self._records,
            settings=self._settings,
            on_change=lambda: self._emit("state_changed"),
        )
        self.steps = []
        self.fields = {}
        self.pricing_meta = None
        self.pricing = None
        self._reset_view_state()
        if self._auth_unsubscribe is None:
            self._auth_unsubscribe = self._auth.subscribe(self._on_auth_change)
        self._emit("state_changed")

        try:
            schemas, meta, user = await asyncio.gather(
                call_collaborator(
                    "Loading the service", self._catalog.get_field_schemas(service_id)
                ),
                call_collaborator(
                    "Loading the service",
                    self._catalog.get_service_pricing_meta(service_id),
                ),
                call_collaborator("Checking your sign-in", self._auth.get_current_user()),
            )
        except TransientIOError as exc:
            if self._is_current(generation):
                self.banner = exc.message
                self._emit("state_changed")
            raise

        if not self._is_current(generation):
            return self.snapshot()

        if flow_mode is FlowMode.CHECKOUT and not meta.has_numeric_tariff:
            self.banner = QUOTE_ONLY_MESSAGE
            self._emit("state_changed")
            raise ConsistencyError(QUOTE_ONLY_MESSAGE)

        self.pricing_meta = meta
        self.steps = build_steps(flow_mode, schemas)
        self.fields = all_fields(self.steps)
        self._owner_id = _owner_of(user)
        self._restore_cached_answers()
        self._recompute_pricing()
        logger.info(
            "Wizard initialized for service %s (%s mode, %d cached answers)",
            service_id,
            flow_mode.value,
            len(self.session.answers),
        )

        if user is None:
            self._set_unauthenticated()
            return self.snapshot()

        self.status = WizardStatus.READY
        self._emit("state_changed")
        await self._materialize_draft(generation)
        return self.snapshot()

    async def refresh_auth(self) -> WizardSnapshot:
        """Re-run the authentication check, e.g. after the user signed in."""
        self._require_session()
        generation = self._generation
        user = await call_collaborator("Checking your sign-in", self._auth.get_current_user())
        if not self._is_current(generation):
            return self.snapshot()

        if user is None:
            self._auth_lost()
            return self.snapshot()

        if self.status in _IN_FLIGHT:
            self._auth_restored()
            return self.snapshot()

        if self.status in (WizardStatus.CHECKING, WizardStatus.UNAUTHENTICATED) and self.steps:
            self._owner_id = _owner_of(user)
            if self._restore_cached_answers():
                self._recompute_pricing()
            self.status = WizardStatus.READY
            self.banner = None
            self._emit("state_changed")
        if self.session.draft_id is None and self.status is WizardStatus.READY:
            await self._materialize_draft(generation)
        return self.snapshot()

    def _restore_cached_answers(self) -> int:
        """Merge the signed-in owner's cached answers into unanswered fields."""
        session = self.session
        if self._owner_id is None:
            return 0
        cached = self._store.load(session.service_id, self._owner_id)
        restored = {
            name: value
            for name, value in cached.items()
            if name in self.fields
            and self.fields[name].kind is not FieldKind.FILE
            and name not in session.answers
        }
        session.answers.update(restored)
        return len(restored)

    async def _materialize_draft(self, generation: int) -> None:
        session = self.session
        try:
            draft_id = await self._drafts.ensure_draft(session.service_id, self.locale)
        except AuthRequiredError:
            if self._is_current(generation):
                self._set_unauthenticated()
            return
        except QuoteWizardError as exc:
            logger.warning(
                "Draft creation failed for service %s: %s", session.service_id, exc.message
            )
            if self._is_current(generation):
                self.banner = exc.message
                self._emit("state_changed")
            return

        if draft_id is None or not self._is_current(generation):
            return
        if session.draft_id is None:
            session.draft_id = draft_id
            self.notices.clear()
            self._emit("state_changed")

    def _set_unauthenticated(self) -> None:
        self.status = WizardStatus.UNAUTHENTICATED
        self.banner = SIGN_IN_MESSAGE
        self.busy = False
        self._emit("state_changed")

    def _auth_lost(self) -> None:
        """Sign-out handling; a submission or payment in flight keeps its status.

        The pending payment or submission callback still settles the run, so
        only the banner asks the customer to sign in again.
        """
        if self.status in _IN_FLIGHT:
            if self.banner != SIGN_IN_MESSAGE:
                self.banner = SIGN_IN_MESSAGE
                self._emit("state_changed")
            return
        self._set_unauthenticated()

    def _auth_restored(self) -> None:
        if self.banner == SIGN_IN_MESSAGE:
            self.banner = None
            self._emit("state_changed")

    def _on_auth_change(self, user: Optional[Dict[str, Any]]) -> None:
        if self.session is None:
            return
        if user is None:
            if self.status not in (WizardStatus.CHECKING, WizardStatus.UNAUTHENTICATED):
                logger.info("User signed out during wizard for %s", self.session.service_id)
                self._auth_lost()
        elif self.status in _IN_FLIGHT:
            self._auth_restored()
        elif self.status is WizardStatus.UNAUTHENTICATED:
            self._spawn(self.refresh_auth())

    def _spawn(self, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("No running event loop; skipping background wizard task")
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Background wizard task failed: %s", task.exception())

    def close(self) -> None:
        """Detach from the auth collaborator and cancel background work."""
        if self._auth_unsubscribe is not None:
            self._auth_unsubscribe()
            self._auth_unsubscribe = None
        for task in list(self._tasks):
            task.cancel()
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def set_field(self, name: str, value: Optional[str]) -> WizardSnapshot:
        """Update one answer and validate that field only."""
        session = self._require_ready()
        schema = self.fields.get(name)
        if schema is None:
            raise ConsistencyError(f"Unknown field: {name}")
        if schema.kind is FieldKind.FILE:
            raise ConsistencyError(f"Field {name} takes a file upload, not a value.")

        value = "" if value is None else str(value)
        session.answers[name] = value

        issue = validate_field(schema, value, self._settings)
        if issue is None:
            session.errors.pop(name, None)
            self.suggestions.pop(name, None)
        else:
            session.errors[name] = issue.message
            if issue.suggestion:
                self.suggestions[name] = issue.suggestion
            else:
                self.suggestions.pop(name, None)

        if name in (DELIVERY_TYPE_FIELD, DELIVERY_COUNT_FIELD):
            self._reconcile_delivery_count()

        if self._owner_id is not None:
            self._store.save(session.service_id, session.answers, self._owner_id)
        if name in PRICE_FIELDS:
            self._recompute_pricing()
        self._emit("state_changed", field=name)
        return self.snapshot()

    def _reconcile_delivery_count(self) -> None:
        """Keep the cross-field delivery count error in sync with both fields."""
        session = self.session
        step = next(
            (s for s in self.steps if DELIVERY_TYPE_FIELD in s.field_names), None
        )
        if step is None:
            return
        step_errors = validate_step(
            step.fields, session.answers, session.attachments, (), self._settings
        )
        count_error = step_errors.get(DELIVERY_COUNT_FIELD)
        if count_error is None:
            session.errors.pop(DELIVERY_COUNT_FIELD, None)
        elif session.answers.get(DELIVERY_COUNT_FIELD) is not None:
            session.errors[DELIVERY_COUNT_FIELD] = count_error

    def _recompute_pricing(self) -> None:
        if self.pricing_meta is None or self.session is None:
            self.pricing = None
            return
        self.pricing = quote_from_answers(
            self.pricing_meta, self.session.answers, self.session.flow_mode
        )

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    def _file_schema(self, field_name: str) -> FieldSchema:
        schema = self.fields.get(field_name)
        if schema is None or schema.kind is not FieldKind.FILE:
            raise ConsistencyError(f"Field {field_name} does not accept files.")
        return schema

    def _kick_draft_creation(self) -> None:
        if self.session.draft_id is None and not self._drafts.creating:
            self._spawn(self._materialize_draft(self._generation))

    async def attach_file(self, field_name: str, file: IncomingFile) -> Optional[Attachment]:
        """Upload *file* to a file field.

        Rejections and upload failures become a field error and return None.

        Raises:
            DraftNotReadyError: No draft yet; a "please wait" notice is set
                and the caller should retry once ``has_draft`` is true.
        """
        session = self._require_ready()
        self._file_schema(field_name)
        manager = self._attachments
        generation = self._generation

        if session.draft_id is None:
            self.notices[field_name] = DRAFT_WAIT_MESSAGE
            self._kick_draft_creation()
            self._emit("state_changed", field=field_name)
            raise DraftNotReadyError()

        self.notices.pop(field_name, None)
        try:
            attachment = await manager.attach(field_name, file)
        except DraftNotReadyError:
            if self._is_current(generation):
                self.notices[field_name] = DRAFT_WAIT_MESSAGE
                self._emit("state_changed", field=field_name)
            raise
        except (FieldValidationError, TransientIOError) as exc:
            if self._is_current(generation):
                session.errors[field_name] = exc.message
                self._emit("state_changed", field=field_name)
            return None

        if attachment is None or not self._is_current(generation):
            return None
        session.errors.pop(field_name, None)
        self._emit("state_changed", field=field_name)
        return attachment

    async def detach_file(self, field_name: str) -> bool:
        """Remove the attachment of a file field.

        A failed remote delete becomes a field error and the attachment is kept.
        """
        session = self._require_ready()
        self._file_schema(field_name)
        generation = self._generation
        try:
            removed = await self._attachments.detach(field_name)
        except TransientIOError as exc:
            if self._is_current(generation):
                session.errors[field_name] = exc.message
                self._emit("state_changed", field=field_name)
            return False

        if self._is_current(generation):
            session.errors.pop(field_name, None)
            self._emit("state_changed", field=field_name)
        return removed

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def _step_errors(self, step: WizardStep) -> Dict[str, str]:
        session = self.session
        return validate_step(
            step.fields,
            session.answers,
            session.attachments,
            session.uploading_fields,
            self._settings,
        )

    def _replace_step_errors(self, step: WizardStep, errors: Dict[str, str]) -> None:
        for name in step.field_names:
            if name in errors:
                self.session.errors[name] = errors[name]
            else:
                self.session.errors.pop(name, None)

    def go_next(self) -> bool:
        """Advance one step if the current step is valid.

        Review is the last step ``go_next`` can reach.  Leaving it is a
        submission, so a valid Review step returns False and sets the
        ``SUBMIT_HINT_MESSAGE`` banner pointing at ``submit_final``.

        Returns:
            True if the step changed.  Always False in the payment state.
        """
        if self.status is WizardStatus.PAYMENT:
            return False
        session = self._require_ready()
        step = self.current_step
        errors = self._step_errors(step)
        self._replace_step_errors(step, errors)
        if errors:
            logger.debug("Step %s blocked by %d field(s)", step.key.value, len(errors))
            self._emit("state_changed")
            return False

        if session.current_step_index >= len(self._form_steps()) - 1:
            if self.banner != SUBMIT_HINT_MESSAGE:
                self.banner = SUBMIT_HINT_MESSAGE
                self._emit("state_changed")
            return False

        previous = step.key
        session.current_step_index += 1
        self.banner = None
        self._emit(
            "step_changed", from_step=previous.value, to_step=self.current_step.key.value
        )
        return True

    def go_back(self) -> bool:
        """Return to the previous step, clearing the current step's errors."""
        if self.status is WizardStatus.PAYMENT:
            return False
        session = self._require_ready()
        if session.current_step_index == 0:
            return False

        step = self.current_step
        for name in step.field_names:
            session.errors.pop(name, None)
        session.current_step_index -= 1
        self.banner = None
        self._emit(
            "step_changed", from_step=step.key.value, to_step=self.current_step.key.value
        )
        return True

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_final(self, acknowledge_missing_documents: bool = False) -> WizardSnapshot:
        """Validate every step and submit (quote) or start checkout.

        Invalid steps jump the wizard to the first invalid one with a banner.
        Missing required documents block submission unless acknowledged.
        Collaborator failures leave the session intact with a banner.

        Raises:
            AuthRequiredError: Not signed in, or sign-in expired on submit.
            DraftNotReadyError: The draft has not been created yet.
            ConsistencyError: A submission is already in progress.
        """
        if self.busy:
            raise ConsistencyError("Your request is already being submitted.")
        session = self._require_ready()

        all_errors: Dict[str, str] = {}
        first_invalid: Optional[int] = None
        for index, step in enumerate(self._form_steps()):
            errors = self._step_errors(step)
            self._replace_step_errors(step, errors)
            if errors and first_invalid is None:
                first_invalid = index
            all_errors.update(errors)

        if first_invalid is not None:
            previous = self.current_step.key
            session.current_step_index = first_invalid
            self.banner = FIX_ERRORS_MESSAGE
            if previous is not self.current_step.key:
                self._emit(
                    "step_changed",
                    from_step=previous.value,
                    to_step=self.current_step.key.value,
                )
            else:
                self._emit("state_changed")
            return self.snapshot()

        if session.draft_id is None:
            self._kick_draft_creation()
            raise DraftNotReadyError()

        required_documents = self.pricing_meta.required_documents if self.pricing_meta else []
        self.missing_documents = validate_required_documents(
            required_documents, [a.file_name for a in session.attachments.values()]
        )
        if self.missing_documents and not acknowledge_missing_documents:
            self.banner = MISSING_DOCUMENTS_MESSAGE
            self._emit("state_changed")
            return self.snapshot()

        generation = self._generation
        self.busy = True
        self.status = WizardStatus.SUBMITTING
        self.banner = None
        self._emit("state_changed")

        if session.flow_mode is FlowMode.QUOTE:
            await self._submit_quote(session, generation)
        else:
            await self._submit_checkout(session, generation)
        return self.snapshot()

    async def _run_submission(self, operation: str, awaitable, generation: int):
        """Await a submission call; on failure restore ``ready`` and return None."""
        try:
            return await call_collaborator(operation, awaitable)
        except AuthRequiredError:
            if self._is_current(generation):
                self._set_unauthenticated()
            raise
        except QuoteWizardError as exc:
            if self._is_current(generation):
                self.busy = False
                self.status = WizardStatus.READY
                self.banner = exc.message
                self._emit("state_changed")
            return None

    async def _submit_quote(self, session: WizardSession, generation: int) -> None:
        draft_id = session.draft_id
        receipt = await self._run_submission(
            "Submitting your request",
            self._submitter.submit(draft_id, dict(session.answers)),
            generation,
        )
        if receipt is None or not self._is_current(generation):
            return

        logger.info("Submitted draft %s as order %s", draft_id, receipt.order_number)
        self._finish(session)
        self.order_number = receipt.order_number
        self.status = WizardStatus.SUBMITTED
        self._emit("submitted", order_number=receipt.order_number)

    async def _submit_checkout(self, session: WizardSession, generation: int) -> None:
        draft_id = session.draft_id
        receipt = await self._run_submission(
            "Starting checkout",
            self._checkout.submit_checkout(draft_id, dict(session.answers)),
            generation,
        )
        if receipt is None or not self._is_current(generation):
            return

        amount = receipt.amount if receipt.amount is not None else self.pricing.total
        request = PaymentRequest(
            invoice_id=receipt.invoice_id, amount=amount, currency=self._settings.currency
        )
        self.invoice_id = receipt.invoice_id
        self.order_number = receipt.order_number
        review_index = session.current_step_index
        session.current_step_index = len(self.steps) - 1
        self.status = WizardStatus.PAYMENT
        self.busy = False
        self._emit(
            "payment_started",
            invoice_id=receipt.invoice_id,
            amount=str(amount),
            currency=request.currency,
        )
        logger.info("Checkout for draft %s created invoice %s", draft_id, receipt.invoice_id)

        async def on_success() -> None:
            if not self._is_current(generation) or self.status is not WizardStatus.PAYMENT:
                return
            logger.info("Payment confirmed for invoice %s", request.invoice_id)
            self._finish(session)
            self.status = WizardStatus.PAYMENT_CONFIRMED
            self._emit(
                "payment_confirmed",
                invoice_id=request.invoice_id,
                order_number=self.order_number,
            )

        async def on_cancel() -> None:
            if not self._is_current(generation) or self.status is not WizardStatus.PAYMENT:
                return
            logger.info("Payment cancelled for invoice %s", request.invoice_id)
            session.current_step_index = review_index
            self.status = WizardStatus.READY
            self.banner = PAYMENT_CANCELLED_MESSAGE
            self._emit("payment_cancelled", invoice_id=request.invoice_id)

        try:
            await call_collaborator(
                "Starting payment", self._payment_flow.start(request, on_success, on_cancel)
            )
        except QuoteWizardError as exc:
            if self._is_current(generation) and self.status is WizardStatus.PAYMENT:
                session.current_step_index = review_index
                self.status = WizardStatus.READY
                self.banner = exc.message
                self._emit("state_changed")

    def _clear_cache(self, session: WizardSession) -> None:
        if self._owner_id is not None:
            self._store.clear(session.service_id, self._owner_id)

    def _finish(self, session: WizardSession) -> None:
        """Terminal success: the local cache is discarded, not merged."""
        self._clear_cache(session)
        self._generation += 1
        self._drafts.reset()
        self._attachments.reset()
        session.clear()
        self.missing_documents = []
        self.notices.clear()
        self.suggestions.clear()
        self.busy = False
        self.banner = None
        self._recompute_pricing()

    def reset(self) -> WizardSnapshot:
        """Discard cached answers, the session state and the draft identity."""
        session = self.session
        if session is None:
            return self.snapshot()

        self._clear_cache(session)
        self._generation += 1
        self._drafts.reset()
        self._attachments.reset()
        session.clear()
        self._reset_view_state()
        if self.status not in (WizardStatus.CHECKING, WizardStatus.UNAUTHENTICATED):
            self.status = WizardStatus.READY if self.steps else WizardStatus.CHECKING
        self._recompute_pricing()
        logger.info("Wizard reset for service %s", session.service_id)
        self._emit("reset")
        return self.snapshot()
