"""
Scenario Tests for the Quote Wizard Controller

Drives QuoteWizardController end to end against in-memory collaborators:
- initialization, sign-in / sign-out and cached answers
- per-field editing, suggestions, pricing recomputation
- step navigation and the required-file gate
- attachments through the controller (draft gating, failures as data)
- quote submission, checkout + payment callbacks, reset

Usage:
    cd backend && pytest tests/test_controller.py -v
"""

import asyncio
from decimal import Decimal

import pytest

from app.quote_wizard.controller import (
    DRAFT_WAIT_MESSAGE,
    FIX_ERRORS_MESSAGE,
    MISSING_DOCUMENTS_MESSAGE,
    PAYMENT_CANCELLED_MESSAGE,
    QUOTE_ONLY_MESSAGE,
    SIGN_IN_MESSAGE,
    SUBMIT_HINT_MESSAGE,
)
from app.quote_wizard.errors import (
    AuthRequiredError,
    ConsistencyError,
    DraftNotReadyError,
    TransientIOError,
)
from app.quote_wizard.models import FlowMode, StepKey, TariffType, WizardStatus
from app.quote_wizard.validation import (
    FILE_REQUIRED_MESSAGE,
    UPLOAD_IN_PROGRESS_MESSAGE,
    validate_step,
)
from tests.fakes import (
    SERVICE_SLUG,
    TEST_USER,
    VALID_CONTACT,
    FakeCatalog,
    FakeCheckout,
    WizardHarness,
    make_file,
    make_pricing_meta,
)


async def settle(rounds: int = 10) -> None:
    """Let background wizard tasks run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def complete_form(harness: WizardHarness, **requirements: str) -> None:
    """Fill contact and requirements and stop on the review step."""
    controller = harness.controller
    harness.fill(VALID_CONTACT)
    assert controller.go_next() is True
    await controller.attach_file("passport_copy", make_file())
    harness.fill({"target_language": "ar", **requirements})
    assert controller.go_next() is True
    assert controller.snapshot().step_key is StepKey.REVIEW


# ============================================================================
# INITIALIZATION AND AUTHENTICATION
# ============================================================================


class TestInitialize:
    """Tests for initialize / refresh_auth and auth notifications."""

    @pytest.mark.asyncio
    async def test_ready_with_draft(self, harness):
        snapshot = await harness.controller.initialize(SERVICE_SLUG)

        assert snapshot.status is WizardStatus.READY
        assert snapshot.has_draft is True
        assert harness.controller.draft_id == "draft-1"
        assert snapshot.step_key is StepKey.CONTACT
        assert snapshot.step_count == 3
        assert snapshot.pricing.total == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_checkout_plan(self, harness):
        snapshot = await harness.controller.initialize(SERVICE_SLUG, FlowMode.CHECKOUT)

        assert snapshot.step_count == 4
        requirements = harness.controller.steps[1]
        assert requirements.field_names[:3] == [
            "passport_copy",
            "supporting_letter",
            "target_language",
        ]
        assert "shipping_location" in requirements.field_names
        assert harness.controller.steps[-1].key is StepKey.PAYMENT

    @pytest.mark.asyncio
    async def test_unauthenticated(self, harness):
        harness.auth.user = None

        snapshot = await harness.controller.initialize(SERVICE_SLUG)

        assert snapshot.status is WizardStatus.UNAUTHENTICATED
        assert snapshot.banner == SIGN_IN_MESSAGE
        assert harness.drafts.calls == 0
        with pytest.raises(AuthRequiredError):
            harness.controller.set_field("name", "Lina")

    @pytest.mark.asyncio
    async def test_sign_in_resumes_and_creates_draft(self, harness):
        harness.auth.user = None
        await harness.controller.initialize(SERVICE_SLUG)

        harness.auth.sign_in()
        await settle()

        snapshot = harness.controller.snapshot()
        assert snapshot.status is WizardStatus.READY
        assert snapshot.has_draft is True
        assert snapshot.banner is None
        assert harness.drafts.calls == 1

    @pytest.mark.asyncio
    async def test_sign_out_requires_sign_in(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)

        harness.auth.sign_out()

        assert harness.controller.status is WizardStatus.UNAUTHENTICATED
        with pytest.raises(AuthRequiredError):
            harness.controller.go_next()

    @pytest.mark.asyncio
    async def test_checkout_rejected_for_quote_priced_service(self, settings):
        harness = WizardHarness(
            catalog=FakeCatalog(meta=make_pricing_meta(TariffType.QUOTE, None)),
            settings=settings,
        )

        with pytest.raises(ConsistencyError):
            await harness.controller.initialize(SERVICE_SLUG, FlowMode.CHECKOUT)
        assert harness.controller.snapshot().banner == QUOTE_ONLY_MESSAGE

    @pytest.mark.asyncio
    async def test_custom_pricing_allowed_in_quote_mode(self, settings):
        harness = WizardHarness(
            catalog=FakeCatalog(meta=make_pricing_meta(TariffType.QUOTE, None)),
            settings=settings,
        )

        snapshot = await harness.controller.initialize(SERVICE_SLUG)

        assert snapshot.pricing.custom_pricing is True

    @pytest.mark.asyncio
    async def test_catalog_failure(self, harness):
        harness.catalog.fail = True

        with pytest.raises(TransientIOError):
            await harness.controller.initialize(SERVICE_SLUG)
        assert harness.controller.snapshot().banner == (
            "Loading the service failed. Please try again."
        )

    @pytest.mark.asyncio
    async def test_draft_failure_leaves_wizard_usable(self, harness):
        harness.drafts.fail_with = RuntimeError("insert failed")

        snapshot = await harness.controller.initialize(SERVICE_SLUG)

        assert snapshot.status is WizardStatus.READY
        assert snapshot.has_draft is False
        assert snapshot.banner == "Preparing your request failed. Please try again."

    @pytest.mark.asyncio
    async def test_restores_cached_answers(self, harness):
        harness.store.save(
            SERVICE_SLUG,
            {"name": "Lina Haddad", "passport_copy": "passport.pdf", "retired_field": "x"},
            TEST_USER["id"],
        )

        snapshot = await harness.controller.initialize(SERVICE_SLUG)

        assert snapshot.answers == {"name": "Lina Haddad"}

    @pytest.mark.asyncio
    async def test_cached_answers_belong_to_their_owner(self, harness):
        harness.store.save(SERVICE_SLUG, {"name": "Someone Else"}, "another-user")

        snapshot = await harness.controller.initialize(SERVICE_SLUG)

        assert snapshot.answers == {}

    @pytest.mark.asyncio
    async def test_cached_answers_restored_after_sign_in(self, harness):
        harness.store.save(SERVICE_SLUG, {"name": "Lina Haddad"}, TEST_USER["id"])
        harness.auth.user = None
        snapshot = await harness.controller.initialize(SERVICE_SLUG)
        assert snapshot.answers == {}

        harness.auth.sign_in()
        await settle()

        assert harness.controller.snapshot().answers == {"name": "Lina Haddad"}


# ============================================================================
# EDITING
# ============================================================================


class TestSetField:
    """Tests for per-field editing."""

    @pytest.mark.asyncio
    async def test_invalid_email_with_suggestion(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)

        snapshot = harness.controller.set_field("email", "lina@gmai")

        assert snapshot.errors["email"] == "Please enter a valid email address."
        assert snapshot.suggestions["email"] == "lina@gmail.com"

        snapshot = harness.controller.set_field("email", "lina@gmail.com")
        assert "email" not in snapshot.errors
        assert "email" not in snapshot.suggestions

    @pytest.mark.asyncio
    async def test_answers_are_cached(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)

        harness.fill({"name": "Lina Haddad", "phone": "0592123456"})

        assert harness.store.load(SERVICE_SLUG, TEST_USER["id"]) == {
            "name": "Lina Haddad",
            "phone": "0592123456",
        }

    @pytest.mark.asyncio
    async def test_urgency_recomputes_pricing(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)

        snapshot = harness.controller.set_field("urgency", "urgent")

        assert snapshot.pricing.urgency_fee == Decimal("50.00")
        assert snapshot.pricing.total == Decimal("150.00")

    @pytest.mark.asyncio
    async def test_shipping_recomputes_pricing_in_checkout(self, harness):
        await harness.controller.initialize(SERVICE_SLUG, FlowMode.CHECKOUT)

        snapshot = harness.controller.set_field("shipping_location", "jerusalem")

        assert snapshot.pricing.shipping_fee == Decimal("30.00")
        assert snapshot.pricing.total == Decimal("130.00")

    @pytest.mark.asyncio
    async def test_delivery_count_error_follows_both_fields(self, harness):
        await harness.controller.initialize(SERVICE_SLUG, FlowMode.CHECKOUT)
        controller = harness.controller

        assert "delivery_count" not in controller.set_field("delivery_type", "multiple").errors
        assert "delivery_count" in controller.set_field("delivery_count", "1").errors
        assert "delivery_count" not in controller.set_field("delivery_count", "3").errors
        assert "delivery_count" in controller.set_field("delivery_count", "1").errors
        assert "delivery_count" not in controller.set_field("delivery_type", "single").errors

    @pytest.mark.asyncio
    async def test_unknown_and_file_fields(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)

        with pytest.raises(ConsistencyError):
            harness.controller.set_field("favourite_colour", "blue")
        with pytest.raises(ConsistencyError):
            harness.controller.set_field("passport_copy", "passport.pdf")


# ============================================================================
# NAVIGATION
# ============================================================================


class TestNavigation:
    """Tests for go_next / go_back."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "answers",
        [
            {},
            VALID_CONTACT,
            {**VALID_CONTACT, "phone": "+1592123456"},
            {**VALID_CONTACT, "email": "lina@"},
            {"name": "Lina Haddad"},
        ],
    )
    async def test_go_next_blocked_exactly_when_step_invalid(self, harness, settings, answers):
        await harness.controller.initialize(SERVICE_SLUG)
        harness.fill(answers)
        controller = harness.controller
        expected = validate_step(
            controller.current_step.fields, answers, set(), settings=settings
        )

        moved = controller.go_next()

        assert moved is (expected == {})
        snapshot = controller.snapshot()
        if moved:
            assert snapshot.step_key is StepKey.REQUIREMENTS
        else:
            assert snapshot.step_key is StepKey.CONTACT
            assert set(expected) <= set(snapshot.errors)

    @pytest.mark.asyncio
    async def test_step_changed_event(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)
        harness.fill(VALID_CONTACT)

        harness.controller.go_next()

        event = harness.events[-1]
        assert event.type == "step_changed"
        assert event.payload == {"from_step": "contact", "to_step": "requirements"}

    @pytest.mark.asyncio
    async def test_required_file_blocks_requirements(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)
        harness.fill(VALID_CONTACT)
        harness.controller.go_next()
        harness.fill({"target_language": "en"})

        assert harness.controller.go_next() is False
        assert harness.controller.snapshot().errors == {"passport_copy": FILE_REQUIRED_MESSAGE}

    @pytest.mark.asyncio
    async def test_go_back_clears_current_step_errors(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)
        harness.fill(VALID_CONTACT)
        harness.controller.go_next()
        harness.controller.go_next()

        assert harness.controller.go_back() is True
        snapshot = harness.controller.snapshot()
        assert snapshot.step_key is StepKey.CONTACT
        assert snapshot.errors == {}
        assert harness.controller.go_back() is False

    @pytest.mark.asyncio
    async def test_go_next_stops_at_review(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)
        await complete_form(harness)

        assert harness.controller.go_next() is False
        snapshot = harness.controller.snapshot()
        assert snapshot.step_key is StepKey.REVIEW
        assert snapshot.errors == {}
        assert snapshot.banner == SUBMIT_HINT_MESSAGE

        snapshot = await harness.controller.submit_final()
        assert snapshot.status is WizardStatus.SUBMITTED

    @pytest.mark.asyncio
    async def test_go_next_blocked_while_upload_in_flight(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)
        harness.fill(VALID_CONTACT)
        harness.controller.go_next()
        harness.fill({"target_language": "ar"})
        harness.objects.upload_gate = asyncio.Event()
        upload = asyncio.ensure_future(
            harness.controller.attach_file("passport_copy", make_file())
        )
        await settle()

        assert harness.controller.go_next() is False
        snapshot = harness.controller.snapshot()
        assert snapshot.step_key is StepKey.REQUIREMENTS
        assert snapshot.errors == {"passport_copy": UPLOAD_IN_PROGRESS_MESSAGE}

        harness.objects.upload_gate.set()
        assert await upload is not None
        assert harness.controller.go_next() is True


# ============================================================================
# ATTACHMENTS
# ============================================================================


class TestControllerAttachments:
    """Tests for attach_file / detach_file."""

    @pytest.mark.asyncio
    async def test_attach_and_detach(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)

        attachment = await harness.controller.attach_file("passport_copy", make_file())
        assert harness.controller.snapshot().attachments == {"passport_copy": attachment}

        assert await harness.controller.detach_file("passport_copy") is True
        assert harness.controller.snapshot().attachments == {}
        assert harness.objects.objects == {}
        assert harness.records.rows == {}

    @pytest.mark.asyncio
    async def test_attach_before_draft_asks_to_wait(self, harness):
        harness.drafts.gate = asyncio.Event()
        init = asyncio.ensure_future(harness.controller.initialize(SERVICE_SLUG))
        await settle()
        assert harness.controller.status is WizardStatus.READY

        with pytest.raises(DraftNotReadyError):
            await harness.controller.attach_file("passport_copy", make_file())
        assert harness.controller.snapshot().notices == {"passport_copy": DRAFT_WAIT_MESSAGE}
        assert harness.objects.objects == {}

        harness.drafts.gate.set()
        snapshot = await init
        assert snapshot.has_draft is True
        assert snapshot.notices == {}
        assert harness.drafts.calls == 1

        assert await harness.controller.attach_file("passport_copy", make_file()) is not None

    @pytest.mark.asyncio
    async def test_rejected_file_is_a_field_error(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)

        result = await harness.controller.attach_file(
            "passport_copy", make_file("passport.docx", "application/msword")
        )

        assert result is None
        assert "Unsupported file type" in harness.controller.snapshot().errors["passport_copy"]

    @pytest.mark.asyncio
    async def test_upload_failure_then_retry(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)
        harness.objects.fail_upload = True

        assert await harness.controller.attach_file("passport_copy", make_file()) is None
        assert harness.controller.snapshot().errors["passport_copy"] == (
            "Uploading the file failed. Please try again."
        )

        harness.objects.fail_upload = False
        assert await harness.controller.attach_file("passport_copy", make_file()) is not None
        assert "passport_copy" not in harness.controller.snapshot().errors

    @pytest.mark.asyncio
    async def test_failed_detach_keeps_attachment(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)
        await harness.controller.attach_file("passport_copy", make_file())
        harness.objects.fail_delete = True

        assert await harness.controller.detach_file("passport_copy") is False
        snapshot = harness.controller.snapshot()
        assert "passport_copy" in snapshot.attachments
        assert snapshot.errors["passport_copy"] == "Removing the file failed. Please try again."

    @pytest.mark.asyncio
    async def test_non_file_field(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)

        with pytest.raises(ConsistencyError):
            await harness.controller.attach_file("name", make_file())


# ============================================================================
# QUOTE SUBMISSION
# ============================================================================


class TestSubmitQuote:
    """Tests for submit_final in quote mode."""

    @pytest.mark.asyncio
    async def test_successful_submission(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)
        await complete_form(harness, urgency="express")

        snapshot = await harness.controller.submit_final()

        assert snapshot.status is WizardStatus.SUBMITTED
        assert snapshot.order_number == "ORD-20261019-A1B2C3"
        assert snapshot.answers == {}
        assert snapshot.has_draft is False
        assert harness.submitter.calls[0]["draft_id"] == "draft-1"
        assert harness.submitter.calls[0]["answers"]["urgency"] == "express"
        assert harness.store.load(SERVICE_SLUG, TEST_USER["id"]) == {}
        assert harness.event_types()[-1] == "submitted"

    @pytest.mark.asyncio
    async def test_invalid_step_jumps_back(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)
        await complete_form(harness)
        harness.controller.set_field("email", "lina@")

        snapshot = await harness.controller.submit_final()

        assert snapshot.status is WizardStatus.READY
        assert snapshot.step_key is StepKey.CONTACT
        assert snapshot.banner == FIX_ERRORS_MESSAGE
        assert "email" in snapshot.errors
        assert harness.submitter.calls == []
        assert harness.events[-1].payload == {"from_step": "review", "to_step": "contact"}

    @pytest.mark.asyncio
    async def test_missing_documents_need_acknowledgement(self, settings):
        harness = WizardHarness(
            catalog=FakeCatalog(meta=make_pricing_meta(required_documents=["Birth certificate"])),
            settings=settings,
        )
        await harness.controller.initialize(SERVICE_SLUG)
        await complete_form(harness)

        snapshot = await harness.controller.submit_final()
        assert snapshot.status is WizardStatus.READY
        assert snapshot.banner == MISSING_DOCUMENTS_MESSAGE
        assert snapshot.missing_documents == ["Birth certificate"]
        assert harness.submitter.calls == []

        snapshot = await harness.controller.submit_final(acknowledge_missing_documents=True)
        assert snapshot.status is WizardStatus.SUBMITTED

    @pytest.mark.asyncio
    async def test_submission_failure_keeps_session(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)
        await complete_form(harness)
        harness.submitter.fail_with = RuntimeError("timeout")

        snapshot = await harness.controller.submit_final()

        assert snapshot.status is WizardStatus.READY
        assert snapshot.busy is False
        assert snapshot.banner == "Submitting your request failed. Please try again."
        assert snapshot.answers["name"] == "Lina Haddad"
        assert snapshot.has_draft is True

    @pytest.mark.asyncio
    async def test_expired_sign_in_on_submit(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)
        await complete_form(harness)
        harness.submitter.fail_with = AuthRequiredError()

        with pytest.raises(AuthRequiredError):
            await harness.controller.submit_final()
        assert harness.controller.status is WizardStatus.UNAUTHENTICATED
        assert harness.controller.snapshot().answers["name"] == "Lina Haddad"

    @pytest.mark.asyncio
    async def test_submit_without_draft_starts_creation(self, settings):
        harness = WizardHarness(catalog=FakeCatalog(fields=[]), settings=settings)
        harness.drafts.fail_with = RuntimeError("insert failed")
        await harness.controller.initialize(SERVICE_SLUG)
        harness.fill(VALID_CONTACT)
        harness.controller.go_next()
        harness.controller.go_next()
        harness.drafts.fail_with = None

        with pytest.raises(DraftNotReadyError):
            await harness.controller.submit_final()
        await settle()

        assert harness.controller.snapshot().has_draft is True
        snapshot = await harness.controller.submit_final()
        assert snapshot.status is WizardStatus.SUBMITTED
        assert harness.drafts.calls == 2


# ============================================================================
# CHECKOUT
# ============================================================================


class TestCheckout:
    """Tests for submit_final in checkout mode and the payment callbacks."""

    async def _to_payment(self, harness):
        await harness.controller.initialize(SERVICE_SLUG, FlowMode.CHECKOUT)
        await complete_form(harness, urgency="express", shipping_location="west_bank")
        return await harness.controller.submit_final()

    @pytest.mark.asyncio
    async def test_payment_started(self, harness):
        snapshot = await self._to_payment(harness)

        assert snapshot.status is WizardStatus.PAYMENT
        assert snapshot.step_key is StepKey.PAYMENT
        assert snapshot.invoice_id == "inv-1"
        request = harness.payment.request
        assert request.invoice_id == "inv-1"
        assert request.amount == Decimal("150.00")
        assert request.currency == "ILS"
        assert "payment_started" in harness.event_types()

    @pytest.mark.asyncio
    async def test_server_amount_wins(self, settings):
        harness = WizardHarness(checkout=FakeCheckout(amount=Decimal("175.00")), settings=settings)

        await self._to_payment(harness)

        assert harness.payment.request.amount == Decimal("175.00")

    @pytest.mark.asyncio
    async def test_navigation_is_inert_during_payment(self, harness):
        await self._to_payment(harness)

        assert harness.controller.go_next() is False
        assert harness.controller.go_back() is False
        assert harness.controller.snapshot().step_key is StepKey.PAYMENT

    @pytest.mark.asyncio
    async def test_payment_success(self, harness):
        await self._to_payment(harness)

        await harness.payment.on_success()

        snapshot = harness.controller.snapshot()
        assert snapshot.status is WizardStatus.PAYMENT_CONFIRMED
        assert snapshot.order_number == "ORD-20261019-D4E5F6"
        assert snapshot.answers == {}
        assert harness.store.load(SERVICE_SLUG, TEST_USER["id"]) == {}
        assert harness.event_types()[-1] == "payment_confirmed"

    @pytest.mark.asyncio
    async def test_sign_out_during_payment_keeps_payment(self, harness):
        await self._to_payment(harness)

        harness.auth.sign_out()

        snapshot = harness.controller.snapshot()
        assert snapshot.status is WizardStatus.PAYMENT
        assert snapshot.step_key is StepKey.PAYMENT
        assert snapshot.banner == SIGN_IN_MESSAGE
        assert harness.controller.go_back() is False

        harness.auth.sign_in()
        snapshot = await harness.controller.refresh_auth()
        assert snapshot.status is WizardStatus.PAYMENT
        assert snapshot.step_key is StepKey.PAYMENT
        assert snapshot.banner is None
        assert harness.controller.go_back() is False

        await harness.payment.on_success()

        assert harness.controller.status is WizardStatus.PAYMENT_CONFIRMED
        assert harness.event_types()[-1] == "payment_confirmed"

    @pytest.mark.asyncio
    async def test_payment_cancel_returns_to_review(self, harness):
        await self._to_payment(harness)

        await harness.payment.on_cancel()

        snapshot = harness.controller.snapshot()
        assert snapshot.status is WizardStatus.READY
        assert snapshot.step_key is StepKey.REVIEW
        assert snapshot.banner == PAYMENT_CANCELLED_MESSAGE
        assert snapshot.answers["shipping_location"] == "west_bank"
        assert snapshot.has_draft is True

    @pytest.mark.asyncio
    async def test_payment_start_failure(self, harness):
        harness.payment.fail = True

        snapshot = await self._to_payment(harness)

        assert snapshot.status is WizardStatus.READY
        assert snapshot.step_key is StepKey.REVIEW
        assert snapshot.banner == "Starting payment failed. Please try again."

    @pytest.mark.asyncio
    async def test_callbacks_after_reset_are_ignored(self, harness):
        await self._to_payment(harness)
        harness.controller.reset()

        await harness.payment.on_success()

        assert harness.controller.status is WizardStatus.READY


# ============================================================================
# RESET AND OBSERVERS
# ============================================================================


class TestReset:
    """Tests for reset."""

    @pytest.mark.asyncio
    async def test_reset_then_initialize_starts_fresh(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)
        harness.fill({"name": "Lina Haddad", "urgency": "urgent"})

        snapshot = harness.controller.reset()
        assert snapshot.answers == {}
        assert snapshot.has_draft is False
        assert harness.store.load(SERVICE_SLUG, TEST_USER["id"]) == {}
        assert harness.event_types()[-1] == "reset"

        snapshot = await harness.controller.initialize(SERVICE_SLUG)
        assert snapshot.answers == {}
        assert harness.controller.draft_id == "draft-2"

    @pytest.mark.asyncio
    async def test_new_controller_after_reset_starts_empty(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)
        harness.fill({"name": "Lina Haddad"})
        harness.controller.reset()

        fresh = harness.build_controller()
        snapshot = await fresh.initialize(SERVICE_SLUG)

        assert snapshot.answers == {}

    @pytest.mark.asyncio
    async def test_reset_discards_inflight_upload(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)
        harness.objects.upload_gate = asyncio.Event()
        upload = asyncio.ensure_future(
            harness.controller.attach_file("passport_copy", make_file())
        )
        await settle()

        harness.controller.reset()
        harness.objects.upload_gate.set()

        assert await upload is None
        assert harness.controller.snapshot().attachments == {}
        assert harness.objects.objects == {}
        assert harness.records.rows == {}


class TestObservers:
    """Tests for subscribe / snapshots."""

    @pytest.mark.asyncio
    async def test_unsubscribe(self, harness):
        received = []
        unsubscribe = harness.controller.subscribe(received.append)
        await harness.controller.initialize(SERVICE_SLUG)
        count = len(received)

        unsubscribe()
        harness.controller.set_field("name", "Lina")

        assert count > 0
        assert len(received) == count

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_controller(self, harness):
        def broken(event):
            raise RuntimeError("render failed")

        harness.controller.subscribe(broken)
        await harness.controller.initialize(SERVICE_SLUG)

        assert harness.controller.set_field("name", "Lina").answers == {"name": "Lina"}

    @pytest.mark.asyncio
    async def test_snapshot_is_a_copy(self, harness):
        await harness.controller.initialize(SERVICE_SLUG)
        snapshot = harness.controller.snapshot()

        snapshot.answers["name"] = "Mallory"

        assert "name" not in harness.controller.snapshot().answers
