"""Tests for GuardEngine — billing and mockup prerequisites, overrides, auto-advance targets."""

from __future__ import annotations

from dataclasses import replace

import pytest

from jobtrack.guards import GuardEngine
from jobtrack.models import (
    BillingState,
    Category,
    HoldState,
    MockupApproval,
    MockupState,
    PaymentVerification,
    Project,
    Role,
)
from jobtrack.outcomes import Allowed, BlockCode, Blocked, UnknownStatusError


def _project(status: str, *, category: Category = Category.STANDARD, **kwargs: object) -> Project:
    return Project(id="test-1", name="Job", category=category, status=status, lead_id="lead-1", **kwargs)  # type: ignore[arg-type]


def _paid(*kinds: PaymentVerification, invoice: bool = True) -> BillingState:
    return BillingState(invoice_sent=invoice, payment_verifications=frozenset(kinds))


@pytest.fixture
def guards() -> GuardEngine:
    return GuardEngine()


class TestProductionBillingGuard:
    def test_blocks_without_invoice_or_payment(self, guards: GuardEngine) -> None:
        decision = guards.evaluate(_project("Mockup Completed"), "Pending Production", Role.LEAD)
        assert isinstance(decision, Blocked)
        assert decision.code == BlockCode.BILLING_PREREQUISITE_MISSING
        assert decision.missing == ("invoice", "payment_verification_any")
        assert not decision.overridable

    def test_admin_override_allows(self, guards: GuardEngine) -> None:
        decision = guards.evaluate(_project("Mockup Completed"), "Pending Production", Role.ADMIN, allow_override=True)
        assert isinstance(decision, Allowed)
        assert decision.overridden == (BlockCode.BILLING_PREREQUISITE_MISSING,)
        assert decision.missing == ("invoice", "payment_verification_any")

    def test_admin_without_override_flag_is_blocked_but_overridable(self, guards: GuardEngine) -> None:
        decision = guards.evaluate(_project("Mockup Completed"), "Pending Production", Role.ADMIN)
        assert isinstance(decision, Blocked)
        assert decision.overridable

    def test_non_admin_override_is_blocked(self, guards: GuardEngine) -> None:
        decision = guards.evaluate(_project("Mockup Completed"), "Pending Production", Role.STAFF, allow_override=True)
        assert isinstance(decision, Blocked)
        assert "Only an admin" in decision.message

    def test_only_invoice_missing(self, guards: GuardEngine) -> None:
        project = _project("Pending Proof Reading", billing=_paid(PaymentVerification.PO, invoice=False))
        decision = guards.evaluate(project, "Pending Production", Role.LEAD)
        assert isinstance(decision, Blocked)
        assert decision.missing == ("invoice",)

    def test_satisfied_allows(self, guards: GuardEngine) -> None:
        project = _project("Pending Proof Reading", billing=_paid(PaymentVerification.PART_PAYMENT))
        assert guards.evaluate(project, "Pending Production", Role.STAFF).ok

    def test_leaving_pending_production_requires_billing(self, guards: GuardEngine) -> None:
        decision = guards.evaluate(_project("Pending Production"), "Production Completed", Role.LEAD)
        assert isinstance(decision, Blocked)
        assert decision.code == BlockCode.BILLING_PREREQUISITE_MISSING

    def test_auto_advance_target_is_guarded(self, guards: GuardEngine) -> None:
        decision = guards.evaluate(_project("Pending Proof Reading"), "Proof Reading Completed", Role.LEAD)
        assert isinstance(decision, Blocked)
        assert decision.missing == ("invoice", "payment_verification_any")
        assert "Pending Production" in decision.message

    def test_early_stages_not_guarded(self, guards: GuardEngine) -> None:
        assert guards.evaluate(_project("Order Confirmed"), "Pending Scope Approval", Role.STAFF).ok

    def test_backward_move_never_guarded(self, guards: GuardEngine) -> None:
        assert guards.evaluate(_project("Pending Production"), "Pending Mockup", Role.STAFF).ok

    def test_same_stage_not_guarded(self, guards: GuardEngine) -> None:
        assert guards.evaluate(_project("Pending Production"), "Pending Production", Role.STAFF).ok


class TestDeliveryBillingGuard:
    def test_requires_full_payment_or_authorization(self, guards: GuardEngine) -> None:
        project = _project("Pending Packaging", billing=_paid(PaymentVerification.PART_PAYMENT))
        decision = guards.evaluate(project, "Packaging Completed", Role.LEAD)
        assert isinstance(decision, Blocked)
        assert decision.code == BlockCode.BILLING_PREREQUISITE_MISSING
        assert decision.missing == ("full_payment_or_authorized",)

    @pytest.mark.parametrize("kind", [PaymentVerification.FULL_PAYMENT, PaymentVerification.AUTHORIZED])
    def test_full_or_authorized_allows(self, guards: GuardEngine, kind: PaymentVerification) -> None:
        project = _project("Pending Packaging", billing=_paid(kind))
        assert guards.evaluate(project, "Pending Delivery/Pickup", Role.LEAD).ok

    def test_leaving_pending_delivery_requires_full_payment(self, guards: GuardEngine) -> None:
        project = _project("Pending Delivery/Pickup", billing=_paid(PaymentVerification.PO))
        decision = guards.evaluate(project, "Delivered", Role.LEAD)
        assert isinstance(decision, Blocked)
        assert decision.missing == ("full_payment_or_authorized",)

    def test_jump_across_both_gates_merges_missing(self, guards: GuardEngine) -> None:
        decision = guards.evaluate(_project("Mockup Completed"), "Delivered", Role.LEAD)
        assert isinstance(decision, Blocked)
        assert decision.missing == ("invoice", "payment_verification_any", "full_payment_or_authorized")

    def test_full_payment_satisfies_any_payment(self, guards: GuardEngine) -> None:
        project = _project("Mockup Completed", billing=_paid(PaymentVerification.FULL_PAYMENT, invoice=False))
        decision = guards.evaluate(project, "Delivered", Role.LEAD)
        assert isinstance(decision, Blocked)
        assert decision.missing == ("invoice",)


class TestMockupGuard:
    def test_file_required(self, guards: GuardEngine) -> None:
        decision = guards.evaluate(_project("Pending Mockup"), "Mockup Completed", Role.LEAD)
        assert isinstance(decision, Blocked)
        assert decision.code == BlockCode.MOCKUP_FILE_REQUIRED

    def test_approval_required(self, guards: GuardEngine) -> None:
        project = _project("Pending Mockup", mockup=MockupState(has_file=True, version=1))
        decision = guards.evaluate(project, "Mockup Completed", Role.LEAD)
        assert isinstance(decision, Blocked)
        assert decision.code == BlockCode.MOCKUP_CLIENT_APPROVAL_REQUIRED

    def test_rejected_reports_reason(self, guards: GuardEngine) -> None:
        mockup = MockupState(has_file=True, version=2, approval=MockupApproval.REJECTED, rejection_reason="Wrong logo")
        decision = guards.evaluate(_project("Pending Mockup", mockup=mockup), "Mockup Completed", Role.LEAD)
        assert isinstance(decision, Blocked)
        assert decision.code == BlockCode.MOCKUP_CLIENT_REJECTED
        assert "Wrong logo" in decision.message

    def test_rejected_not_overridable_by_admin(self, guards: GuardEngine) -> None:
        mockup = MockupState(has_file=True, version=1, approval=MockupApproval.REJECTED, rejection_reason="No")
        decision = guards.evaluate(
            _project("Pending Mockup", mockup=mockup), "Mockup Completed", Role.ADMIN, allow_override=True
        )
        assert isinstance(decision, Blocked)
        assert decision.code == BlockCode.MOCKUP_CLIENT_REJECTED
        assert not decision.overridable

    def test_approved_allows(self, guards: GuardEngine) -> None:
        mockup = MockupState(has_file=True, version=1, approval=MockupApproval.APPROVED)
        assert guards.evaluate(_project("Pending Mockup", mockup=mockup), "Mockup Completed", Role.LEAD).ok

    def test_mockup_checked_before_billing(self, guards: GuardEngine) -> None:
        decision = guards.evaluate(_project("Pending Mockup"), "Pending Production", Role.ADMIN, allow_override=True)
        assert isinstance(decision, Blocked)
        assert decision.code == BlockCode.MOCKUP_FILE_REQUIRED

    def test_billing_after_approved_mockup(self, guards: GuardEngine) -> None:
        mockup = MockupState(has_file=True, version=1, approval=MockupApproval.APPROVED)
        decision = guards.evaluate(_project("Pending Mockup", mockup=mockup), "Pending Production", Role.LEAD)
        assert isinstance(decision, Blocked)
        assert decision.code == BlockCode.BILLING_PREREQUISITE_MISSING

    def test_moves_up_to_the_gate_or_after_it_are_unguarded(self, guards: GuardEngine) -> None:
        assert guards.evaluate(_project("Departmental Engagement Completed"), "Pending Mockup", Role.LEAD).ok
        assert guards.evaluate(_project("Mockup Completed"), "Pending Proof Reading", Role.LEAD).ok

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            ("Departmental Engagement Completed", "Mockup Completed"),
            ("Order Confirmed", "Pending Proof Reading"),
        ],
    )
    def test_jumping_over_the_gate_is_guarded(self, guards: GuardEngine, current: str, target: str) -> None:
        decision = guards.evaluate(_project(current), target, Role.STAFF)
        assert isinstance(decision, Blocked)
        assert decision.code == BlockCode.MOCKUP_FILE_REQUIRED

        forced = guards.evaluate(_project(current), target, Role.ADMIN, allow_override=True)
        assert isinstance(forced, Blocked)
        assert forced.code == BlockCode.MOCKUP_FILE_REQUIRED
        assert not forced.overridable

    def test_jump_with_rejected_mockup(self, guards: GuardEngine) -> None:
        mockup = MockupState(has_file=True, version=1, approval=MockupApproval.REJECTED, rejection_reason="Colours")
        decision = guards.evaluate(_project("Order Confirmed", mockup=mockup), "Delivered", Role.ADMIN, True)
        assert isinstance(decision, Blocked)
        assert decision.code == BlockCode.MOCKUP_CLIENT_REJECTED


class TestQuoteAndValidation:
    def test_quote_is_never_guarded(self, guards: GuardEngine) -> None:
        project = _project("Order Confirmed", category=Category.QUOTE)
        assert guards.evaluate(project, "Finished", Role.STAFF).ok

    def test_unknown_target_raises(self, guards: GuardEngine) -> None:
        with pytest.raises(UnknownStatusError) as exc_info:
            guards.evaluate(_project("Order Confirmed"), "Pending Quote Request", Role.STAFF)
        assert exc_info.value.code == "UNKNOWN_STATUS"
        assert "Pending Production" in exc_info.value.valid

    def test_invalid_role_raises(self, guards: GuardEngine) -> None:
        with pytest.raises(ValueError):
            guards.evaluate(_project("Mockup Completed"), "Pending Production", "superuser")

    def test_held_project_uses_pre_hold_status(self, guards: GuardEngine) -> None:
        held = replace(
            _project("On Hold"),
            hold=HoldState(active=True, reason="x", entered_at=0, pre_hold_status="Pending Production"),
        )
        assert guards.evaluate(held, "Pending Mockup", Role.STAFF).ok


class TestOptions:
    def test_options_cover_every_other_stage(self, guards: GuardEngine) -> None:
        options = guards.options(_project("Pending Proof Reading"), Role.LEAD)
        assert len(options) == 22
        by_stage = {o.to: o for o in options}
        assert "Pending Proof Reading" not in by_stage
        assert by_stage["Pending Mockup"].ready
        assert not by_stage["Proof Reading Completed"].ready
        assert not by_stage["Pending Production"].ready
