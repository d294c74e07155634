"""GuardEngine — business prerequisites for stage transitions.

Pure functions over a Project snapshot: no store access, no clock. Three
guards exist, all scoped to non-Quote pipelines:

- production billing: invoice sent and at least one payment verification
- delivery billing: full payment or authorization recorded
- mockup: a file uploaded and approved by the client

Billing guards may be bypassed by an admin who explicitly asks for an
override. The mockup guard can never be bypassed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from jobtrack.models import Category, MockupApproval, PaymentVerification, Project, Role
from jobtrack.outcomes import Allowed, BlockCode, Blocked, Decision, UnknownStatusError
from jobtrack.pipelines import Pipeline, PipelineRegistry

logger = logging.getLogger(__name__)

MISSING_INVOICE = "invoice"
MISSING_PAYMENT_ANY = "payment_verification_any"
MISSING_FULL_OR_AUTHORIZED = "full_payment_or_authorized"

MISSING_LABELS: dict[str, str] = {
    MISSING_INVOICE: "Invoice sent",
    MISSING_PAYMENT_ANY: "Payment verification (any)",
    MISSING_FULL_OR_AUTHORIZED: "Full payment or authorization",
}

_DELIVERY_PAYMENTS: frozenset[PaymentVerification] = frozenset(
    {PaymentVerification.FULL_PAYMENT, PaymentVerification.AUTHORIZED}
)


@dataclass(frozen=True)
class TransitionOption:
    """A candidate target stage with the guard verdict for it."""

    to: str
    index: int
    decision: Decision

    @property
    def ready(self) -> bool:
        return self.decision.ok


class GuardEngine:
    """Evaluates whether a candidate transition is permitted."""

    def __init__(self, registry: PipelineRegistry | None = None) -> None:
        self.registry = registry or PipelineRegistry()

    def evaluate(
        self,
        project: Project,
        target_status: str,
        requester_role: Role | str,
        allow_override: bool = False,
    ) -> Decision:
        """Decide whether *project* may move to *target_status*.

        The effective target is the auto-advanced stage when *target_status*
        completes a stage with an auto-advance rule; guards consider it.

        Raises:
            UnknownStatusError: If *target_status* is not in the project's pipeline.
        """
        pipeline = self.registry.pipeline_for(project.category)
        target_idx = pipeline.index_of(target_status)
        if target_idx is None:
            raise UnknownStatusError(target_status, project.category.value, list(pipeline.stages))

        if project.category == Category.QUOTE:
            return Allowed()

        effective = pipeline.auto_advance.get(target_status, target_status)
        effective_idx = pipeline.index_of(effective)
        if effective_idx is None:
            effective_idx = target_idx

        current = project.true_status
        current_idx = pipeline.index_of(current)
        if current_idx is None:
            current_idx = -1
        if effective_idx <= current_idx:
            # Staying put or moving backwards never needs prerequisites.
            return Allowed()

        mockup_block = self._check_mockup(project, pipeline, current_idx, target_idx)
        if mockup_block is not None:
            return mockup_block

        missing = self._missing_billing(project, pipeline, current, current_idx, effective_idx)
        if not missing:
            return Allowed()

        role = Role(requester_role)
        if allow_override and role == Role.ADMIN:
            logger.info(
                "Billing guard overridden for %s -> %s by admin (missing: %s)",
                project.id,
                effective,
                ", ".join(missing),
            )
            return Allowed(overridden=(BlockCode.BILLING_PREREQUISITE_MISSING,), missing=tuple(missing))

        labels = ", ".join(MISSING_LABELS[m] for m in missing)
        message = f"Billing prerequisites are required before moving to '{effective}'. Missing: {labels}."
        if allow_override:
            message += " Only an admin can override billing prerequisites."
        return Blocked(
            code=BlockCode.BILLING_PREREQUISITE_MISSING,
            message=message,
            missing=tuple(missing),
            overridable=role == Role.ADMIN,
        )

    def options(self, project: Project, requester_role: Role | str) -> list[TransitionOption]:
        """Every other stage of the project's pipeline with its guard verdict."""
        pipeline = self.registry.pipeline_for(project.category)
        current = project.true_status
        return [
            TransitionOption(to=stage, index=i, decision=self.evaluate(project, stage, requester_role))
            for i, stage in enumerate(pipeline.stages)
            if stage != current
        ]

    # -- Individual guards ---------------------------------------------------

    @staticmethod
    def _check_mockup(project: Project, pipeline: Pipeline, current_idx: int, target_idx: int) -> Blocked | None:
        """Any move that leaves the mockup stage behind, including jumps over it."""
        gate = pipeline.gates.mockup
        if gate is None:
            return None
        gate_idx = pipeline.index_of(gate)
        if gate_idx is None or not current_idx <= gate_idx < target_idx:
            return None

        mockup = project.mockup
        if mockup.approval == MockupApproval.REJECTED:
            reason = mockup.rejection_reason or "no reason given"
            return Blocked(
                code=BlockCode.MOCKUP_CLIENT_REJECTED,
                message=f"The client rejected mockup v{mockup.version}: {reason}. Upload a revised mockup.",
            )
        if not mockup.has_file:
            return Blocked(
                code=BlockCode.MOCKUP_FILE_REQUIRED,
                message="Upload the mockup file before completing the mockup stage.",
            )
        if mockup.approval != MockupApproval.APPROVED:
            return Blocked(
                code=BlockCode.MOCKUP_CLIENT_APPROVAL_REQUIRED,
                message=f"Mockup v{mockup.version} is awaiting client approval.",
            )
        return None

    @staticmethod
    def _gate_applies(
        pipeline: Pipeline,
        gate: str | None,
        watch: tuple[str, ...],
        current: str,
        current_idx: int,
        effective_idx: int,
    ) -> bool:
        if gate is None:
            return False
        if current in watch:
            return True
        gate_idx = pipeline.index_of(gate)
        if gate_idx is None:
            return False
        return current_idx <= gate_idx <= effective_idx

    def _missing_billing(
        self,
        project: Project,
        pipeline: Pipeline,
        current: str,
        current_idx: int,
        effective_idx: int,
    ) -> list[str]:
        gates = pipeline.gates
        billing = project.billing
        missing: list[str] = []

        if self._gate_applies(pipeline, gates.production, gates.production_watch, current, current_idx, effective_idx):
            if not billing.invoice_sent:
                missing.append(MISSING_INVOICE)
            if not billing.payment_verifications:
                missing.append(MISSING_PAYMENT_ANY)

        if self._gate_applies(pipeline, gates.delivery, gates.delivery_watch, current, current_idx, effective_idx):
            if not (billing.payment_verifications & _DELIVERY_PAYMENTS):
                missing.append(MISSING_FULL_OR_AUTHORIZED)

        return missing
