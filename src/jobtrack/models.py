"""Domain value objects for tracked production jobs.

``Project`` and its overlay/prerequisite parts are plain dataclasses. The
lifecycle components never mutate them in place: every state change produces
a new instance via ``dataclasses.replace`` which the store then writes with a
version check.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

ON_HOLD_STATUS = "On Hold"


class Category(StrEnum):
    STANDARD = "Standard"
    EMERGENCY = "Emergency"
    CORPORATE_JOB = "Corporate Job"
    QUOTE = "Quote"


class Priority(StrEnum):
    NORMAL = "Normal"
    URGENT = "Urgent"


class Role(StrEnum):
    """Requester roles, resolved by the caller before entering the core."""

    ADMIN = "admin"
    LEAD = "lead"
    STAFF = "staff"


class PaymentVerification(StrEnum):
    PART_PAYMENT = "part_payment"
    FULL_PAYMENT = "full_payment"
    PO = "po"
    AUTHORIZED = "authorized"


class MockupApproval(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


def parse_category(value: str) -> Category:
    """Accept enum values ("Corporate Job") and member names ("corporate_job")."""
    try:
        return Category(value)
    except ValueError:
        pass
    key = value.strip().upper().replace(" ", "_").replace("-", "_")
    if key == "CORPORATEJOB":
        key = "CORPORATE_JOB"
    try:
        return Category[key]
    except KeyError:
        allowed = ", ".join(c.value for c in Category)
        msg = f"Unknown category '{value}'. Valid categories: {allowed}"
        raise ValueError(msg) from None


@dataclass(frozen=True)
class HoldState:
    active: bool = False
    reason: str = ""
    entered_at: int | None = None
    pre_hold_status: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "active": self.active,
            "reason": self.reason,
            "entered_at": self.entered_at,
            "pre_hold_status": self.pre_hold_status,
        }


@dataclass(frozen=True)
class CancellationState:
    active: bool = False
    reason: str = ""
    cancelled_at: int | None = None
    resumed_status: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "active": self.active,
            "reason": self.reason,
            "cancelled_at": self.cancelled_at,
            "resumed_status": self.resumed_status,
        }


@dataclass(frozen=True)
class BillingState:
    invoice_sent: bool = False
    payment_verifications: frozenset[PaymentVerification] = frozenset()

    def to_dict(self) -> dict[str, Any]:
        return {
            "invoice_sent": self.invoice_sent,
            "payment_verifications": sorted(v.value for v in self.payment_verifications),
        }


@dataclass(frozen=True)
class MockupState:
    has_file: bool = False
    version: int = 0
    approval: MockupApproval = MockupApproval.PENDING
    rejection_reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_file": self.has_file,
            "version": self.version,
            "approval": self.approval.value,
            "rejection_reason": self.rejection_reason,
        }


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    category: Category
    status: str
    lead_id: str = ""
    priority: Priority = Priority.NORMAL
    stage_entered_at: int = 0
    hold: HoldState = field(default_factory=HoldState)
    cancellation: CancellationState = field(default_factory=CancellationState)
    billing: BillingState = field(default_factory=BillingState)
    mockup: MockupState = field(default_factory=MockupState)
    version: int = 1
    created_at: int = 0
    updated_at: int = 0

    @property
    def true_status(self) -> str:
        """Pipeline status with the presentational ``On Hold`` sentinel resolved."""
        if self.hold.active and self.hold.pre_hold_status:
            return self.hold.pre_hold_status
        return self.status

    @property
    def is_frozen(self) -> bool:
        return self.hold.active or self.cancellation.active

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "status": self.status,
            "priority": self.priority.value,
            "lead_id": self.lead_id,
            "stage_entered_at": self.stage_entered_at,
            "hold": self.hold.to_dict(),
            "cancellation": self.cancellation.to_dict(),
            "billing": self.billing.to_dict(),
            "mockup": self.mockup.to_dict(),
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
