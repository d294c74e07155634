"""ProjectsMixin — project rows, prerequisites, and version-checked writes.

Every write bumps ``projects.version``. Lifecycle writes go through
``conditional_write`` which only applies when the stored version still matches
the snapshot the decision was made on; collaborator writes (invoice, payment,
mockup) bump the version unconditionally so an in-flight lifecycle decision
made on stale prerequisites loses its conditional write.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from jobtrack.db_base import DBMixinProtocol
from jobtrack.models import (
    BillingState,
    CancellationState,
    Category,
    HoldState,
    MockupApproval,
    MockupState,
    PaymentVerification,
    Priority,
    Project,
    parse_category,
)
from jobtrack.outcomes import StoreConflictError

logger = logging.getLogger(__name__)

_MAX_NAME_LENGTH = 200


@dataclass(frozen=True)
class PendingEvent:
    """An event to record in the same transaction as a conditional write."""

    event_type: str
    old_value: str | None = None
    new_value: str | None = None
    comment: str = ""


class ProjectsMixin(DBMixinProtocol):
    """Project CRUD and prerequisite updates.

    Inherits ``DBMixinProtocol`` for type-safe access to shared attributes.
    Actual implementations provided by ``JobTrackDB`` at composition time via MRO.
    """

    # -- Reads ---------------------------------------------------------------

    def get_project(self, project_id: str) -> Project:
        row = self.conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        if row is None:
            msg = f"Project not found: {project_id}"
            raise KeyError(msg)
        return self._build_project(row, self._payments_for([project_id]).get(project_id, frozenset()))

    def list_projects(
        self,
        *,
        category: Category | str | None = None,
        status: str | None = None,
        lead_id: str | None = None,
        active_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Project]:
        clauses: list[str] = []
        params: list[Any] = []
        if category is not None:
            clauses.append("category = ?")
            params.append(parse_category(str(category)).value)
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if lead_id is not None:
            clauses.append("lead_id = ?")
            params.append(lead_id)
        if active_only:
            clauses.append("hold_active = 0 AND cancel_active = 0")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(
            f"SELECT * FROM projects {where} ORDER BY created_at, id LIMIT ? OFFSET ?",
            (*params, limit, offset),
        ).fetchall()
        payments = self._payments_for([r["id"] for r in rows])
        return [self._build_project(r, payments.get(r["id"], frozenset())) for r in rows]

    def iter_active_projects(self) -> list[Project]:
        """All projects with neither overlay active (bottleneck scan input)."""
        rows = self.conn.execute(
            "SELECT * FROM projects WHERE hold_active = 0 AND cancel_active = 0 ORDER BY stage_entered_at, id"
        ).fetchall()
        payments = self._payments_for([r["id"] for r in rows])
        return [self._build_project(r, payments.get(r["id"], frozenset())) for r in rows]

    def _payments_for(self, project_ids: list[str]) -> dict[str, frozenset[PaymentVerification]]:
        if not project_ids:
            return {}
        result: dict[str, set[PaymentVerification]] = {}
        # Chunk to stay under SQLite's host-parameter limit.
        for start in range(0, len(project_ids), 500):
            chunk = project_ids[start : start + 500]
            ph = ",".join("?" * len(chunk))
            for row in self.conn.execute(
                f"SELECT project_id, kind FROM payment_verifications WHERE project_id IN ({ph})", chunk
            ).fetchall():
                result.setdefault(row["project_id"], set()).add(PaymentVerification(row["kind"]))
        return {pid: frozenset(kinds) for pid, kinds in result.items()}

    @staticmethod
    def _build_project(row: sqlite3.Row, payments: frozenset[PaymentVerification]) -> Project:
        return Project(
            id=row["id"],
            name=row["name"],
            category=Category(row["category"]),
            status=row["status"],
            lead_id=row["lead_id"],
            priority=Priority(row["priority"]),
            stage_entered_at=row["stage_entered_at"],
            hold=HoldState(
                active=bool(row["hold_active"]),
                reason=row["hold_reason"],
                entered_at=row["hold_entered_at"],
                pre_hold_status=row["pre_hold_status"],
            ),
            cancellation=CancellationState(
                active=bool(row["cancel_active"]),
                reason=row["cancel_reason"],
                cancelled_at=row["cancelled_at"],
                resumed_status=row["resumed_status"],
            ),
            billing=BillingState(invoice_sent=bool(row["invoice_sent"]), payment_verifications=payments),
            mockup=MockupState(
                has_file=bool(row["mockup_has_file"]),
                version=row["mockup_version"],
                approval=MockupApproval(row["mockup_approval"]),
                rejection_reason=row["mockup_rejection_reason"],
            ),
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # -- Create --------------------------------------------------------------

    def create_project(
        self,
        name: str,
        *,
        category: Category | str = Category.STANDARD,
        lead_id: str = "",
        priority: Priority | str | None = None,
        status: str | None = None,
        actor: str = "",
    ) -> Project:
        if not isinstance(name, str) or not name.strip():
            msg = "Project name cannot be empty"
            raise ValueError(msg)
        name = name.strip()
        if len(name) > _MAX_NAME_LENGTH:
            msg = f"Project name must be at most {_MAX_NAME_LENGTH} characters"
            raise ValueError(msg)
        cat = parse_category(str(category))
        prio = Priority(priority) if priority is not None else Priority.NORMAL
        if cat == Category.EMERGENCY:
            prio = Priority.URGENT

        if status is None:
            status = self.registry.initial_stage(cat)
        elif not self.registry.is_valid_stage(cat, status):
            valid = self.registry.stages_for(cat)
            msg = f"Unknown status '{status}' for category '{cat.value}'. Valid statuses: {', '.join(valid)}"
            raise ValueError(msg)

        project_id = self._generate_unique_id("projects")
        now = self.clock()
        try:
            self.conn.execute(
                "INSERT INTO projects (id, name, category, status, priority, lead_id, stage_entered_at, "
                "version, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?, ?)",
                (project_id, name, cat.value, status, prio.value, lead_id, now, now, now),
            )
            self._record_event(project_id, "created", actor=actor, new_value=status, comment=name)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        logger.info("Created project %s (%s) at '%s'", project_id, cat.value, status)
        return self.get_project(project_id)

    # -- Conditional write ---------------------------------------------------

    def conditional_write(
        self,
        project: Project,
        *,
        expected_version: int,
        actor: str = "",
        events: Iterable[PendingEvent] = (),
    ) -> Project:
        """Persist *project* iff the stored version equals *expected_version*.

        Writes lifecycle fields only (status, category, priority, stage timer,
        overlays); prerequisites belong to their own collaborator methods.

        Raises:
            KeyError: If the project no longer exists.
            StoreConflictError: If another writer got there first.
        """
        now = self.clock()
        hold = project.hold
        cancel = project.cancellation
        try:
            cursor = self.conn.execute(
                "UPDATE projects SET category = ?, status = ?, priority = ?, stage_entered_at = ?, "
                "hold_active = ?, hold_reason = ?, hold_entered_at = ?, pre_hold_status = ?, "
                "cancel_active = ?, cancel_reason = ?, cancelled_at = ?, resumed_status = ?, "
                "version = ?, updated_at = ? WHERE id = ? AND version = ?",
                (
                    project.category.value,
                    project.status,
                    project.priority.value,
                    project.stage_entered_at,
                    int(hold.active),
                    hold.reason,
                    hold.entered_at,
                    hold.pre_hold_status,
                    int(cancel.active),
                    cancel.reason,
                    cancel.cancelled_at,
                    cancel.resumed_status,
                    expected_version + 1,
                    now,
                    project.id,
                    expected_version,
                ),
            )
            if cursor.rowcount == 0:
                self.conn.rollback()
                row = self.conn.execute("SELECT version FROM projects WHERE id = ?", (project.id,)).fetchone()
                if row is None:
                    msg = f"Project not found: {project.id}"
                    raise KeyError(msg)
                raise StoreConflictError(project.id, expected_version, row["version"])
            for event in events:
                self._record_event(
                    project.id,
                    event.event_type,
                    actor=actor,
                    old_value=event.old_value,
                    new_value=event.new_value,
                    comment=event.comment,
                )
            self.conn.commit()
        except (KeyError, StoreConflictError):
            raise
        except Exception:
            self.conn.rollback()
            raise
        return self.get_project(project.id)

    # -- Collaborator writes (prerequisites) ---------------------------------

    def _touch(self, project_id: str) -> None:
        cursor = self.conn.execute(
            "UPDATE projects SET version = version + 1, updated_at = ? WHERE id = ?",
            (self.clock(), project_id),
        )
        if cursor.rowcount == 0:
            msg = f"Project not found: {project_id}"
            raise KeyError(msg)

    def set_invoice_sent(self, project_id: str, sent: bool = True, *, actor: str = "") -> Project:
        current = self.get_project(project_id)
        if current.billing.invoice_sent == sent:
            return current
        try:
            self.conn.execute("UPDATE projects SET invoice_sent = ? WHERE id = ?", (int(sent), project_id))
            self._touch(project_id)
            self._record_event(
                project_id,
                "invoice_changed",
                actor=actor,
                old_value=str(current.billing.invoice_sent).lower(),
                new_value=str(sent).lower(),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return self.get_project(project_id)

    def add_payment_verification(
        self, project_id: str, kind: PaymentVerification | str, *, actor: str = ""
    ) -> Project:
        verification = PaymentVerification(kind)
        current = self.get_project(project_id)
        if verification in current.billing.payment_verifications:
            return current
        try:
            self.conn.execute(
                "INSERT INTO payment_verifications (project_id, kind, recorded_at) VALUES (?, ?, ?)",
                (project_id, verification.value, self.clock()),
            )
            self._touch(project_id)
            self._record_event(project_id, "payment_verified", actor=actor, new_value=verification.value)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return self.get_project(project_id)

    def remove_payment_verification(
        self, project_id: str, kind: PaymentVerification | str, *, actor: str = ""
    ) -> Project:
        verification = PaymentVerification(kind)
        current = self.get_project(project_id)
        if verification not in current.billing.payment_verifications:
            return current
        try:
            self.conn.execute(
                "DELETE FROM payment_verifications WHERE project_id = ? AND kind = ?",
                (project_id, verification.value),
            )
            self._touch(project_id)
            self._record_event(project_id, "payment_revoked", actor=actor, old_value=verification.value)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return self.get_project(project_id)

    def record_mockup_upload(self, project_id: str, *, actor: str = "") -> Project:
        """A new mockup file resets client approval to pending."""
        current = self.get_project(project_id)
        new_version = current.mockup.version + 1
        try:
            self.conn.execute(
                "UPDATE projects SET mockup_has_file = 1, mockup_version = ?, mockup_approval = 'pending', "
                "mockup_rejection_reason = '' WHERE id = ?",
                (new_version, project_id),
            )
            self._touch(project_id)
            self._record_event(project_id, "mockup_uploaded", actor=actor, new_value=f"v{new_version}")
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return self.get_project(project_id)

    def set_mockup_approval(
        self,
        project_id: str,
        approval: MockupApproval | str,
        *,
        reason: str = "",
        actor: str = "",
    ) -> Project:
        decision = MockupApproval(approval)
        current = self.get_project(project_id)
        if decision != MockupApproval.PENDING and not current.mockup.has_file:
            msg = f"Project {project_id} has no mockup file to {'approve' if decision == MockupApproval.APPROVED else 'reject'}"
            raise ValueError(msg)
        if decision == MockupApproval.REJECTED and not reason.strip():
            msg = "A rejection reason is required"
            raise ValueError(msg)
        try:
            self.conn.execute(
                "UPDATE projects SET mockup_approval = ?, mockup_rejection_reason = ? WHERE id = ?",
                (decision.value, reason.strip() if decision == MockupApproval.REJECTED else "", project_id),
            )
            self._touch(project_id)
            self._record_event(
                project_id,
                "mockup_reviewed",
                actor=actor,
                old_value=current.mockup.approval.value,
                new_value=decision.value,
                comment=reason.strip(),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return self.get_project(project_id)
