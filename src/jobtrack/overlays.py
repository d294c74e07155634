"""OverlayManager — hold and cancellation freeze states.

Hold and cancellation sit on top of the stage pipeline. Each keeps its own
backing field for the status to come back to (``hold.pre_hold_status`` and
``cancellation.resumed_status``) so the two overlays never fight over one
value. Cancellation supersedes hold: cancelling a held project clears the hold.

All methods are pure: they take a snapshot and ``now`` and return either a
``Blocked`` decision or a new Project.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from jobtrack.models import ON_HOLD_STATUS, CancellationState, HoldState, Project
from jobtrack.outcomes import BlockCode, Blocked

logger = logging.getLogger(__name__)

_LEAD_CONFLICT_MESSAGE = "A project lead cannot modify their own project. Another admin must perform this action."
_CANCELLED_MESSAGE = "This project is cancelled. Reactivate it before making changes."
_HOLD_MESSAGE = "This project is currently on hold. Release it before making changes."


class OverlayManager:
    """Precedence checks and state transforms for the Hold and Cancellation overlays."""

    def check_editable(self, project: Project, requester_id: str, *, ignore_hold: bool = False) -> Blocked | None:
        """Return ``None`` when *requester_id* may modify *project*, else the first blocking reason.

        Precedence (first match wins): lead conflict, cancellation, hold.
        ``ignore_hold`` is used by hold release, the one operation allowed on a held project.
        """
        if project.lead_id and requester_id == project.lead_id:
            return Blocked(code=BlockCode.LEAD_CONFLICT, message=_LEAD_CONFLICT_MESSAGE)
        if project.cancellation.active:
            return Blocked(code=BlockCode.PROJECT_CANCELLED, message=_CANCELLED_MESSAGE)
        if project.hold.active and not ignore_hold:
            return Blocked(code=BlockCode.PROJECT_ON_HOLD, message=_HOLD_MESSAGE)
        return None

    # -- Hold ----------------------------------------------------------------

    def set_hold(self, project: Project, on: bool, reason: str, requester_id: str, now: int) -> Project | Blocked:
        if on:
            return self._enter_hold(project, reason, requester_id, now)
        return self._release_hold(project, requester_id, now)

    def _enter_hold(self, project: Project, reason: str, requester_id: str, now: int) -> Project | Blocked:
        blocked = self.check_editable(project, requester_id)
        if blocked is not None:
            return blocked
        logger.debug("Placing %s on hold from '%s'", project.id, project.status)
        return replace(
            project,
            status=ON_HOLD_STATUS,
            stage_entered_at=now,
            hold=HoldState(active=True, reason=reason, entered_at=now, pre_hold_status=project.status),
        )

    def _release_hold(self, project: Project, requester_id: str, now: int) -> Project | Blocked:
        blocked = self.check_editable(project, requester_id, ignore_hold=True)
        if blocked is not None:
            return blocked
        if not project.hold.active:
            return Blocked(code=BlockCode.PROJECT_NOT_ON_HOLD, message="This project is not on hold.")
        restored = project.hold.pre_hold_status or project.status
        logger.debug("Releasing hold on %s back to '%s'", project.id, restored)
        return replace(project, status=restored, stage_entered_at=now, hold=HoldState())

    # -- Cancellation --------------------------------------------------------

    def cancel(self, project: Project, reason: str, requester_id: str, now: int) -> Project | Blocked:
        """Cancel *project*; allowed while held (the hold is cleared)."""
        blocked = self.check_editable(project, requester_id, ignore_hold=True)
        if blocked is not None:
            return blocked
        resumed = project.true_status
        if project.hold.active:
            logger.info("Cancelling held project %s; hold cleared", project.id)
        return replace(
            project,
            status=resumed,
            stage_entered_at=now if resumed != project.status else project.stage_entered_at,
            hold=HoldState(),
            cancellation=CancellationState(active=True, reason=reason, cancelled_at=now, resumed_status=resumed),
        )

    def reactivate(self, project: Project, requester_id: str, now: int) -> Project | Blocked:
        if project.lead_id and requester_id == project.lead_id:
            return Blocked(code=BlockCode.LEAD_CONFLICT, message=_LEAD_CONFLICT_MESSAGE)
        if not project.cancellation.active:
            return Blocked(code=BlockCode.PROJECT_NOT_CANCELLED, message="This project is not cancelled.")
        restored = project.cancellation.resumed_status or project.status
        return replace(project, status=restored, stage_entered_at=now, cancellation=CancellationState())
