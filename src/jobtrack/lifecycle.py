"""LifecycleService — the only path through which a project's status changes.

Each mutating operation follows the same shape::

    read snapshot -> overlay precedence -> guards -> conditional write -> events

Decisions are always made against the snapshot that is written back; if the
conditional write loses to a concurrent writer the whole sequence is re-run
once on a fresh snapshot. A second loss raises ``StoreConflictError``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from typing import Any, Protocol

from jobtrack.bottlenecks import DAY_MS, DEFAULT_THRESHOLD_DAYS, BottleneckAlert, BottleneckEntry, BottleneckMonitor
from jobtrack.db_base import _now_ms
from jobtrack.db_projects import PendingEvent
from jobtrack.guards import GuardEngine, TransitionOption
from jobtrack.models import ON_HOLD_STATUS, Category, Priority, Project, Role, parse_category
from jobtrack.outcomes import Allowed, Blocked, LifecycleResult, StoreConflictError, UnknownStatusError
from jobtrack.overlays import OverlayManager
from jobtrack.pipelines import PipelineRegistry
from jobtrack.types.core import ProjectConfig
from jobtrack.validation import require_actor, require_reason

logger = logging.getLogger(__name__)

_MAX_ATTEMPTS = 2
_HOUR_MS = DAY_MS // 24


class LifecycleStore(Protocol):
    """Keyed project store with read and version-checked write, plus the dismissal map."""

    def get_project(self, project_id: str) -> Project: ...

    def conditional_write(
        self,
        project: Project,
        *,
        expected_version: int,
        actor: str = "",
        events: Iterable[PendingEvent] = (),
    ) -> Project: ...

    def iter_active_projects(self) -> list[Project]: ...

    def get_dismissed_at(self, signature: str) -> int | None: ...

    def set_dismissed_at(self, signature: str, dismissed_at: int, *, actor: str = "") -> None: ...


Step = Callable[[Project, int], LifecycleResult]


def _override_event(decision: Allowed) -> PendingEvent:
    return PendingEvent(
        "guard_overridden",
        new_value=",".join(code.value for code in decision.overridden),
        comment=f"missing: {', '.join(decision.missing)}",
    )


class LifecycleService:
    def __init__(
        self,
        store: LifecycleStore,
        *,
        registry: PipelineRegistry | None = None,
        guards: GuardEngine | None = None,
        overlays: OverlayManager | None = None,
        monitor: BottleneckMonitor | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.store = store
        self.registry = registry or getattr(store, "registry", None) or PipelineRegistry()
        self.guards = guards or GuardEngine(self.registry)
        self.overlays = overlays or OverlayManager()
        self.monitor = monitor or BottleneckMonitor(store, registry=self.registry)
        self.clock = clock

    @classmethod
    def from_config(cls, store: LifecycleStore, config: ProjectConfig, **kwargs: Any) -> LifecycleService:
        """Build a service whose bottleneck monitor follows ``.jobtrack/config.json``."""
        registry = kwargs.pop("registry", None) or getattr(store, "registry", None) or PipelineRegistry()
        monitor = BottleneckMonitor(
            store,
            registry=registry,
            threshold_days=int(config.get("bottleneck_threshold_days", DEFAULT_THRESHOLD_DAYS)),
            reminder_interval_ms=int(float(config.get("reminder_interval_hours", 24)) * _HOUR_MS),
        )
        return cls(store, registry=registry, monitor=monitor, **kwargs)

    # -- Plumbing ------------------------------------------------------------

    def _run(self, op: str, project_id: str, step: Step) -> LifecycleResult:
        """Read, decide and write; re-run once on a write conflict."""
        start = time.monotonic()
        for attempt in range(1, _MAX_ATTEMPTS + 1):
            project = self.store.get_project(project_id)
            try:
                result = step(project, self.clock())
            except StoreConflictError as exc:
                if attempt >= _MAX_ATTEMPTS:
                    logger.warning(
                        "%s on %s lost a second write conflict",
                        op,
                        project_id,
                        extra={"op": op, "project_id": project_id, "code": exc.code, "error": str(exc)},
                    )
                    raise
                logger.info(
                    "%s on %s hit a write conflict; re-evaluating",
                    op,
                    project_id,
                    extra={"op": op, "project_id": project_id, "code": exc.code},
                )
                continue
            duration_ms = round((time.monotonic() - start) * 1000, 2)
            if result.ok:
                logger.info(
                    "%s on %s succeeded",
                    op,
                    project_id,
                    extra={"op": op, "project_id": project_id, "duration_ms": duration_ms},
                )
            else:
                logger.info(
                    "%s on %s blocked: %s",
                    op,
                    project_id,
                    result.code,
                    extra={
                        "op": op,
                        "project_id": project_id,
                        "code": str(result.code),
                        "duration_ms": duration_ms,
                    },
                )
            return result
        raise AssertionError("unreachable")  # pragma: no cover

    def _write(self, before: Project, after: Project, actor: str, events: Sequence[PendingEvent]) -> Project:
        return self.store.conditional_write(after, expected_version=before.version, actor=actor, events=events)

    def _validate_target(self, project: Project, target_status: str) -> None:
        if target_status == ON_HOLD_STATUS or not self.registry.is_valid_stage(project.category, target_status):
            raise UnknownStatusError(target_status, project.category.value, self.registry.stages_for(project.category))

    # -- Transitions ---------------------------------------------------------

    def attempt_transition(
        self,
        project_id: str,
        target_status: str,
        *,
        requester_id: str,
        requester_role: Role | str,
        allow_override: bool = False,
    ) -> LifecycleResult:
        """Move a project to *target_status*, honouring overlays and guards.

        Completing a stage with an auto-advance rule lands the project on the
        following stage in the same write.

        Raises:
            UnknownStatusError: *target_status* is not a stage of the project's pipeline.
            KeyError: No such project.
            ValueError: Invalid requester id or role.
            StoreConflictError: Two consecutive write conflicts.
        """
        requester = require_actor(requester_id)
        role = Role(requester_role)

        def step(project: Project, now: int) -> LifecycleResult:
            self._validate_target(project, target_status)
            blocked = self.overlays.check_editable(project, requester)
            if blocked is not None:
                return LifecycleResult.blocked(blocked, project)

            effective = self.registry.auto_advance(target_status, project.category) or target_status
            if effective == project.status:
                return LifecycleResult.success(project, message=f"Already at '{project.status}'")

            decision = self.guards.evaluate(project, target_status, role, allow_override)
            if isinstance(decision, Blocked):
                return LifecycleResult.blocked(decision, project)

            events = [
                PendingEvent(
                    "status_changed",
                    old_value=project.status,
                    new_value=effective,
                    comment=f"auto-advanced from '{target_status}'" if effective != target_status else "",
                )
            ]
            if decision.overridden:
                events.append(_override_event(decision))
            written = self._write(project, replace(project, status=effective, stage_entered_at=now), requester, events)
            return LifecycleResult.success(written, overridden=decision.overridden, message=f"Moved to '{effective}'")

        return self._run("transition", project_id, step)

    def available_transitions(self, project_id: str, requester_role: Role | str) -> list[TransitionOption]:
        """Every other stage of the project's pipeline with its current verdict.

        While an overlay is active every option carries the overlay's block.
        """
        role = Role(requester_role)
        project = self.store.get_project(project_id)
        frozen = self.overlays.check_editable(project, "")
        if frozen is not None:
            pipeline = self.registry.pipeline_for(project.category)
            return [
                TransitionOption(to=stage, index=i, decision=frozen)
                for i, stage in enumerate(pipeline.stages)
                if stage != project.true_status
            ]
        return self.guards.options(project, role)

    # -- Overlays ------------------------------------------------------------

    def set_hold(self, project_id: str, on: bool, *, reason: str = "", requester_id: str) -> LifecycleResult:
        """Place (``on=True``) or release a hold. A reason is required to place one."""
        requester = require_actor(requester_id)
        if on:
            cleaned_reason = require_reason(reason)
        else:
            cleaned_reason = require_reason(reason) if reason else ""

        def step(project: Project, now: int) -> LifecycleResult:
            outcome = self.overlays.set_hold(project, on, cleaned_reason, requester, now)
            if isinstance(outcome, Blocked):
                return LifecycleResult.blocked(outcome, project)
            event = PendingEvent(
                "hold_placed" if on else "hold_released",
                old_value=project.status,
                new_value=outcome.status,
                comment=cleaned_reason,
            )
            return LifecycleResult.success(self._write(project, outcome, requester, [event]))

        return self._run("hold" if on else "release", project_id, step)

    def cancel(self, project_id: str, *, reason: str, requester_id: str) -> LifecycleResult:
        requester = require_actor(requester_id)
        cleaned_reason = require_reason(reason)

        def step(project: Project, now: int) -> LifecycleResult:
            outcome = self.overlays.cancel(project, cleaned_reason, requester, now)
            if isinstance(outcome, Blocked):
                return LifecycleResult.blocked(outcome, project)
            events = []
            if project.hold.active:
                events.append(PendingEvent("hold_released", old_value=project.status, new_value=outcome.status))
            events.append(PendingEvent("cancelled", old_value=project.status, new_value=outcome.status, comment=cleaned_reason))
            return LifecycleResult.success(self._write(project, outcome, requester, events))

        return self._run("cancel", project_id, step)

    def reactivate(self, project_id: str, *, requester_id: str) -> LifecycleResult:
        requester = require_actor(requester_id)

        def step(project: Project, now: int) -> LifecycleResult:
            outcome = self.overlays.reactivate(project, requester, now)
            if isinstance(outcome, Blocked):
                return LifecycleResult.blocked(outcome, project)
            event = PendingEvent("reactivated", old_value=project.status, new_value=outcome.status)
            return LifecycleResult.success(self._write(project, outcome, requester, [event]))

        return self._run("reactivate", project_id, step)

    # -- Category change -----------------------------------------------------

    def change_category(
        self,
        project_id: str,
        category: Category | str,
        *,
        requester_id: str,
        target_status: str | None = None,
        requester_role: Role | str = Role.STAFF,
        allow_override: bool = False,
    ) -> LifecycleResult:
        """Convert a project to another category (e.g. a Quote into a Standard job).

        The status is kept when the target pipeline has it, otherwise the
        target's entry stage is used. An explicit *target_status* is a move
        within the new pipeline from that stage, so the guards judge it as
        they would any transition.
        """
        requester = require_actor(requester_id)
        role = Role(requester_role)
        target = parse_category(str(category))
        if target_status is not None and (
            target_status == ON_HOLD_STATUS or not self.registry.is_valid_stage(target, target_status)
        ):
            raise UnknownStatusError(target_status, target.value, self.registry.stages_for(target))

        def step(project: Project, now: int) -> LifecycleResult:
            blocked = self.overlays.check_editable(project, requester)
            if blocked is not None:
                return LifecycleResult.blocked(blocked, project)

            new_status = self.registry.resolve_category_change(project.status, target)
            allowed = Allowed()
            if target_status is not None:
                converted = replace(project, category=target, status=new_status)
                verdict = self.guards.evaluate(converted, target_status, role, allow_override)
                if isinstance(verdict, Blocked):
                    return LifecycleResult.blocked(verdict, project)
                allowed = verdict
                new_status = self.registry.auto_advance(target_status, target) or target_status
            priority = Priority.URGENT if target == Category.EMERGENCY else project.priority
            if target == project.category and new_status == project.status and priority == project.priority:
                return LifecycleResult.success(project, message=f"Already a {target.value} project")

            events: list[PendingEvent] = []
            if target != project.category:
                events.append(PendingEvent("category_changed", old_value=project.category.value, new_value=target.value))
            if new_status != project.status:
                events.append(PendingEvent("status_changed", old_value=project.status, new_value=new_status))
            if priority != project.priority:
                events.append(
                    PendingEvent("priority_changed", old_value=project.priority.value, new_value=priority.value)
                )
            if allowed.overridden:
                events.append(_override_event(allowed))
            updated = replace(
                project,
                category=target,
                status=new_status,
                priority=priority,
                stage_entered_at=now,
            )
            written = self._write(project, updated, requester, events)
            return LifecycleResult.success(
                written, overridden=allowed.overridden, message=f"Converted to {target.value} at '{new_status}'"
            )

        return self._run("change_category", project_id, step)

    # -- Bottlenecks ---------------------------------------------------------

    def scan_bottlenecks(self, threshold_days: int | None = None) -> list[BottleneckEntry]:
        return self.monitor.scan(self.store.iter_active_projects(), self.clock(), threshold_days)

    def check_bottleneck_alert(self, threshold_days: int | None = None) -> BottleneckAlert:
        return self.monitor.check(self.store.iter_active_projects(), self.clock(), threshold_days)

    def dismiss_bottleneck_alert(self, signature: str, *, requester_id: str | None = None) -> None:
        """Snooze the alert for *signature*; the requester is kept as ``dismissed_by``."""
        actor = require_actor(requester_id) if requester_id is not None else ""
        self.monitor.dismiss(signature, self.clock(), actor=actor)
