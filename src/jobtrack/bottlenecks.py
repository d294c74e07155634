"""BottleneckMonitor — stage staleness scan with alert deduplication.

A bottleneck is an active project that has sat in one stage for at least
``threshold_days``. The current set of bottlenecks is fingerprinted into a
signature; dismissing an alert suppresses that exact signature for the
reminder interval, while any change in the set produces a new signature that
surfaces immediately.

The monitor holds no state of its own beyond the dismissal store, so it is
safe to call on any cadence.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Protocol

from jobtrack.models import Category, Priority, Project
from jobtrack.pipelines import PipelineRegistry

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
DEFAULT_THRESHOLD_DAYS = 14
DEFAULT_REMINDER_INTERVAL_MS = DAY_MS
DEFAULT_POLL_INTERVAL_SECONDS = 60.0

# Post-delivery statuses are never bottlenecks, whatever the pipeline says.
TERMINAL_STATUSES: frozenset[str] = frozenset({"Delivered", "Pending Feedback", "Feedback Completed", "Completed", "Finished"})


class DismissalStore(Protocol):
    """Keyed store for ``signature -> last dismissed at`` (epoch ms), last write wins."""

    def get_dismissed_at(self, signature: str) -> int | None: ...

    def set_dismissed_at(self, signature: str, dismissed_at: int, *, actor: str = "") -> None: ...


class Notifier(Protocol):
    def notify(self, alert: BottleneckAlert) -> None: ...


@dataclass(frozen=True)
class BottleneckEntry:
    project_id: str
    name: str
    category: Category
    priority: Priority
    status: str
    stage_entered_at: int
    days_in_stage: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "name": self.name,
            "category": self.category.value,
            "priority": self.priority.value,
            "status": self.status,
            "stage_entered_at": self.stage_entered_at,
            "days_in_stage": self.days_in_stage,
        }


@dataclass(frozen=True)
class BottleneckAlert:
    signature: str
    entries: tuple[BottleneckEntry, ...]
    surface: bool
    threshold_days: int
    last_dismissed_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "signature": self.signature,
            "bottlenecks": [e.to_dict() for e in self.entries],
            "surface": self.surface,
            "threshold_days": self.threshold_days,
            "last_dismissed_at": self.last_dismissed_at,
        }


def signature(entries: Iterable[BottleneckEntry]) -> str:
    """Deterministic fingerprint of a scan result, in scan order."""
    return "|".join(f"{e.project_id},{e.status},{e.stage_entered_at}" for e in entries)


class BottleneckMonitor:
    def __init__(
        self,
        dismissals: DismissalStore,
        *,
        registry: PipelineRegistry | None = None,
        threshold_days: int = DEFAULT_THRESHOLD_DAYS,
        reminder_interval_ms: int = DEFAULT_REMINDER_INTERVAL_MS,
    ) -> None:
        if threshold_days < 0:
            msg = f"threshold_days must be >= 0, got {threshold_days}"
            raise ValueError(msg)
        self.dismissals = dismissals
        self.registry = registry or PipelineRegistry()
        self.threshold_days = threshold_days
        self.reminder_interval_ms = reminder_interval_ms

    def _is_excluded(self, project: Project) -> bool:
        if project.hold.active or project.cancellation.active:
            return True
        if project.status in TERMINAL_STATUSES:
            return True
        try:
            return self.registry.is_terminal(project.category, project.status)
        except KeyError:
            return False

    def scan(self, projects: Iterable[Project], now: int, threshold_days: int | None = None) -> list[BottleneckEntry]:
        """Stale active projects, most urgent first."""
        threshold = self.threshold_days if threshold_days is None else threshold_days
        entries: list[BottleneckEntry] = []
        for project in projects:
            if self._is_excluded(project):
                continue
            days = (now - project.stage_entered_at) // DAY_MS
            if days < threshold:
                continue
            entries.append(
                BottleneckEntry(
                    project_id=project.id,
                    name=project.name,
                    category=project.category,
                    priority=project.priority,
                    status=project.status,
                    stage_entered_at=project.stage_entered_at,
                    days_in_stage=int(days),
                )
            )
        entries.sort(key=lambda e: (-e.days_in_stage, e.stage_entered_at, e.project_id))
        return entries

    def should_surface(self, sig: str, now: int) -> tuple[bool, int | None]:
        """Whether the alert for *sig* is due, plus the last dismissal time."""
        if not sig:
            return False, None
        last = self.dismissals.get_dismissed_at(sig)
        if last is None:
            return True, None
        return now - last >= self.reminder_interval_ms, last

    def check(self, projects: Iterable[Project], now: int, threshold_days: int | None = None) -> BottleneckAlert:
        entries = self.scan(projects, now, threshold_days)
        sig = signature(entries)
        surface, last = self.should_surface(sig, now)
        return BottleneckAlert(
            signature=sig,
            entries=tuple(entries),
            surface=surface,
            threshold_days=self.threshold_days if threshold_days is None else threshold_days,
            last_dismissed_at=last,
        )

    def dismiss(self, sig: str, now: int, *, actor: str = "") -> None:
        if not sig:
            msg = "Cannot dismiss an empty bottleneck signature"
            raise ValueError(msg)
        self.dismissals.set_dismissed_at(sig, now, actor=actor)
        logger.info("Bottleneck alert dismissed by %s (%d projects)", actor or "-", sig.count("|") + 1)


class MonitorTicker:
    """Runs a bottleneck check on a fixed cadence on a background thread.

    ``poll`` returns the current alert; surfacing alerts are passed to the
    notifier. Errors in one tick are logged and the ticker keeps going.
    """

    def __init__(
        self,
        poll: Callable[[], BottleneckAlert],
        notifier: Notifier,
        *,
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        if interval_seconds <= 0:
            msg = f"interval_seconds must be > 0, got {interval_seconds}"
            raise ValueError(msg)
        self._poll = poll
        self._notifier = notifier
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def tick(self) -> BottleneckAlert | None:
        try:
            alert = self._poll()
        except Exception:
            logger.exception("Bottleneck poll failed")
            return None
        if alert.surface:
            self._notifier.notify(alert)
        return alert

    def run(self, *, max_ticks: int | None = None) -> None:
        """Tick until stopped (or *max_ticks* reached). Blocks the caller."""
        ticks = 0
        while not self._stop.is_set():
            self.tick()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            self._stop.wait(self.interval_seconds)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="jobtrack-bottleneck-ticker", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
