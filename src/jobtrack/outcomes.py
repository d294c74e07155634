"""Decision objects, block codes, and exceptions shared by the lifecycle engine.

Every refusal carries a stable ``BlockCode`` so callers can render specific
follow-up actions (release the hold, reactivate, collect payment) without
parsing messages.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from jobtrack.models import Project


class BlockCode(StrEnum):
    # Guard errors (recoverable)
    BILLING_PREREQUISITE_MISSING = "BILLING_PREREQUISITE_MISSING"
    MOCKUP_CLIENT_APPROVAL_REQUIRED = "MOCKUP_CLIENT_APPROVAL_REQUIRED"
    MOCKUP_FILE_REQUIRED = "MOCKUP_FILE_REQUIRED"
    MOCKUP_CLIENT_REJECTED = "MOCKUP_CLIENT_REJECTED"
    # Precondition errors (fatal to the requested operation)
    LEAD_CONFLICT = "LEAD_CONFLICT"
    PROJECT_CANCELLED = "PROJECT_CANCELLED"
    PROJECT_ON_HOLD = "PROJECT_ON_HOLD"
    PROJECT_NOT_ON_HOLD = "PROJECT_NOT_ON_HOLD"
    PROJECT_NOT_CANCELLED = "PROJECT_NOT_CANCELLED"


@dataclass(frozen=True)
class Allowed:
    """A permitted transition.

    ``overridden`` lists the guard codes an admin bypassed; ``missing`` keeps
    the prerequisites that were absent at the time so the override can be audited.
    """

    overridden: tuple[BlockCode, ...] = ()
    missing: tuple[str, ...] = ()

    ok = True


@dataclass(frozen=True)
class Blocked:
    code: BlockCode
    message: str
    missing: tuple[str, ...] = ()
    overridable: bool = False

    ok = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "missing": list(self.missing),
            "overridable": self.overridable,
        }


Decision = Allowed | Blocked


@dataclass(frozen=True)
class LifecycleResult:
    """Outcome of a LifecycleService operation.

    Callers apply ``project`` only when ``ok`` is true; there is no optimistic
    state to roll back.
    """

    ok: bool
    project: Project | None = None
    code: BlockCode | None = None
    missing: tuple[str, ...] = ()
    message: str = ""
    overridden: tuple[BlockCode, ...] = ()
    overridable: bool = False

    @classmethod
    def success(cls, project: Project, *, overridden: tuple[BlockCode, ...] = (), message: str = "") -> LifecycleResult:
        return cls(ok=True, project=project, overridden=overridden, message=message)

    @classmethod
    def blocked(cls, blocked: Blocked, project: Project | None = None) -> LifecycleResult:
        return cls(
            ok=False,
            project=project,
            code=blocked.code,
            missing=blocked.missing,
            message=blocked.message,
            overridable=blocked.overridable,
        )

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            return {
                "ok": True,
                "project": self.project.to_dict() if self.project is not None else None,
                "overridden": [c.value for c in self.overridden],
                "message": self.message,
            }
        return {
            "ok": False,
            "blocked": self.code.value if self.code is not None else None,
            "missing": list(self.missing),
            "message": self.message,
            "overridable": self.overridable,
        }


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class UnknownStatusError(ValueError):
    """Raised when a requested status is not part of the project's pipeline."""

    code = "UNKNOWN_STATUS"

    def __init__(self, status: str, category: str, valid: list[str]) -> None:
        self.status = status
        self.category = category
        self.valid = valid
        super().__init__(
            f"Unknown status '{status}' for category '{category}'. "
            f"Valid statuses: {', '.join(valid)}"
        )


class StoreConflictError(RuntimeError):
    """Raised when a conditional write loses against a concurrent writer.

    LifecycleService retries once; a second conflict reaches the caller and
    is transient (the request may be re-sent as-is).
    """

    code = "STORE_CONFLICT"

    def __init__(self, project_id: str, expected_version: int, actual_version: int | None) -> None:
        self.project_id = project_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Project {project_id} changed concurrently "
            f"(expected version {expected_version}, found {actual_version}). Retry the request."
        )
