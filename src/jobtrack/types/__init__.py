# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
# NEVER import from core.py, db_base.py, or any mixin — this prevents circular imports.
"""Typed return-value contracts for jobtrack store and API layers."""

from __future__ import annotations

from jobtrack.types.core import EpochMs, ProjectConfig
from jobtrack.types.events import DismissalRecord, EventRecord

__all__ = [
    "DismissalRecord",
    "EpochMs",
    "EventRecord",
    "ProjectConfig",
]
