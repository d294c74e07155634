# src/jobtrack/pipelines.py
"""Stage pipeline registry -- loading, caching, and validation.

Provides PipelineRegistry for the ordered stage lists of each project
category, the fixed auto-advance rules, entry stages used when a project
changes category, and the gate stages the guard engine keys off.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from jobtrack.models import ON_HOLD_STATUS, Category

logger = logging.getLogger(__name__)

_GATE_KEYS: frozenset[str] = frozenset({"mockup", "production", "delivery"})
_WATCH_KEYS: frozenset[str] = frozenset({"production_watch", "delivery_watch"})


# ---------------------------------------------------------------------------
# Frozen dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GateStages:
    """Stages that trigger guard evaluation in a pipeline.

    ``None`` means the pipeline has no such gate (quotes are never billed or
    mocked up through the lifecycle engine).
    """

    mockup: str | None = None
    production: str | None = None
    production_watch: tuple[str, ...] = ()
    delivery: str | None = None
    delivery_watch: tuple[str, ...] = ()


@dataclass(frozen=True)
class Pipeline:
    """Ordered stage list shared by one or more project categories."""

    name: str
    display_name: str
    description: str
    categories: tuple[Category, ...]
    stages: tuple[str, ...]
    initial_stage: str
    entry_stage: str
    terminal_stages: frozenset[str]
    auto_advance: dict[str, str]
    gates: GateStages

    def index_of(self, stage: str) -> int | None:
        try:
            return self.stages.index(stage)
        except ValueError:
            return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pipeline": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "categories": [c.value for c in self.categories],
            "stages": list(self.stages),
            "initial_stage": self.initial_stage,
            "entry_stage": self.entry_stage,
            "terminal_stages": [s for s in self.stages if s in self.terminal_stages],
            "auto_advance": dict(self.auto_advance),
        }


# ---------------------------------------------------------------------------
# PipelineRegistry
# ---------------------------------------------------------------------------


class PipelineRegistry:
    """Loads, caches, and queries stage pipelines.

    Built-in pipelines are always registered. ``load()`` adds project-local
    overrides from ``.jobtrack/pipelines/*.json``; an override replaces the
    built-in pipeline with the same name.
    """

    MAX_STAGES = 60

    def __init__(self) -> None:
        self._pipelines: dict[str, Pipeline] = {}
        self._by_category: dict[Category, Pipeline] = {}
        self._index_cache: dict[tuple[str, str], int] = {}
        self._loaded = False
        self._register_builtins()

    # -- Parsing ------------------------------------------------------------

    @staticmethod
    def parse_pipeline(raw: dict[str, Any]) -> Pipeline:
        """Parse a pipeline from a JSON-compatible dict.

        Raises:
            ValueError: If the definition is malformed or exceeds size limits.
            KeyError: If required keys are missing.
        """
        name = raw["pipeline"]
        if not isinstance(name, str) or not name.strip():
            msg = "Pipeline name must be a non-empty string"
            raise ValueError(msg)

        raw_stages = raw.get("stages")
        if not isinstance(raw_stages, list) or not raw_stages:
            msg = f"Pipeline '{name}': 'stages' must be a non-empty list"
            raise ValueError(msg)
        if len(raw_stages) > PipelineRegistry.MAX_STAGES:
            msg = f"Pipeline '{name}' has {len(raw_stages)} stages (max {PipelineRegistry.MAX_STAGES})"
            raise ValueError(msg)
        for i, s in enumerate(raw_stages):
            if not isinstance(s, str) or not s.strip():
                msg = f"Pipeline '{name}': stage at index {i} must be a non-empty string"
                raise ValueError(msg)

        categories = tuple(Category(c) for c in raw.get("categories", []))

        raw_gates = raw.get("gates") or {}
        if not isinstance(raw_gates, dict):
            msg = f"Pipeline '{name}': 'gates' must be a dict"
            raise ValueError(msg)
        unknown = set(raw_gates) - _GATE_KEYS - _WATCH_KEYS
        if unknown:
            msg = f"Pipeline '{name}': unknown gate keys {sorted(unknown)}"
            raise ValueError(msg)

        logger.debug("Parsing pipeline: %s", name)

        return Pipeline(
            name=name,
            display_name=raw.get("display_name", name),
            description=raw.get("description", ""),
            categories=categories,
            stages=tuple(raw_stages),
            initial_stage=raw.get("initial_stage", raw_stages[0]),
            entry_stage=raw.get("entry_stage", raw_stages[0]),
            terminal_stages=frozenset(raw.get("terminal_stages", [])),
            auto_advance=dict(raw.get("auto_advance") or {}),
            gates=GateStages(
                mockup=raw_gates.get("mockup"),
                production=raw_gates.get("production"),
                production_watch=tuple(raw_gates.get("production_watch", [])),
                delivery=raw_gates.get("delivery"),
                delivery_watch=tuple(raw_gates.get("delivery_watch", [])),
            ),
        )

    @staticmethod
    def validate_pipeline(pipeline: Pipeline) -> list[str]:
        """Check a Pipeline for internal consistency.

        Returns:
            List of error messages. Empty list means valid.
        """
        errors: list[str] = []
        stage_set = set(pipeline.stages)

        if len(stage_set) != len(pipeline.stages):
            seen: set[str] = set()
            for s in pipeline.stages:
                if s in seen:
                    errors.append(f"duplicate stage '{s}'")
                seen.add(s)

        if ON_HOLD_STATUS in stage_set:
            errors.append(f"'{ON_HOLD_STATUS}' is reserved for the hold overlay and cannot be a stage")

        if not pipeline.categories:
            errors.append("pipeline serves no categories")

        for label, stage in (("initial_stage", pipeline.initial_stage), ("entry_stage", pipeline.entry_stage)):
            if stage not in stage_set:
                errors.append(f"{label} '{stage}' is not in stages list")

        for t in sorted(pipeline.terminal_stages - stage_set):
            errors.append(f"terminal stage '{t}' is not in stages list")

        for src, dst in pipeline.auto_advance.items():
            if src not in stage_set or dst not in stage_set:
                errors.append(f"auto_advance '{src}' -> '{dst}' references an unknown stage")
            elif pipeline.stages.index(dst) <= pipeline.stages.index(src):
                errors.append(f"auto_advance '{src}' -> '{dst}' must move forward")

        gates = pipeline.gates
        for label, stage in (("mockup", gates.mockup), ("production", gates.production), ("delivery", gates.delivery)):
            if stage is not None and stage not in stage_set:
                errors.append(f"gate '{label}' stage '{stage}' is not in stages list")
        for s in (*gates.production_watch, *gates.delivery_watch):
            if s not in stage_set:
                errors.append(f"gate watch stage '{s}' is not in stages list")

        return errors

    # -- Registration (internal) --------------------------------------------

    def _register(self, pipeline: Pipeline) -> None:
        logger.debug("Registering pipeline: %s (%d stages)", pipeline.name, len(pipeline.stages))
        previous = self._pipelines.get(pipeline.name)
        if previous is not None:
            for k in [k for k in self._index_cache if k[0] == previous.name]:
                del self._index_cache[k]
        self._pipelines[pipeline.name] = pipeline
        for category in pipeline.categories:
            self._by_category[category] = pipeline
        for i, stage in enumerate(pipeline.stages):
            self._index_cache[(pipeline.name, stage)] = i

    def _register_builtins(self) -> None:
        from jobtrack.pipelines_data import BUILT_IN_PIPELINES

        for raw in BUILT_IN_PIPELINES.values():
            pipeline = self.parse_pipeline(raw)
            errors = self.validate_pipeline(pipeline)
            if errors:
                msg = f"Built-in pipeline '{pipeline.name}' is invalid: {errors}"
                raise ValueError(msg)
            self._register(pipeline)

    # -- Queries ------------------------------------------------------------

    def pipeline_for(self, category: Category | str) -> Pipeline:
        pipeline = self._by_category.get(Category(category))
        if pipeline is None:
            msg = f"No pipeline registered for category '{category}'"
            raise KeyError(msg)
        return pipeline

    def list_pipelines(self) -> list[Pipeline]:
        return list(self._pipelines.values())

    def stages_for(self, category: Category | str) -> list[str]:
        return list(self.pipeline_for(category).stages)

    def index_of(self, category: Category | str, stage: str) -> int | None:
        """Position of *stage* in the category's pipeline via O(1) cache."""
        return self._index_cache.get((self.pipeline_for(category).name, stage))

    def is_valid_stage(self, category: Category | str, stage: str) -> bool:
        return self.index_of(category, stage) is not None

    def auto_advance(self, stage: str, category: Category | str | None = None) -> str | None:
        """Stage a completed *stage* rolls forward to, if any.

        Without a category the rule is looked up across all pipelines.
        """
        if category is not None:
            return self.pipeline_for(category).auto_advance.get(stage)
        for pipeline in self._pipelines.values():
            nxt = pipeline.auto_advance.get(stage)
            if nxt is not None:
                return nxt
        return None

    def initial_stage(self, category: Category | str) -> str:
        return self.pipeline_for(category).initial_stage

    def default_entry_stage(self, category: Category | str) -> str:
        """Stage a project starts at after converting into *category*."""
        return self.pipeline_for(category).entry_stage

    def next_stage(self, category: Category | str, stage: str) -> str | None:
        pipeline = self.pipeline_for(category)
        idx = pipeline.index_of(stage)
        if idx is None or idx + 1 >= len(pipeline.stages):
            return None
        return pipeline.stages[idx + 1]

    def is_terminal(self, category: Category | str, stage: str) -> bool:
        return stage in self.pipeline_for(category).terminal_stages

    def terminal_stages(self) -> frozenset[str]:
        """Union of terminal stages across every registered pipeline."""
        result: set[str] = set()
        for pipeline in self._pipelines.values():
            result |= pipeline.terminal_stages
        return frozenset(result)

    def resolve_category_change(self, current_status: str, target: Category | str) -> str:
        """Keep *current_status* if the target pipeline has it, else use its entry stage."""
        if self.is_valid_stage(target, current_status):
            return current_status
        fallback = self.default_entry_stage(target)
        logger.debug("Status '%s' not in %s pipeline; falling back to '%s'", current_status, target, fallback)
        return fallback

    # -- Loading ------------------------------------------------------------

    def load(self, jobtrack_dir: Path) -> None:
        """Load project-local pipeline overrides from ``.jobtrack/pipelines/*.json``.

        Idempotent: second call is a no-op. Invalid files are logged and skipped.
        """
        if self._loaded:
            return

        pipelines_dir = jobtrack_dir / "pipelines"
        if pipelines_dir.is_dir():
            for path in sorted(pipelines_dir.glob("*.json")):
                try:
                    raw = json.loads(path.read_text())
                    if not isinstance(raw, dict):
                        raise ValueError("pipeline file must contain a JSON object")
                    pipeline = self.parse_pipeline(raw)
                    errors = self.validate_pipeline(pipeline)
                    if errors:
                        logger.warning("Skipping invalid pipeline %s: %s", path.name, errors)
                        continue
                    self._register(pipeline)
                    logger.info("Loaded project-local pipeline override: %s", pipeline.name)
                except (ValueError, KeyError, TypeError, AttributeError) as exc:
                    logger.warning("Skipping invalid pipeline file %s: %s", path.name, exc)

        self._loaded = True
        logger.info("Pipeline loading complete: %d pipelines", len(self._pipelines))
