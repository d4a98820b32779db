# model.py
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import PipelineDefinitionError, PipelineError
from .guards import Guard, always, guard as as_guard

if TYPE_CHECKING:
    from .actions.base import Action
    from .notify import NotifySettings


class FailurePolicy(str, enum.Enum):
    ABORT = "abort"
    CONTINUE_DEGRADED = "continue_degraded"


class StageStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNSTABLE = "unstable"

    @property
    def terminal(self) -> bool:
        return self not in (StageStatus.PENDING, StageStatus.RUNNING)


def overall_status(statuses: Iterable[StageStatus]) -> StageStatus:
    """any FAILED => FAILED; else any UNSTABLE => UNSTABLE; else SUCCEEDED."""
    seen = set(statuses)
    if StageStatus.FAILED in seen:
        return StageStatus.FAILED
    if StageStatus.UNSTABLE in seen:
        return StageStatus.UNSTABLE
    return StageStatus.SUCCEEDED


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Stage:
    """A named, guarded unit of sequential work."""
    name: str
    actions: Tuple["Action", ...]
    guard: Guard = field(default_factory=always)
    on_failure: FailurePolicy = FailurePolicy.ABORT
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None  # default for actions without their own
    description: str = ""

    def __post_init__(self):
        if not self.name:
            raise PipelineDefinitionError("stage name must not be empty")
        object.__setattr__(self, "actions", tuple(self.actions))
        if not self.actions:
            raise PipelineDefinitionError(f"stage {self.name!r} has no actions", stage=self.name)
        object.__setattr__(self, "guard", as_guard(self.guard))
        object.__setattr__(self, "on_failure", FailurePolicy(self.on_failure))
        object.__setattr__(self, "env", MappingProxyType({k: str(v) for k, v in dict(self.env).items()}))


@dataclass(frozen=True)
class Pipeline:
    """
    An ordered list of stages plus the run-wide defaults they need.

    environment: default context values (overridable per run)
    required:    keys that must resolve before any stage runs
    attachments: workspace-relative paths attached to the notification
    """
    name: str
    stages: Tuple[Stage, ...]
    environment: Mapping[str, str] = field(default_factory=dict)
    required: Tuple[str, ...] = ()
    notify: Optional["NotifySettings"] = None
    attachments: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "stages", tuple(self.stages))
        object.__setattr__(self, "required", tuple(self.required))
        object.__setattr__(self, "attachments", tuple(self.attachments))
        object.__setattr__(
            self, "environment", MappingProxyType({k: str(v) for k, v in dict(self.environment).items()})
        )
        if not self.stages:
            raise PipelineDefinitionError(f"pipeline {self.name!r} has no stages")
        names = [s.name for s in self.stages]
        if len(set(names)) != len(names):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise PipelineDefinitionError(f"Duplicate stage names found: {dupes}")

    def stage(self, name: str) -> Stage:
        for s in self.stages:
            if s.name == name:
                return s
        raise KeyError(name)


# ---------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ActionResult:
    action: str
    ok: bool
    exit_code: Optional[int] = None
    output: str = ""  # already masked
    error: Optional[PipelineError] = None
    degraded: bool = False  # advisory failure: stage becomes UNSTABLE, actions continue
    outputs: Mapping[str, Any] = field(default_factory=dict)
    duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "ok": self.ok,
            "exit_code": self.exit_code,
            "degraded": self.degraded,
            "error": self.error.to_dict() if self.error else None,
            "outputs": {k: _jsonable(v) for k, v in self.outputs.items()},
            "duration": round(self.duration, 3),
        }


@dataclass(frozen=True)
class StageResult:
    stage: str
    status: StageStatus
    output: str = ""
    exit_code: Optional[int] = None
    error: Optional[PipelineError] = None
    actions: Tuple[ActionResult, ...] = ()
    reason: str = ""  # why skipped / degraded
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @classmethod
    def skipped(cls, stage: str, reason: str) -> "StageResult":
        now = utcnow()
        return cls(stage=stage, status=StageStatus.SKIPPED, reason=reason, started_at=now, finished_at=now)

    @property
    def duration(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def outputs(self) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        for a in self.actions:
            merged.update(a.outputs)
        return merged

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "reason": self.reason,
            "error": self.error.to_dict() if self.error else None,
            "actions": [a.to_dict() for a in self.actions],
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "duration": round(self.duration, 3),
        }


class Run:
    """All stage results of one pipeline execution plus the derived status."""

    def __init__(self, run_id: str, pipeline: str, build_number: Optional[int] = None):
        self.run_id = run_id
        self.pipeline = pipeline
        self.build_number = build_number
        self.started_at = utcnow()
        self.finished_at: Optional[datetime] = None
        self.error: Optional[PipelineError] = None
        self.cancelled = False
        self._results: List[StageResult] = []

    @property
    def results(self) -> Tuple[StageResult, ...]:
        return tuple(self._results)

    @property
    def finalized(self) -> bool:
        return self.finished_at is not None

    @property
    def status(self) -> StageStatus:
        # a cancelled run never reports success, even if no stage was mid-flight
        if self.cancelled:
            return StageStatus.FAILED
        return overall_status(r.status for r in self._results)

    def record(self, result: StageResult) -> None:
        if self.finalized:
            raise RuntimeError(f"run {self.run_id} is finalized")
        if not result.status.terminal:
            raise ValueError(f"stage {result.stage!r} recorded in non-terminal status {result.status.value}")
        self._results.append(result)

    def finalize(self) -> None:
        if not self.finalized:
            self.finished_at = utcnow()

    def result(self, stage: str) -> StageResult:
        for r in self._results:
            if r.stage == stage:
                return r
        raise KeyError(stage)

    def statuses(self) -> List[StageStatus]:
        return [r.status for r in self._results]

    @property
    def duration(self) -> float:
        end = self.finished_at or utcnow()
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "pipeline": self.pipeline,
            "build_number": self.build_number,
            "status": self.status.value,
            "cancelled": self.cancelled,
            "error": self.error.to_dict() if self.error else None,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "stages": [r.to_dict() for r in self._results],
        }

    def __repr__(self) -> str:
        return f"Run({self.run_id!r}, status={self.status.value}, stages={len(self._results)})"


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _jsonable(v: Any) -> Any:
    if isinstance(v, (str, int, float, bool)) or v is None:
        return v
    if isinstance(v, (list, tuple)):
        return [_jsonable(x) for x in v]
    if isinstance(v, dict):
        return {str(k): _jsonable(x) for k, x in v.items()}
    return str(v)
