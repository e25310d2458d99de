"""
Data model shared by every engine component.

All records that cross the engine boundary (``Goal``, ``ExecutionContext``,
``ScoredResult``, ``Strategy``, ``ResourceLimits`` …) expose ``to_dict()``
returning a field-named, JSON-safe dict; inbound records also expose
``from_dict()``.
"""
from __future__ import annotations

import enum
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


class Priority(enum.IntEnum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2
    CRITICAL = 3

    @classmethod
    def parse(cls, value: Any) -> "Priority":
        """Accept a Priority, an int, or one of ``low|medium|high|critical``.

        Unknown or missing values fall back to ``MEDIUM``.
        """
        if isinstance(value, Priority):
            return value
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                return cls.MEDIUM
        if isinstance(value, str) and value.strip().upper() in cls.__members__:
            return cls[value.strip().upper()]
        return cls.MEDIUM


class ConstraintKind(str, enum.Enum):
    RESOURCE_LIMIT = "resource_limit"
    TIME_LIMIT = "time_limit"
    QUALITY_THRESHOLD = "quality_threshold"
    CUSTOM = "custom"


class GoalState(str, enum.Enum):
    SUBMITTED = "submitted"
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPARING = "comparing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (GoalState.COMPLETED, GoalState.FAILED, GoalState.CANCELLED)


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------

@dataclass
class ResourceUsage:
    cpu_percent: float = 0.0
    memory_mb: float = 0.0
    network_mbps: float = 0.0
    storage_mb: float = 0.0

    DIMENSIONS = ("cpu_percent", "memory_mb", "network_mbps", "storage_mb")

    def __add__(self, other: "ResourceUsage") -> "ResourceUsage":
        return ResourceUsage(*(getattr(self, d) + getattr(other, d) for d in self.DIMENSIONS))

    def __sub__(self, other: "ResourceUsage") -> "ResourceUsage":
        # Floor at zero so rounding never leaves negative usage behind.
        return ResourceUsage(*(max(0.0, getattr(self, d) - getattr(other, d)) for d in self.DIMENSIONS))

    def to_dict(self) -> Dict[str, float]:
        return {d: getattr(self, d) for d in self.DIMENSIONS}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ResourceUsage":
        data = data or {}
        return cls(**{d: float(data.get(d, 0.0) or 0.0) for d in cls.DIMENSIONS})


@dataclass
class ResourceLimits(ResourceUsage):
    """Configured ceiling per dimension."""

    cpu_percent: float = 100.0
    memory_mb: float = 4096.0
    network_mbps: float = 100.0
    storage_mb: float = 10240.0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ResourceLimits":
        defaults = cls()
        data = data or {}
        return cls(**{d: float(data.get(d, getattr(defaults, d))) for d in cls.DIMENSIONS})


@dataclass
class ResourceState:
    """Live aggregate of reserved usage against the configured limits."""

    current: ResourceUsage
    limits: ResourceLimits
    active_reservations: int = 0
    measured_total: ResourceUsage = field(default_factory=ResourceUsage)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current.to_dict(),
            "limits": self.limits.to_dict(),
            "active_reservations": self.active_reservations,
            "measured_total": self.measured_total.to_dict(),
        }


# ---------------------------------------------------------------------------
# Goals and plans
# ---------------------------------------------------------------------------

def new_goal_id() -> str:
    return f"goal_{uuid.uuid4().hex[:8]}"


@dataclass
class Constraint:
    name: str
    kind: ConstraintKind = ConstraintKind.CUSTOM
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        value = self.value.to_dict() if isinstance(self.value, ResourceUsage) else self.value
        return {"name": self.name, "kind": self.kind.value, "value": value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Constraint":
        kind = ConstraintKind(data.get("kind", ConstraintKind.CUSTOM.value))
        value = data.get("value")
        if kind is ConstraintKind.RESOURCE_LIMIT and isinstance(value, dict):
            value = ResourceUsage.from_dict(value)
        return cls(name=data["name"], kind=kind, value=value)


@dataclass(frozen=True)
class Goal:
    description: str
    id: str = field(default_factory=new_goal_id)
    priority: Priority = Priority.MEDIUM
    deadline: Optional[float] = None  # unix seconds
    constraints: List[Constraint] = field(default_factory=list)
    success_criteria: List[str] = field(default_factory=list)

    def constraints_of(self, kind: ConstraintKind) -> List[Constraint]:
        return [c for c in self.constraints if c.kind is kind]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "priority": self.priority.name.lower(),
            "deadline": self.deadline,
            "constraints": [c.to_dict() for c in self.constraints],
            "success_criteria": list(self.success_criteria),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Goal":
        kwargs: Dict[str, Any] = {
            "description": data["description"],
            "priority": Priority.parse(data.get("priority")),
            "deadline": data.get("deadline"),
            "constraints": [Constraint.from_dict(c) for c in data.get("constraints", [])],
            "success_criteria": list(data.get("success_criteria", [])),
        }
        if data.get("id"):
            kwargs["id"] = data["id"]
        return cls(**kwargs)


@dataclass
class PlanStep:
    id: str
    tool_id: str
    description: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)
    estimated_resources: Optional[ResourceUsage] = None
    dependencies: List[str] = field(default_factory=list)


@dataclass
class Plan:
    id: str
    steps: List[PlanStep]
    goal_id: str = ""
    strategy: str = ""


# ---------------------------------------------------------------------------
# Execution records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ToolExecutionResult:
    tool_id: str
    success: bool
    result: Any = None
    error: Optional[str] = None
    execution_time_ms: float = 0.0
    resources_used: ResourceUsage = field(default_factory=ResourceUsage)
    cost: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool_id": self.tool_id,
            "success": self.success,
            "result": self.result,
            "error": self.error,
            "execution_time_ms": self.execution_time_ms,
            "resources_used": self.resources_used.to_dict(),
            "cost": self.cost,
        }


@dataclass
class ContextEntry:
    timestamp: float
    event: str
    data: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExecutionResult:
    plan_id: str
    sandbox_id: str
    success: bool
    output: Any = None
    execution_time_ms: float = 0.0
    steps_completed: int = 0
    steps_failed: int = 0
    error: Optional[str] = None
    cost: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ScoredResult:
    """An ExecutionResult annotated by the comparator.

    Only :class:`core.result_comparator.ResultComparator` builds these; the
    rank is the 1-based position after sorting.
    """

    result: ExecutionResult
    score: float
    rank: int
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result": self.result.to_dict(),
            "score": self.score,
            "rank": self.rank,
            "reasons": list(self.reasons),
        }


@dataclass
class ExecutionContext:
    goal: Goal
    state: GoalState = GoalState.SUBMITTED
    current_state: Dict[str, Any] = field(default_factory=dict)
    available_resources: Optional[ResourceState] = None
    tool_results: List[ToolExecutionResult] = field(default_factory=list)
    context_memory: List[ContextEntry] = field(default_factory=list)
    ranked_results: List[ScoredResult] = field(default_factory=list)
    outcome: Optional[ScoredResult] = None
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def record(self, event: str, data: Any = None) -> None:
        now = time.time()
        self.context_memory.append(ContextEntry(timestamp=now, event=event, data=data))
        self.updated_at = now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "goal": self.goal.to_dict(),
            "state": self.state.value,
            "current_state": dict(self.current_state),
            "available_resources": self.available_resources.to_dict() if self.available_resources else None,
            "tool_results": [r.to_dict() for r in self.tool_results],
            "context_memory": [e.to_dict() for e in self.context_memory],
            "ranked_results": [r.to_dict() for r in self.ranked_results],
            "outcome": self.outcome.to_dict() if self.outcome else None,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


# ---------------------------------------------------------------------------
# Learning and memory
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Experience:
    goal_description: str
    tool_id: str
    success: bool
    execution_time_ms: float
    resources_used: ResourceUsage
    timestamp: float = field(default_factory=time.time)


@dataclass
class Strategy:
    tool_id: str
    success_rate: float = 0.0
    avg_execution_time_ms: float = 0.0
    avg_resource_usage: ResourceUsage = field(default_factory=ResourceUsage)
    usage_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool_id": self.tool_id,
            "success_rate": self.success_rate,
            "avg_execution_time_ms": self.avg_execution_time_ms,
            "avg_resource_usage": self.avg_resource_usage.to_dict(),
            "usage_count": self.usage_count,
        }


@dataclass(frozen=True)
class MemoryEntry:
    timestamp: float
    event: str
    data: Any = None
    importance: float = 0.5

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
