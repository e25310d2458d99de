"""Pydantic models for plan documents loaded from JSON.

A plan document lists candidate plans for one goal::

    {
      "plans": [
        {"id": "quick", "strategy": "direct",
         "steps": [{"tool_id": "shell", "parameters": {"command": "echo hi"}}]}
      ]
    }

    from core.plan_schema import PlanDocument
    plans = PlanDocument.model_validate_json(text).to_plans(goal_id)
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from core.types import Plan, PlanStep, ResourceUsage


class ResourceSpec(BaseModel):
    cpu_percent: float = Field(default=0.0, ge=0)
    memory_mb: float = Field(default=0.0, ge=0)
    network_mbps: float = Field(default=0.0, ge=0)
    storage_mb: float = Field(default=0.0, ge=0)

    def to_usage(self) -> ResourceUsage:
        return ResourceUsage(**self.model_dump())


class StepSpec(BaseModel):
    id: Optional[str] = None
    tool_id: str
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=dict)
    estimated_resources: Optional[ResourceSpec] = None
    dependencies: List[str] = Field(default_factory=list)


class PlanSpec(BaseModel):
    id: Optional[str] = None
    strategy: str = ""
    steps: List[StepSpec]

    @model_validator(mode="after")
    def _dependencies_point_backwards(self) -> "PlanSpec":
        seen = set()
        for index, step in enumerate(self.steps, start=1):
            step_id = step.id or f"step_{index}"
            unknown = [d for d in step.dependencies if d not in seen]
            if unknown:
                raise ValueError(f"Step '{step_id}' depends on unknown or later steps: {unknown}")
            seen.add(step_id)
        return self

    def to_plan(self, goal_id: str, index: int) -> Plan:
        steps = [
            PlanStep(
                id=s.id or f"step_{i}",
                tool_id=s.tool_id,
                description=s.description,
                parameters=dict(s.parameters),
                estimated_resources=s.estimated_resources.to_usage() if s.estimated_resources else None,
                dependencies=list(s.dependencies),
            )
            for i, s in enumerate(self.steps, start=1)
        ]
        return Plan(id=self.id or f"plan_{index}", steps=steps, goal_id=goal_id, strategy=self.strategy)


class PlanDocument(BaseModel):
    plans: List[PlanSpec]

    def to_plans(self, goal_id: str) -> List[Plan]:
        return [spec.to_plan(goal_id, i) for i, spec in enumerate(self.plans, start=1)]
