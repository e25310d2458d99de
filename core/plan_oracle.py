"""
Plan oracles: the components that turn a goal into candidate plans.

The engine only depends on the :class:`PlanOracle` protocol.  What a plan
contains (tool choice, prompting) is the oracle's business.  Oracles must be
safe to call concurrently for different goals.
"""
from __future__ import annotations

import asyncio
import copy
import inspect
from pathlib import Path
from typing import Any, Callable, List, Protocol, Sequence, Union

from pydantic import ValidationError

from core.exceptions import PlanningError
from core.logging_utils import log_json
from core.plan_schema import PlanDocument
from core.types import ExecutionContext, Goal, Plan


class PlanOracle(Protocol):
    async def propose_plans(self, goal: Goal, context: ExecutionContext) -> List[Plan]: ...


class StaticPlanOracle:
    """Returns the same candidate plans for every goal (copied, tagged with the goal id)."""

    def __init__(self, plans: Sequence[Plan]):
        self._plans = list(plans)

    async def propose_plans(self, goal: Goal, context: ExecutionContext) -> List[Plan]:
        plans = copy.deepcopy(self._plans)
        for plan in plans:
            plan.goal_id = goal.id
        return plans


class CallablePlanOracle:
    """Adapts a plain function ``fn(goal, context) -> list[Plan]`` (sync or async)."""

    def __init__(self, fn: Callable[[Goal, ExecutionContext], Any]):
        self._fn = fn

    async def propose_plans(self, goal: Goal, context: ExecutionContext) -> List[Plan]:
        if inspect.iscoroutinefunction(self._fn):
            return list(await self._fn(goal, context))
        return list(await asyncio.to_thread(self._fn, goal, context))


class FilePlanOracle:
    """Loads candidate plans from a JSON plan document (see :mod:`core.plan_schema`)."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self, goal_id: str) -> List[Plan]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PlanningError(f"Cannot read plan document {self.path}: {exc}") from exc
        try:
            document = PlanDocument.model_validate_json(text)
        except ValidationError as exc:
            log_json("ERROR", "plan_document_invalid", details={"path": str(self.path), "error": str(exc)})
            raise PlanningError(f"Invalid plan document {self.path}: {exc}") from exc
        return document.to_plans(goal_id)

    async def propose_plans(self, goal: Goal, context: ExecutionContext) -> List[Plan]:
        return await asyncio.to_thread(self.load, goal.id)
