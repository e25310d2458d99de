"""Candidate executor: runs one plan inside one sandbox.

Steps run strictly in declared order.  Before every step the executor checks
for cooperative stop conditions (cancellation, goal deadline, ``time_limit``
constraint); once one fires, no further tools are dispatched.  Each step is
then gated by the :class:`~core.resource_manager.ResourceManager`: a rejected
reservation fails the step without invoking its tool.  A failing step does
not abort the candidate, so partial completion can still be scored.

Working-memory and learning writes are best-effort telemetry and never abort
a candidate.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, List, Optional

from core.exceptions import ReservationRejected, SandboxCreationError
from core.logging_utils import log_json
from core.resource_manager import ResourceManager
from core.tool_registry import ToolRegistry
from core.types import (
    ConstraintKind,
    ExecutionContext,
    ExecutionResult,
    Plan,
    PlanStep,
    ResourceUsage,
    ToolExecutionResult,
)

DEADLINE_EXCEEDED = "Deadline exceeded"
TIME_LIMIT_EXCEEDED = "Time limit exceeded"
CANCELLED = "Cancelled"


@dataclass
class CandidateRun:
    """Outcome of one candidate: its result plus the sandbox it ran in (if any)."""

    plan: Plan
    result: ExecutionResult
    sandbox: Any = None


def _as_usage(value: Any) -> Optional[ResourceUsage]:
    if isinstance(value, ResourceUsage):
        return value
    if isinstance(value, dict):
        return ResourceUsage.from_dict(value)
    return None


class CandidateExecutor:
    """Execute plans step by step under resource gating.

    Args:
        sandbox_manager: Creates and tracks candidate sandboxes.
        resource_manager: Gates every step.
        registry: Dispatches tool invocations.
        learning: Optional :class:`~core.learning_system.LearningSystem`.
        memory: Optional :class:`~memory.working_memory.WorkingMemory`.
        default_step_resources: Estimate used when neither the step nor the
            tool declares one.
        use_isolated_branch: Request a git worktree per sandbox.
    """

    def __init__(self, sandbox_manager, resource_manager: ResourceManager, registry: ToolRegistry,
                 learning=None, memory=None,
                 default_step_resources: Optional[ResourceUsage] = None,
                 use_isolated_branch: bool = True):
        self.sandbox_manager = sandbox_manager
        self.resource_manager = resource_manager
        self.registry = registry
        self.learning = learning
        self.memory = memory
        self.default_step_resources = default_step_resources or ResourceUsage()
        self.use_isolated_branch = use_isolated_branch

    async def run(self, plan: Plan, context: ExecutionContext,
                  cancel_event: Optional[asyncio.Event] = None) -> CandidateRun:
        goal = context.goal
        try:
            sandbox = await self.sandbox_manager.create_sandbox(use_isolated_branch=self.use_isolated_branch)
        except SandboxCreationError as exc:
            log_json("ERROR", "candidate_sandbox_failed", goal=goal.id,
                     details={"plan_id": plan.id, "error": str(exc)})
            return CandidateRun(plan=plan, result=ExecutionResult(
                plan_id=plan.id, sandbox_id="", success=False,
                steps_failed=len(plan.steps), error=f"Sandbox creation failed: {exc}",
            ))

        t0 = time.monotonic()
        completed = failed = 0
        first_error: Optional[str] = None
        stop_reason: Optional[str] = None
        output: Any = None
        cost_total: Optional[float] = None
        time_limit_ms = self._time_limit_ms(context)
        crash: Optional[str] = None

        try:
            for index, step in enumerate(plan.steps, start=1):
                stop_reason = self._stop_reason(context, cancel_event, t0, time_limit_ms)
                if stop_reason:
                    log_json("INFO", "candidate_stopped", goal=goal.id,
                             details={"plan_id": plan.id, "reason": stop_reason, "at_step": step.id})
                    break

                tool_result = await self._run_step(step, context, sandbox)
                context.tool_results.append(tool_result)
                context.available_resources = self.resource_manager.get_state()
                context.record(f"step_{index}_executed", {
                    "plan_id": plan.id,
                    "sandbox_id": sandbox.id,
                    "step_id": step.id,
                    "tool_id": step.tool_id,
                    "success": tool_result.success,
                    "error": tool_result.error,
                })

                if tool_result.success:
                    completed += 1
                    output = tool_result.result
                else:
                    failed += 1
                    if first_error is None:
                        first_error = f"{step.id}: {tool_result.error}"
                if tool_result.cost is not None:
                    cost_total = (cost_total or 0.0) + tool_result.cost

                await self._remember(step, plan, sandbox.id, tool_result)
        except Exception as exc:
            # The partial tally and the sandbox survive a crash.
            crash = f"{type(exc).__name__}: {exc}"
            failed += 1
            log_json("ERROR", "candidate_crashed", goal=goal.id,
                     details={"plan_id": plan.id, "sandbox_id": sandbox.id, "error": crash})

        elapsed_ms = (time.monotonic() - t0) * 1000
        all_done = completed == len(plan.steps) and completed > 0
        result = ExecutionResult(
            plan_id=plan.id,
            sandbox_id=sandbox.id,
            success=all_done and stop_reason is None and crash is None,
            output=output,
            execution_time_ms=elapsed_ms,
            steps_completed=completed,
            steps_failed=failed,
            error=stop_reason or crash or first_error or (None if plan.steps else "empty plan"),
            cost=cost_total,
        )
        log_json("INFO", "candidate_finished", goal=goal.id, details={
            "plan_id": plan.id, "sandbox_id": sandbox.id, "success": result.success,
            "steps_completed": completed, "steps_failed": failed,
            "execution_time_ms": round(elapsed_ms, 2),
        })
        return CandidateRun(plan=plan, result=result, sandbox=sandbox)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _run_step(self, step: PlanStep, context: ExecutionContext, sandbox) -> ToolExecutionResult:
        estimate = self._estimate(step)

        over = self._over_goal_ceiling(context, estimate)
        if over:
            log_json("WARN", "step_over_goal_resource_limit", goal=context.goal.id,
                     details={"step_id": step.id, "dimension": over})
            return ToolExecutionResult(tool_id=step.tool_id, success=False,
                                       error=f"Step exceeds goal resource limit ({over})")

        try:
            reservation = self.resource_manager.reserve(estimate)
        except ReservationRejected as exc:
            log_json("WARN", "resource_reservation_rejected", goal=context.goal.id,
                     details={"step_id": step.id, "dimension": exc.dimension, "reason": str(exc)})
            return ToolExecutionResult(tool_id=step.tool_id, success=False,
                                       error=f"Resource reservation rejected: {exc}")

        tool_result: Optional[ToolExecutionResult] = None
        try:
            tool_result = await self.registry.execute(step.tool_id, step.parameters,
                                                      sandbox=sandbox, estimated=estimate)
        finally:
            # Also runs when the candidate task is cancelled mid-step.
            self.resource_manager.release(reservation, tool_result.resources_used if tool_result else None)

        await self._learn(step, tool_result)
        return tool_result

    def _estimate(self, step: PlanStep) -> ResourceUsage:
        if step.estimated_resources is not None:
            return step.estimated_resources
        if self.registry.has(step.tool_id):
            declared = self.registry.get(step.tool_id).default_resources
            if declared is not None:
                return declared
        return self.default_step_resources

    @staticmethod
    def _over_goal_ceiling(context: ExecutionContext, estimate: ResourceUsage) -> Optional[str]:
        for constraint in context.goal.constraints_of(ConstraintKind.RESOURCE_LIMIT):
            ceiling = _as_usage(constraint.value)
            if ceiling is None:
                continue
            for dim in ResourceUsage.DIMENSIONS:
                if getattr(estimate, dim) > getattr(ceiling, dim):
                    return dim
        return None

    # ------------------------------------------------------------------
    # Stop conditions
    # ------------------------------------------------------------------

    @staticmethod
    def _time_limit_ms(context: ExecutionContext) -> Optional[float]:
        limits: List[float] = []
        for constraint in context.goal.constraints_of(ConstraintKind.TIME_LIMIT):
            try:
                limits.append(float(constraint.value))
            except (TypeError, ValueError):
                log_json("WARN", "constraint_ignored", goal=context.goal.id,
                         details={"name": constraint.name, "value": constraint.value})
        return min(limits) if limits else None

    @staticmethod
    def _stop_reason(context: ExecutionContext, cancel_event: Optional[asyncio.Event],
                     started: float, time_limit_ms: Optional[float]) -> Optional[str]:
        if cancel_event is not None and cancel_event.is_set():
            return CANCELLED
        deadline = context.goal.deadline
        if deadline is not None and time.time() >= deadline:
            return DEADLINE_EXCEEDED
        if time_limit_ms is not None and (time.monotonic() - started) * 1000 >= time_limit_ms:
            return TIME_LIMIT_EXCEEDED
        return None

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    async def _learn(self, step: PlanStep, tool_result: ToolExecutionResult) -> None:
        if self.learning is None:
            return
        try:
            await self.learning.record_experience(
                step.description or step.id, step.tool_id, tool_result.success,
                tool_result.execution_time_ms, tool_result.resources_used,
            )
        except Exception as exc:
            log_json("WARN", "learning_record_failed",
                     details={"tool_id": step.tool_id, "error": str(exc)})

    async def _remember(self, step: PlanStep, plan: Plan, sandbox_id: str,
                        tool_result: ToolExecutionResult) -> None:
        if self.memory is None:
            return
        try:
            await self.memory.add("tool_executed", {
                "goal_id": plan.goal_id,
                "plan_id": plan.id,
                "sandbox_id": sandbox_id,
                "step_id": step.id,
                "tool_id": step.tool_id,
                "success": tool_result.success,
                "error": tool_result.error,
            }, importance=0.5 if tool_result.success else 0.8)
        except Exception as exc:
            log_json("WARN", "working_memory_add_failed",
                     details={"step_id": step.id, "error": str(exc)})
