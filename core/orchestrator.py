"""Goal orchestration: the per-goal state machine.

:class:`GoalOrchestrator` drives one :class:`~core.types.ExecutionContext`
through::

    SUBMITTED → PLANNING → EXECUTING → COMPARING → COMPLETED | FAILED
                    └───────────┴───────────┴────→ CANCELLED

* **Planning**: the plan oracle proposes candidate plans.  Zero candidates
  (or an oracle error) fails the goal immediately.  At most
  ``max_candidates`` plans are kept.
* **Executing**: every candidate runs concurrently in its own sandbox via
  :class:`~core.executor.CandidateExecutor`.  Candidate-local failures are
  captured in that candidate's :class:`~core.types.ExecutionResult`.
* **Comparing**: the :class:`~core.result_comparator.ResultComparator`
  ranks all results; rank 1 becomes the goal's outcome.  Losing sandboxes
  are torn down; the winner's is kept when ``keep_winning_sandbox`` is set.
  The goal fails only when every candidate failed without completing a
  single step.
* **Cancelled**: cooperative.  The cancel event is checked between steps;
  once observed, every candidate sandbox is torn down.

Typical usage::

    orchestrator = GoalOrchestrator(oracle, executor, sandbox_manager)
    context = ExecutionContext(goal=Goal("Build the docs"))
    await orchestrator.run(context, asyncio.Event())
    print(context.state, context.outcome)
"""
from __future__ import annotations

import asyncio
from typing import Any, List, Optional

from core.executor import CandidateExecutor, CandidateRun
from core.logging_utils import log_json
from core.result_comparator import ResultComparator
from core.types import ConstraintKind, ExecutionContext, ExecutionResult, GoalState, Plan

DEFAULT_MAX_CANDIDATES = 8


class GoalOrchestrator:
    """Runs goals end to end.  One instance serves any number of goals concurrently."""

    def __init__(self, oracle, executor: CandidateExecutor, sandbox_manager,
                 comparator: Optional[ResultComparator] = None, memory=None,
                 max_candidates: int = DEFAULT_MAX_CANDIDATES,
                 keep_winning_sandbox: bool = True):
        self.oracle = oracle
        self.executor = executor
        self.sandbox_manager = sandbox_manager
        self.comparator = comparator or ResultComparator()
        self.memory = memory
        self.max_candidates = max_candidates
        self.keep_winning_sandbox = keep_winning_sandbox

    async def run(self, context: ExecutionContext,
                  cancel_event: Optional[asyncio.Event] = None) -> ExecutionContext:
        cancel_event = cancel_event or asyncio.Event()
        self._apply_constraints(context)

        plans = await self._plan(context)
        if plans is None:
            return context
        if cancel_event.is_set():
            await self._transition(context, GoalState.CANCELLED)
            return context

        await self._transition(context, GoalState.EXECUTING)
        runs = await self._execute(plans, context, cancel_event)

        if cancel_event.is_set():
            await self._teardown(context, [r.sandbox for r in runs if r.sandbox is not None])
            await self._transition(context, GoalState.CANCELLED)
            return context

        await self._transition(context, GoalState.COMPARING)
        await self._compare(context, runs)
        return context

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _plan(self, context: ExecutionContext) -> Optional[List[Plan]]:
        await self._transition(context, GoalState.PLANNING)
        goal = context.goal
        try:
            plans = list(await self.oracle.propose_plans(goal, context))
        except Exception as exc:
            log_json("ERROR", "planning_failed", goal=goal.id, details={"error": str(exc)})
            context.error = f"Planning failed: {exc}"
            await self._transition(context, GoalState.FAILED)
            return None

        if not plans:
            context.error = "No candidate plans"
            await self._transition(context, GoalState.FAILED)
            return None

        if len(plans) > self.max_candidates:
            log_json("WARN", "candidates_dropped", goal=goal.id, details={
                "proposed": len(plans), "kept": self.max_candidates,
                "dropped": [p.id for p in plans[self.max_candidates:]],
            })
            plans = plans[: self.max_candidates]

        for plan in plans:
            plan.goal_id = plan.goal_id or goal.id
        context.record("plans_proposed", {"plan_ids": [p.id for p in plans]})
        return plans

    async def _execute(self, plans: List[Plan], context: ExecutionContext,
                       cancel_event: asyncio.Event) -> List[CandidateRun]:
        return list(await asyncio.gather(
            *(self._run_candidate(plan, context, cancel_event) for plan in plans)
        ))

    async def _run_candidate(self, plan: Plan, context: ExecutionContext,
                             cancel_event: asyncio.Event) -> CandidateRun:
        try:
            return await self.executor.run(plan, context, cancel_event)
        except Exception as exc:
            log_json("ERROR", "candidate_crashed", goal=context.goal.id,
                     details={"plan_id": plan.id, "error": str(exc)})
            return CandidateRun(plan=plan, result=ExecutionResult(
                plan_id=plan.id, sandbox_id="", success=False,
                error=f"{type(exc).__name__}: {exc}",
            ))

    async def _compare(self, context: ExecutionContext, runs: List[CandidateRun]) -> None:
        goal = context.goal
        ranked = self.comparator.compare_and_rank([r.result for r in runs])
        context.ranked_results = ranked
        best = ranked[0]
        context.record("candidates_ranked", {
            "ranking": [(s.rank, s.result.plan_id, s.score) for s in ranked],
        })

        threshold = self._quality_threshold(context)
        if threshold is not None:
            context.current_state["quality_threshold_met"] = best.score >= threshold

        winner = None
        if self.keep_winning_sandbox:
            winner = next((r.sandbox for r in runs
                           if r.sandbox is not None and r.sandbox.id == best.result.sandbox_id), None)
        losers = [r.sandbox for r in runs if r.sandbox is not None and r.sandbox is not winner]
        await self._teardown(context, losers)

        total_failure = all(not r.result.success and r.result.steps_completed == 0 for r in runs)
        if total_failure:
            context.error = f"All {len(runs)} candidates failed"
            if winner is not None:
                await self._teardown(context, [winner])
            await self._transition(context, GoalState.FAILED)
            return

        context.outcome = best
        if winner is not None:
            context.current_state["winning_sandbox"] = winner.to_dict()
        log_json("INFO", "goal_outcome_selected", goal=goal.id, details={
            "plan_id": best.result.plan_id, "score": best.score,
            "candidates": len(ranked),
        })
        await self._transition(context, GoalState.COMPLETED)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _teardown(self, context: ExecutionContext, sandboxes: List[Any]) -> None:
        for sandbox in sandboxes:
            try:
                await self.sandbox_manager.cleanup_sandbox(sandbox)
            except Exception as exc:
                log_json("ERROR", "sandbox_cleanup_failed", goal=context.goal.id,
                         details={"sandbox_id": sandbox.id, "error": str(exc)})

    async def _transition(self, context: ExecutionContext, state: GoalState) -> None:
        previous = context.state
        context.state = state
        context.record("state_changed", {"from": previous.value, "to": state.value})
        log_json("INFO", "goal_state_changed", goal=context.goal.id,
                 details={"from": previous.value, "to": state.value})
        if self.memory is not None:
            try:
                await self.memory.add("goal_state_changed", {
                    "goal_id": context.goal.id, "state": state.value,
                }, importance=0.9 if state.is_terminal else 0.3)
            except Exception as exc:
                log_json("WARN", "working_memory_add_failed",
                         goal=context.goal.id, details={"error": str(exc)})

    @staticmethod
    def _apply_constraints(context: ExecutionContext) -> None:
        goal = context.goal
        for constraint in goal.constraints_of(ConstraintKind.CUSTOM):
            context.current_state[constraint.name] = constraint.value
        if goal.success_criteria:
            context.current_state["success_criteria"] = list(goal.success_criteria)

    @staticmethod
    def _quality_threshold(context: ExecutionContext) -> Optional[float]:
        thresholds = []
        for constraint in context.goal.constraints_of(ConstraintKind.QUALITY_THRESHOLD):
            try:
                thresholds.append(float(constraint.value))
            except (TypeError, ValueError):
                log_json("WARN", "constraint_ignored", goal=context.goal.id,
                         details={"name": constraint.name, "value": constraint.value})
        return max(thresholds) if thresholds else None
