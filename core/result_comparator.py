"""
Result Comparator: deterministic scoring and ranking of candidate outcomes.

Scoring is additive and every non-zero contribution appends a reason:

* base: success +50, failure +10 (plus the error text, if any)
* completion rate ``completed / (completed + failed)`` x 30
* time: < 30 s +10, < 60 s +5
* cost (only when present): < $0.01 +10, < $0.05 +5

Non-finite time or cost values earn no bonus and are reported in the reasons,
so every score is a finite float.  Sorting is by descending score with
``plan_id`` then ``sandbox_id`` as tie-breakers, which makes the ranking a
pure function of the result set regardless of completion order.
"""
from __future__ import annotations

import math
from typing import Iterable, List, Optional, Tuple

from core.types import ExecutionResult, ScoredResult

SUCCESS_POINTS = 50.0
FAILURE_POINTS = 10.0
COMPLETION_WEIGHT = 30.0
FAST_MS, FAST_POINTS = 30_000, 10.0
MODERATE_MS, MODERATE_POINTS = 60_000, 5.0
CHEAP_COST, CHEAP_POINTS = 0.01, 10.0
MODERATE_COST, MODERATE_COST_POINTS = 0.05, 5.0


class ResultComparator:

    def score(self, result: ExecutionResult) -> Tuple[float, List[str]]:
        """Return ``(score, reasons)`` for a single result."""
        score = 0.0
        reasons: List[str] = []

        if result.success:
            score += SUCCESS_POINTS
            reasons.append("Task completed successfully")
        else:
            score += FAILURE_POINTS
            if result.error:
                reasons.append(f"Task failed: {result.error}")

        total_steps = result.steps_completed + result.steps_failed
        completion_rate = result.steps_completed / total_steps if total_steps > 0 else 0.0
        completion_bonus = completion_rate * COMPLETION_WEIGHT
        if completion_bonus > 0:
            score += completion_bonus
            reasons.append(f"Completion rate {completion_rate:.0%} (+{completion_bonus:.1f})")

        elapsed = result.execution_time_ms
        if elapsed is None or not math.isfinite(elapsed):
            reasons.append("Ignored invalid execution time")
        elif elapsed < FAST_MS:
            score += FAST_POINTS
            reasons.append(f"Fast execution ({elapsed / 1000:.1f}s)")
        elif elapsed < MODERATE_MS:
            score += MODERATE_POINTS
            reasons.append(f"Moderate execution time ({elapsed / 1000:.1f}s)")

        cost = result.cost
        if cost is not None:
            if not math.isfinite(cost):
                reasons.append("Ignored invalid cost")
            elif cost < CHEAP_COST:
                score += CHEAP_POINTS
                reasons.append(f"Low cost (${cost:.4f})")
            elif cost < MODERATE_COST:
                score += MODERATE_COST_POINTS
                reasons.append(f"Moderate cost (${cost:.4f})")

        return score, reasons

    def compare_and_rank(self, results: Iterable[ExecutionResult]) -> List[ScoredResult]:
        scored = [(result, *self.score(result)) for result in results]
        scored.sort(key=lambda item: (-item[1], item[0].plan_id, item[0].sandbox_id))
        return [
            ScoredResult(result=result, score=score, rank=index, reasons=reasons)
            for index, (result, score, reasons) in enumerate(scored, start=1)
        ]

    def get_best_result(self, results: Iterable[ExecutionResult]) -> Optional[ScoredResult]:
        ranked = self.compare_and_rank(results)
        return ranked[0] if ranked else None

    def format_comparison(self, ranked: List[ScoredResult]) -> str:
        """Plain-text report of a ranking (see goalforge_cli.report for the rich table)."""
        if not ranked:
            return "No results to compare."
        lines = [f"Comparison of {len(ranked)} candidate(s):", ""]
        for item in ranked:
            r = item.result
            status = "OK" if r.success else "FAILED"
            lines.append(
                f"#{item.rank} plan={r.plan_id} sandbox={r.sandbox_id} score={item.score:.1f} "
                f"[{status}] steps={r.steps_completed}/{r.steps_completed + r.steps_failed} "
                f"time={r.execution_time_ms / 1000:.2f}s"
                + (f" cost=${r.cost:.4f}" if r.cost is not None else "")
            )
            for reason in item.reasons:
                lines.append(f"    - {reason}")
        return "\n".join(lines)
