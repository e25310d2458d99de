"""
Learning System: per-tool experience log and derived strategy statistics.

Each recorded tool invocation becomes an :class:`Experience`.  Strategy
statistics are maintained incrementally per tool (count, successes, time sum)
so recording is O(1); the raw log is kept, bounded at ``experience_cap``
(oldest dropped first), for pattern-mining extensions.

``Strategy.avg_resource_usage`` is the resource usage of the *most recent*
experience for that tool, not a mean.  Downstream consumers rely on it that
way; change it only together with them.

Usage::

    learning = LearningSystem(enabled=True)
    await learning.record_experience("fetch page", "http_get", True, 120.0, usage)
    strategy = await learning.get_best_strategy("http_get")
"""
from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from core.logging_utils import log_json
from core.types import Experience, ResourceUsage, Strategy

DEFAULT_EXPERIENCE_CAP = 10_000


@dataclass
class _ToolCounters:
    count: int = 0
    successes: int = 0
    time_sum_ms: float = 0.0
    last_resources: ResourceUsage = field(default_factory=ResourceUsage)

    def to_strategy(self, tool_id: str) -> Strategy:
        return Strategy(
            tool_id=tool_id,
            success_rate=self.successes / self.count if self.count else 0.0,
            avg_execution_time_ms=self.time_sum_ms / self.count if self.count else 0.0,
            avg_resource_usage=copy.copy(self.last_resources),
            usage_count=self.count,
        )


class LearningSystem:
    """Track tool outcomes and expose per-tool :class:`Strategy` aggregates.

    Args:
        enabled: When ``False`` :meth:`record_experience` is a no-op.
        self_improvement: When ``True`` :meth:`update` calls
            :meth:`optimize_strategies` after truncating the log.
        experience_cap: Maximum retained experiences.
    """

    def __init__(self, enabled: bool = True, self_improvement: bool = False,
                 experience_cap: int = DEFAULT_EXPERIENCE_CAP):
        self.enabled = enabled
        self.self_improvement = self_improvement
        self.experience_cap = experience_cap
        self._experiences: List[Experience] = []
        self._counters: Dict[str, _ToolCounters] = {}
        self._experience_lock = asyncio.Lock()
        self._strategy_lock = asyncio.Lock()

    # ── Public API ───────────────────────────────────────────────────────────

    async def record_experience(self, step_description: str, tool_id: str, success: bool,
                                execution_time_ms: float, resources_used: ResourceUsage) -> None:
        """Append an experience and refresh that tool's strategy.  Never raises."""
        if not self.enabled:
            return
        try:
            experience = Experience(
                goal_description=step_description,
                tool_id=tool_id,
                success=bool(success),
                execution_time_ms=float(execution_time_ms),
                resources_used=copy.copy(resources_used),
            )
            async with self._experience_lock:
                self._experiences.append(experience)
                if len(self._experiences) > self.experience_cap:
                    del self._experiences[: len(self._experiences) - self.experience_cap]
            async with self._strategy_lock:
                counters = self._counters.setdefault(tool_id, _ToolCounters())
                counters.count += 1
                counters.successes += 1 if experience.success else 0
                counters.time_sum_ms += experience.execution_time_ms
                counters.last_resources = experience.resources_used
        except Exception as exc:
            log_json("WARN", "learning_record_failed", details={"tool_id": tool_id, "error": str(exc)})

    async def get_best_strategy(self, tool_id: str) -> Optional[Strategy]:
        async with self._strategy_lock:
            counters = self._counters.get(tool_id)
            return counters.to_strategy(tool_id) if counters else None

    async def get_all_strategies(self) -> Dict[str, Strategy]:
        async with self._strategy_lock:
            return {tool_id: c.to_strategy(tool_id) for tool_id, c in self._counters.items()}

    async def get_experiences(self, tool_id: Optional[str] = None) -> List[Experience]:
        async with self._experience_lock:
            if tool_id is None:
                return list(self._experiences)
            return [e for e in self._experiences if e.tool_id == tool_id]

    async def update(self) -> None:
        """Periodic maintenance: bound the log, then run self-improvement if enabled.

        Never raises.
        """
        try:
            async with self._experience_lock:
                excess = len(self._experiences) - self.experience_cap
                if excess > 0:
                    del self._experiences[:excess]
                    log_json("DEBUG", "learning_log_truncated", details={"dropped": excess})
            if self.self_improvement:
                await self.optimize_strategies()
        except Exception as exc:
            log_json("WARN", "learning_update_failed", details={"error": str(exc)})

    async def optimize_strategies(self) -> None:
        """Extension point for strategy optimisation.

        Pattern mining, resource-usage optimisation and tool-selection
        adaptation hook in here.  The base implementation does nothing.
        """
        return None
