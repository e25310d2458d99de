"""
GoalEngine: the service handle for the goal-execution engine.

One engine instance is constructed at startup and passed to whatever needs
it; there is no module-level instance.  After :meth:`GoalEngine.start` a
single owner task holds the goal table and serves commands sent over an
``asyncio.Queue``.  Callers never touch the table directly: every public
coroutine posts a command and awaits its reply.  Each submitted goal runs
in its own background task through :class:`~core.orchestrator.GoalOrchestrator`,
and status queries return deep-copied snapshots of its context.

Usage::

    engine = GoalEngine(oracle, registry, config=config_manager.engine_config())
    await engine.start()
    goal_id = await engine.submit_goal(Goal("Refresh the changelog"))
    context = await engine.wait_for_goal(goal_id, timeout=300)
    await engine.stop()
"""
from __future__ import annotations

import asyncio
import copy
import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from agents.sandbox import SandboxManager
from core.config_manager import EngineConfig
from core.exceptions import EngineNotRunningError, GoalNotFoundError
from core.executor import CandidateExecutor
from core.learning_system import LearningSystem
from core.logging_utils import log_json
from core.orchestrator import GoalOrchestrator
from core.resource_manager import ResourceManager
from core.result_comparator import ResultComparator
from core.tool_registry import ToolRegistry
from core.types import ExecutionContext, Goal, GoalState, MemoryEntry, ResourceState, new_goal_id
from memory.working_memory import WorkingMemory

DEFAULT_STOP_GRACE_S = 30.0


def _snapshot(context: ExecutionContext) -> ExecutionContext:
    """Deep copy of *context*; containers only when a payload refuses to copy."""
    try:
        return copy.deepcopy(context)
    except Exception as exc:
        log_json("WARN", "goal_snapshot_shallow", goal=context.goal.id, details={"error": str(exc)})
        return dataclasses.replace(
            context,
            current_state=dict(context.current_state),
            tool_results=list(context.tool_results),
            context_memory=list(context.context_memory),
            ranked_results=list(context.ranked_results),
        )


@dataclass
class _GoalRecord:
    context: ExecutionContext
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    done: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None


@dataclass
class _Command:
    kind: str
    payload: Dict[str, Any]
    reply: asyncio.Future


class GoalEngine:
    """Owns the engine components and the table of submitted goals.

    Components not passed in are built from *config*.
    """

    def __init__(self, oracle, registry: Optional[ToolRegistry] = None,
                 config: Optional[EngineConfig] = None,
                 sandbox_manager: Optional[SandboxManager] = None,
                 resource_manager: Optional[ResourceManager] = None,
                 learning: Optional[LearningSystem] = None,
                 memory: Optional[WorkingMemory] = None,
                 comparator: Optional[ResultComparator] = None):
        self.config = config or EngineConfig()
        cfg = self.config
        self.registry = registry or ToolRegistry(default_timeout_s=cfg.tool_timeout_s)
        self.sandbox_manager = sandbox_manager or SandboxManager(
            sandbox_root=cfg.sandbox_root, branch_prefix=cfg.sandbox_branch_prefix)
        self.resource_manager = resource_manager or ResourceManager(cfg.resource_limits)
        self.learning = learning or LearningSystem(
            enabled=cfg.enable_learning,
            self_improvement=cfg.enable_self_improvement,
            experience_cap=cfg.experience_cap,
        )
        self.memory = memory or WorkingMemory(cfg.working_memory_max_entries)
        self.comparator = comparator or ResultComparator()

        executor = CandidateExecutor(
            self.sandbox_manager, self.resource_manager, self.registry,
            learning=self.learning, memory=self.memory,
            default_step_resources=cfg.default_step_resources,
            use_isolated_branch=cfg.use_isolated_branch,
        )
        self.orchestrator = GoalOrchestrator(
            oracle, executor, self.sandbox_manager,
            comparator=self.comparator, memory=self.memory,
            max_candidates=cfg.max_candidates,
            keep_winning_sandbox=cfg.keep_winning_sandbox,
        )

        self._goals: Dict[str, _GoalRecord] = {}
        self._queue: Optional[asyncio.Queue] = None
        self._owner: Optional[asyncio.Task] = None
        self._maintenance: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        self._queue = asyncio.Queue()
        self._running = True
        self._owner = asyncio.create_task(self._serve(), name="goalforge-engine")
        self._maintenance = asyncio.create_task(self._learning_loop(), name="goalforge-learning")
        log_json("INFO", "engine_started", details={
            "max_candidates": self.config.max_candidates,
            "use_isolated_branch": self.config.use_isolated_branch,
        })

    async def stop(self, grace_s: Optional[float] = DEFAULT_STOP_GRACE_S) -> None:
        """Cancel running goals, stop background tasks and clean every active sandbox.

        Goals are first asked to stop between steps; any still running after
        *grace_s* seconds have their tasks cancelled.
        """
        if not self._running:
            return
        await self._call("stop", grace_s=grace_s)
        if self._owner is not None:
            await self._owner
        if self._maintenance is not None:
            self._maintenance.cancel()
            try:
                await self._maintenance
            except asyncio.CancelledError:
                pass
        cleaned = await self.sandbox_manager.cleanup_all()
        log_json("INFO", "engine_stopped", details={"sandboxes_cleaned": cleaned})

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    async def submit_goal(self, goal: Goal) -> str:
        return await self._call("submit", goal=goal)

    async def get_goal_status(self, goal_id: str) -> Optional[ExecutionContext]:
        """Snapshot of the goal's context, or ``None`` for unknown ids."""
        return await self._call("status", goal_id=goal_id)

    async def list_goals(self) -> List[Goal]:
        return await self._call("list")

    async def cancel_goal(self, goal_id: str) -> bool:
        """Request cooperative cancellation.  Returns ``False`` if the goal already finished."""
        return await self._call("cancel", goal_id=goal_id)

    async def wait_for_goal(self, goal_id: str, timeout: Optional[float] = None) -> ExecutionContext:
        """Wait until the goal reaches a terminal state and return its snapshot.

        Raises :class:`asyncio.TimeoutError` when *timeout* elapses first.
        """
        done: asyncio.Event = await self._call("done_event", goal_id=goal_id)
        await asyncio.wait_for(done.wait(), timeout=timeout)
        return await self.get_goal_status(goal_id)

    def get_resource_state(self) -> ResourceState:
        return self.resource_manager.get_state()

    async def get_recent_memory(self, n: int = 20) -> List[MemoryEntry]:
        return await self.memory.get_recent(n)

    # ------------------------------------------------------------------
    # Owner task
    # ------------------------------------------------------------------

    async def _call(self, kind: str, **payload) -> Any:
        if not self._running or self._queue is None:
            raise EngineNotRunningError("GoalEngine is not running; call start() first.")
        reply = asyncio.get_running_loop().create_future()
        await self._queue.put(_Command(kind, payload, reply))
        return await reply

    async def _serve(self) -> None:
        while True:
            cmd: _Command = await self._queue.get()
            if cmd.kind == "stop":
                self._running = False
                await self._shutdown_goals(cmd.payload.get("grace_s"))
                self._reject_pending()
                cmd.reply.set_result(None)
                return
            try:
                cmd.reply.set_result(self._handle(cmd))
            except Exception as exc:
                cmd.reply.set_exception(exc)

    def _handle(self, cmd: _Command) -> Any:
        if cmd.kind == "submit":
            return self._submit(cmd.payload["goal"])
        if cmd.kind == "status":
            record = self._goals.get(cmd.payload["goal_id"])
            return _snapshot(record.context) if record else None
        if cmd.kind == "list":
            return [r.context.goal for r in self._goals.values()]
        if cmd.kind == "cancel":
            record = self._require(cmd.payload["goal_id"])
            if record.context.state.is_terminal:
                return False
            record.cancel_event.set()
            log_json("INFO", "goal_cancel_requested", goal=record.context.goal.id)
            return True
        if cmd.kind == "done_event":
            return self._require(cmd.payload["goal_id"]).done
        raise ValueError(f"Unknown engine command: {cmd.kind}")

    def _submit(self, goal: Goal) -> str:
        if goal.id in self._goals:
            fresh = new_goal_id()
            log_json("WARN", "goal_id_reassigned", goal=goal.id, details={"new_id": fresh})
            goal = dataclasses.replace(goal, id=fresh)
        context = ExecutionContext(goal=goal, available_resources=self.resource_manager.get_state())
        context.record("goal_submitted", {"priority": goal.priority.name.lower()})
        record = _GoalRecord(context=context)
        self._goals[goal.id] = record
        record.task = asyncio.create_task(self._run_goal(record), name=f"goal-{goal.id}")
        log_json("INFO", "goal_submitted", goal=goal.id, details={
            "description": goal.description, "priority": goal.priority.name.lower(),
        })
        return goal.id

    def _require(self, goal_id: str) -> _GoalRecord:
        record = self._goals.get(goal_id)
        if record is None:
            raise GoalNotFoundError(f"Unknown goal id: {goal_id}")
        return record

    async def _run_goal(self, record: _GoalRecord) -> None:
        context = record.context
        try:
            await self.orchestrator.run(context, record.cancel_event)
        except asyncio.CancelledError:
            context.state = GoalState.CANCELLED
            context.record("state_changed", {"to": GoalState.CANCELLED.value})
            raise
        except Exception as exc:
            log_json("ERROR", "goal_crashed", goal=context.goal.id, details={"error": str(exc)})
            context.error = f"{type(exc).__name__}: {exc}"
            context.state = GoalState.FAILED
            context.record("state_changed", {"to": GoalState.FAILED.value})
        finally:
            record.done.set()

    async def _shutdown_goals(self, grace_s: Optional[float]) -> None:
        tasks = [r.task for r in self._goals.values() if r.task is not None and not r.task.done()]
        for record in self._goals.values():
            record.cancel_event.set()
        if not tasks:
            return
        _, stuck = await asyncio.wait(tasks, timeout=grace_s)
        for task in stuck:
            log_json("WARN", "goal_task_cancelled_on_stop", details={"task": task.get_name()})
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _reject_pending(self) -> None:
        while not self._queue.empty():
            cmd = self._queue.get_nowait()
            if not cmd.reply.done():
                cmd.reply.set_exception(EngineNotRunningError("GoalEngine stopped."))

    async def _learning_loop(self) -> None:
        interval = self.config.learning_update_interval_s
        while True:
            await asyncio.sleep(interval)
            await self.learning.update()
