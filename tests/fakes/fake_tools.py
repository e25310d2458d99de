import asyncio

from core.tool_registry import ToolRegistry
from core.types import Plan, PlanStep, ResourceUsage


class FakeTool:
    """Sync tool that records its calls and returns (or raises) a canned value."""

    def __init__(self, output=None, error=None):
        self.output = output if output is not None else {"ok": True}
        self.error = error
        self.calls = []

    def __call__(self, params, sandbox):
        self.calls.append((dict(params), sandbox))
        if self.error is not None:
            raise self.error
        return self.output


class SlowAsyncTool:
    """Async tool that sleeps for ``delay`` seconds before answering."""

    def __init__(self, delay=0.05, output="done"):
        self.delay = delay
        self.output = output
        self.calls = 0

    async def __call__(self, params, sandbox):
        self.calls += 1
        await asyncio.sleep(self.delay)
        return self.output


class GatedTool:
    """Async tool that blocks until ``release`` is set; ``started`` fires on entry."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def __call__(self, params, sandbox):
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return "released"


def make_fake_registry(**tools):
    registry = ToolRegistry()
    for tool_id, fn in tools.items():
        registry.register(tool_id, fn)
    return registry


def make_plan(plan_id, tool_ids, estimated=None, goal_id=""):
    steps = [
        PlanStep(id=f"step_{i}", tool_id=tool_id, description=f"run {tool_id}",
                 estimated_resources=estimated)
        for i, tool_id in enumerate(tool_ids, start=1)
    ]
    return Plan(id=plan_id, steps=steps, goal_id=goal_id)


SMALL = ResourceUsage(cpu_percent=1, memory_mb=1)
