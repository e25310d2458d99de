import asyncio
import json
from pathlib import Path

from agents.builtin_tools import register_builtin_tools
from core.config_manager import EngineConfig
from core.engine import GoalEngine
from core.plan_oracle import FilePlanOracle
from core.tool_registry import ToolRegistry
from core.types import Goal, GoalState

PLANS = {
    "plans": [
        {"id": "write-and-check", "strategy": "verify", "steps": [
            {"tool_id": "write_file", "parameters": {"path": "notes/todo.md", "content": "- ship it\n"}},
            {"tool_id": "read_file", "parameters": {"path": "notes/todo.md"}, "dependencies": ["step_1"]},
            {"tool_id": "list_files", "parameters": {}},
        ]},
        {"id": "read-missing", "strategy": "optimistic", "steps": [
            {"tool_id": "read_file", "parameters": {"path": "notes/todo.md"}},
        ]},
    ]
}


async def _run(tmp_path: Path):
    plans_path = tmp_path / "plans.json"
    plans_path.write_text(json.dumps(PLANS))
    registry = register_builtin_tools(ToolRegistry())
    config = EngineConfig(sandbox_root=str(tmp_path / "sandboxes"), use_isolated_branch=False)
    engine = GoalEngine(FilePlanOracle(plans_path), registry, config=config)
    await engine.start()
    try:
        goal_id = await engine.submit_goal(Goal("Write a todo list"))
        context = await engine.wait_for_goal(goal_id, timeout=30)
        active = await engine.sandbox_manager.list_active()
    finally:
        await engine.stop()
    return context, active


def test_engine_runs_plan_document_end_to_end(tmp_path: Path):
    context, active = asyncio.run(_run(tmp_path))

    assert context.state is GoalState.COMPLETED
    assert context.outcome.result.plan_id == "write-and-check"
    assert context.outcome.result.output == {"files": ["notes/todo.md"]}

    # Each candidate ran in its own workspace: the second never saw the first's file.
    loser = context.ranked_results[1].result
    assert loser.plan_id == "read-missing"
    assert loser.steps_failed == 1
    assert "File not found" in loser.error

    # Only the winner's sandbox was still active before stop().
    assert [s.id for s in active] == [context.outcome.result.sandbox_id]
    assert not any((tmp_path / "sandboxes").iterdir())

    json.dumps(context.to_dict(), default=str)
