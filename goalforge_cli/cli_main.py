"""Command-line entry point.

    goalforge run --goal "Tidy the docs" --plans plans.json [--json] [--no-isolation]
    goalforge config [--json]
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

from rich.console import Console

from agents.builtin_tools import register_builtin_tools
from core.config_manager import ConfigManager
from core.engine import GoalEngine
from core.exceptions import GoalForgeError
from core.plan_oracle import FilePlanOracle
from core.tool_registry import ToolRegistry
from core.types import Goal, GoalState, Priority
from goalforge_cli.report import render_context


class CLIParseError(Exception):
    def __init__(self, message: str, *, code: int = 2, usage: str = None):
        super().__init__(message)
        self.code = code
        self.usage = usage


class GoalForgeArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CLIParseError(message, usage=self.format_usage())


def build_parser() -> argparse.ArgumentParser:
    parser = GoalForgeArgumentParser(prog="goalforge", description="Autonomous goal-execution engine.")
    parser.add_argument("--config", dest="config_file", default="goalforge.config.json",
                        help="Path to the JSON config file.")
    sub = parser.add_subparsers(dest="command", parser_class=GoalForgeArgumentParser)

    run = sub.add_parser("run", help="Run one goal against candidate plans from a plan document.")
    run.add_argument("--goal", required=True, help="Goal description.")
    run.add_argument("--plans", required=True, help="Path to a JSON plan document.")
    run.add_argument("--priority", default="medium", choices=[p.name.lower() for p in Priority])
    run.add_argument("--timeout", type=float, default=None, help="Seconds to wait for the goal.")
    run.add_argument("--no-isolation", dest="no_isolation", action="store_true",
                     help="Do not back sandboxes with git worktrees.")
    run.add_argument("--json", action="store_true", help="Output machine-readable JSON.")

    cfg = sub.add_parser("config", help="Show the effective configuration.")
    cfg.add_argument("--json", action="store_true", help="Output machine-readable JSON.")
    return parser


async def _run_goal(engine: GoalEngine, goal: Goal, timeout):
    await engine.start()
    try:
        goal_id = await engine.submit_goal(goal)
        try:
            return await engine.wait_for_goal(goal_id, timeout=timeout)
        except asyncio.TimeoutError:
            await engine.cancel_goal(goal_id)
            return await engine.wait_for_goal(goal_id)
    finally:
        await engine.stop()


def cmd_run(args, config: ConfigManager, console: Console) -> int:
    if args.no_isolation:
        config.set_runtime_override("use_isolated_branch", False)
    engine_config = config.engine_config()

    registry = ToolRegistry(default_timeout_s=engine_config.tool_timeout_s)
    register_builtin_tools(registry, allowed_commands=engine_config.allowed_commands,
                           shell_timeout_s=int(engine_config.tool_timeout_s))
    engine = GoalEngine(FilePlanOracle(args.plans), registry, config=engine_config)
    goal = Goal(description=args.goal, priority=Priority.parse(args.priority))

    context = asyncio.run(_run_goal(engine, goal, args.timeout))

    if args.json:
        print(json.dumps(context.to_dict(), indent=2, default=str))
    else:
        render_context(context, console)
    return 0 if context.state is GoalState.COMPLETED else 1


def cmd_config(args, config: ConfigManager, console: Console) -> int:
    effective = config.show_config()
    if args.json:
        print(json.dumps(effective, indent=2))
    else:
        console.print_json(data=effective)
    return 0


COMMANDS = {
    "run": cmd_run,
    "config": cmd_config,
}


def main(argv=None) -> int:
    raw_argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    try:
        args = parser.parse_args(raw_argv)
    except CLIParseError as exc:
        if "--json" in raw_argv:
            print(json.dumps({"status": "error", "code": "cli_parse_error",
                              "message": str(exc), "usage": exc.usage}))
        else:
            print(f"Error: {exc}", file=sys.stderr)
            if exc.usage:
                print(exc.usage, file=sys.stderr)
        return exc.code

    if args.command is None:
        parser.print_help()
        return 0

    console = Console()
    try:
        config = ConfigManager(config_file=Path(args.config_file))
        return COMMANDS[args.command](args, config, console)
    except GoalForgeError as exc:
        if getattr(args, "json", False):
            print(json.dumps({"status": "error", "code": type(exc).__name__, "message": str(exc)}))
        else:
            print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
