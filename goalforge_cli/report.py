"""Rich renderables for goal outcomes."""
from __future__ import annotations

from typing import List

from rich import box
from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from core.types import ExecutionContext, GoalState, ScoredResult

_STATE_STYLE = {
    GoalState.COMPLETED: "bold green",
    GoalState.FAILED: "bold red",
    GoalState.CANCELLED: "yellow",
}


def build_ranking_table(ranked: List[ScoredResult]) -> Table:
    """Build the candidate ranking table."""
    table = Table(box=box.SIMPLE, expand=True)
    table.add_column("#", justify="right", width=3)
    table.add_column("Plan", overflow="fold")
    table.add_column("Score", justify="right")
    table.add_column("Steps", justify="right")
    table.add_column("Time (ms)", justify="right")
    table.add_column("Reasons", overflow="fold")

    if not ranked:
        table.add_row("", "[dim](no candidates)[/dim]", "", "", "", "")
        return table

    for scored in ranked:
        r = scored.result
        plan = f"[bold green]{escape(r.plan_id)}[/bold green]" if scored.rank == 1 else escape(r.plan_id)
        table.add_row(
            str(scored.rank),
            plan,
            f"{scored.score:.1f}",
            f"{r.steps_completed}/{r.steps_completed + r.steps_failed}",
            f"{r.execution_time_ms:.0f}",
            escape("; ".join(scored.reasons)),
        )
    return table


def build_goal_panel(context: ExecutionContext) -> Panel:
    """Build the summary panel for one goal."""
    style = _STATE_STYLE.get(context.state, "cyan")
    lines = [f"[{style}]{context.state.value}[/{style}]  {escape(context.goal.description)}"]
    if context.error:
        lines.append(f"[red]error:[/red] {escape(context.error)}")
    if context.outcome is not None:
        lines.append(f"best plan: [bold]{escape(context.outcome.result.plan_id)}[/bold] "
                     f"(score {context.outcome.score:.1f})")

    body = Group("\n".join(lines), build_ranking_table(context.ranked_results))
    title = f"[bold cyan]Goal[/bold cyan] [dim]{escape(context.goal.id)}[/dim]"
    return Panel(body, title=title, border_style=style.split()[-1])


def render_context(context: ExecutionContext, console: Console = None) -> None:
    (console or Console()).print(build_goal_panel(context))
