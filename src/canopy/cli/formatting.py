"""Rich formatting helpers for the Canopy CLI.

Provides functions that format SDK data structures for terminal display.
Rich auto-detects TTY and degrades gracefully when piped (no ANSI codes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

if TYPE_CHECKING:
    from canopy.models.iteration import TickResult
    from canopy.models.mission import AgentInfo, MissionInfo, ReportSectionInfo

_STATUS_STYLES = {
    "active": "green",
    "synthesizing": "magenta",
    "completed": "blue",
    "spawning": "dim",
    "working": "green",
    "waiting": "yellow",
    "paused": "yellow",
    "failed": "red",
}


def get_console() -> Console:
    """Create a Rich Console that auto-detects TTY for graceful pipe degradation."""
    return Console(stderr=False)


def _styled(status: str) -> str:
    style = _STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def format_missions(missions: list[MissionInfo], console: Console) -> None:
    """Display missions in a compact table."""
    if not missions:
        console.print("[dim]No missions.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("Mission", style="yellow")
    table.add_column("Status")
    table.add_column("Started", style="dim")
    table.add_column("Searches", justify="right", style="green")
    table.add_column("Objective")

    for mission in missions:
        table.add_row(
            mission.mission_id,
            _styled(mission.status.value),
            mission.started_at.strftime("%Y-%m-%d %H:%M"),
            str(mission.search_count),
            escape(mission.objective[:80]),
        )
    console.print(table)


def format_mission_status(
    mission: MissionInfo,
    agents: list[AgentInfo],
    usage: dict[str, int],
    console: Console,
) -> None:
    """Display one mission with its agent tree."""
    console.print(
        f"Mission [yellow]{mission.mission_id}[/yellow]  {_styled(mission.status.value)}"
    )
    console.print(f"  Objective: {escape(mission.objective)}")
    console.print(f"  Searches:  [green]{mission.search_count}[/green]")
    if usage:
        console.print(
            f"  Tokens:    [green]{usage.get('prompt_tokens', 0)}[/green] in / "
            f"[green]{usage.get('completion_tokens', 0)}[/green] out"
        )
    if not agents:
        console.print("[dim]No agents.[/dim]")
        return

    children: dict[str | None, list[AgentInfo]] = {}
    for agent in agents:
        children.setdefault(agent.parent_id, []).append(agent)

    def label(agent: AgentInfo) -> str:
        text = (
            f"[bold]{escape(agent.name)}[/bold] ({agent.role.value}) "
            f"{_styled(agent.status.value)} it={agent.iteration} {agent.progress}%"
        )
        if agent.current_activity:
            text += f" [dim]{escape(agent.current_activity)}[/dim]"
        return text

    def add(node: Tree, parent_id: str) -> None:
        for child in children.get(parent_id, []):
            add(node.add(label(child)), child.agent_id)

    for root in children.get(None, []):
        tree = Tree(label(root))
        add(tree, root.agent_id)
        console.print(tree)

    waiting = [a for a in agents if a.pending_input]
    for agent in waiting:
        request = agent.pending_input or {}
        console.print(
            f"[yellow]Input requested[/yellow] by {escape(agent.name)} "
            f"([dim]{agent.agent_id}[/dim]): {escape(str(request.get('title') or ''))}"
        )
        if request.get("message"):
            console.print(f"  {escape(str(request['message']))}")
        for option in request.get("options") or []:
            console.print(f"  - {escape(str(option))}")


def format_tick_results(results: list[TickResult], console: Console) -> None:
    """Display a summary of one or more dispatch ticks."""
    if not results:
        console.print("[dim]Nothing to do.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("Mission", style="yellow")
    table.add_column("Action", style="cyan")
    table.add_column("Agent")
    table.add_column("Iteration", justify="right")

    for result in results:
        data = result.to_dict()
        action = data["action"]
        if result.error:
            action = f"[red]error[/red]: {escape(result.error)}"
        table.add_row(
            result.mission_id,
            action,
            escape(result.agent_name or ""),
            "" if result.iteration is None else str(result.iteration),
        )
    console.print(table)


def format_report(sections: list[ReportSectionInfo], console: Console) -> None:
    """Display report sections in insertion order."""
    if not sections:
        console.print("[dim]No report sections yet.[/dim]")
        return

    for i, section in enumerate(sections):
        if i > 0:
            console.print()
        title = section.title or section.section_type
        console.print(
            f"[bold cyan]{escape(title)}[/bold cyan] "
            f"[dim]({section.section_type}, {escape(section.agent_name)})[/dim]"
        )
        console.print(escape(section.content), highlight=False)


def format_error(message: str, console: Console) -> None:
    """Display an error message."""
    console.print(f"[red]Error:[/red] {message}", highlight=False)
