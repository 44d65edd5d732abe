"""canopy create -- start a new mission."""

from __future__ import annotations

import json

import click

from canopy.models.mission import AgentRole


@click.command()
@click.argument("objective")
@click.option("--owner", "owner_id", default=None, help="Owner charged for the mission's usage.")
@click.option(
    "--role",
    type=click.Choice([r.value for r in AgentRole if r is not AgentRole.SYNTHESIZER]),
    default="coordinator",
    show_default=True,
    help="Role of the root agent (ignored with --plan).",
)
@click.option("--name", default="Coordinator", show_default=True, help="Root agent display name.")
@click.option(
    "--plan",
    "plan_file",
    type=click.File("r"),
    default=None,
    help="JSON file describing the root agent and its planned children.",
)
@click.pass_context
def create(
    ctx: click.Context,
    objective: str,
    owner_id: str | None,
    role: str,
    name: str,
    plan_file,
) -> None:
    """Create a mission working on OBJECTIVE.

    Without --plan a single root agent is created from --role and
    --name. A plan is a nested {role, name, objective, children: [...]}
    object; anything beyond the spawn budget is dropped.
    """
    from canopy.cli import _canopy_session

    with _canopy_session(ctx) as (canopy, console):
        if plan_file is not None:
            plan = json.load(plan_file)
        else:
            plan = {"role": role, "name": name}
        mission = canopy.create_mission(objective, owner_id=owner_id, plan=plan)
        agents = canopy.list_agents(mission.mission_id)
        console.print(
            f"Created mission [yellow]{mission.mission_id}[/yellow] "
            f"with {len(agents)} agent(s)"
        )
