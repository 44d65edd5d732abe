"""canopy status -- show missions and agent trees."""

from __future__ import annotations

import click


@click.command()
@click.argument("mission_id", required=False)
@click.pass_context
def status(ctx: click.Context, mission_id: str | None) -> None:
    """Show MISSION_ID's agent tree, or list every mission if omitted."""
    from canopy.cli import _canopy_session
    from canopy.cli.formatting import format_mission_status, format_missions
    from canopy.models.mission import MissionStatus

    with _canopy_session(ctx) as (canopy, console):
        if mission_id is None:
            format_missions(canopy.store.list_missions(list(MissionStatus)), console)
            return
        mission = canopy.get_mission(mission_id)
        format_mission_status(
            mission,
            canopy.list_agents(mission_id),
            canopy.usage(mission_id),
            console,
        )
