"""canopy resume -- restart agents paused for lack of credit."""

from __future__ import annotations

import click


@click.command()
@click.argument("mission_id")
@click.pass_context
def resume(ctx: click.Context, mission_id: str) -> None:
    """Move MISSION_ID's paused agents back to working."""
    from canopy.cli import _canopy_session

    with _canopy_session(ctx) as (canopy, console):
        resumed = canopy.resume_mission(mission_id)
        console.print(f"Resumed {len(resumed)} agent(s)")
