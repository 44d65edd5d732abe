"""canopy report -- print a mission's report sections."""

from __future__ import annotations

import click


@click.command()
@click.argument("mission_id")
@click.option("--type", "section_type", default=None, help="Only sections of this type (e.g. summary).")
@click.pass_context
def report(ctx: click.Context, mission_id: str, section_type: str | None) -> None:
    """Show the report sections written for MISSION_ID."""
    from canopy.cli import _canopy_session
    from canopy.cli.formatting import format_report

    with _canopy_session(ctx) as (canopy, console):
        canopy.get_mission(mission_id)
        format_report(canopy.report(mission_id, section_type), console)
