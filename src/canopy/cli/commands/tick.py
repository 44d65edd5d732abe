"""canopy tick -- run one tick for one mission."""

from __future__ import annotations

import click


@click.command()
@click.argument("mission_id")
@click.option(
    "--mode",
    type=click.Choice(["iterate", "synthesize"]),
    default="iterate",
    show_default=True,
    help="Iterate one agent or run the synthesis pass.",
)
@click.pass_context
def tick(ctx: click.Context, mission_id: str, mode: str) -> None:
    """Claim one agent of MISSION_ID and run one iteration."""
    from canopy.cli import _canopy_session
    from canopy.cli.formatting import format_tick_results

    with _canopy_session(ctx) as (canopy, console):
        result = canopy.tick(mission_id, mode)
        format_tick_results([result], console)
