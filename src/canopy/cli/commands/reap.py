"""canopy reap -- force stale missions into synthesis."""

from __future__ import annotations

import click


@click.command()
@click.pass_context
def reap(ctx: click.Context) -> None:
    """Cap every active mission older than the stale limit."""
    from canopy.cli import _canopy_session

    with _canopy_session(ctx) as (canopy, console):
        reaped = canopy.reap()
        if not reaped:
            console.print("[dim]No stale missions.[/dim]")
            return
        for mission_id in reaped:
            console.print(f"Reaped [yellow]{mission_id}[/yellow]")
