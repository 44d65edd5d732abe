"""canopy init -- create the database and its tables."""

from __future__ import annotations

import click


@click.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Create (or upgrade) the canopy database at --db."""
    from canopy.cli import _canopy_session

    with _canopy_session(ctx) as (_, console):
        console.print(f"Initialized [yellow]{ctx.obj['db_path']}[/yellow]")
