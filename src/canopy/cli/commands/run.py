"""canopy run -- drive every live mission on a timer."""

from __future__ import annotations

import time

import click


@click.command()
@click.option("-n", "--ticks", type=int, default=1, show_default=True, help="Number of ticks to run.")
@click.option(
    "--interval",
    type=float,
    default=0.0,
    show_default=True,
    help="Seconds to sleep between ticks.",
)
@click.pass_context
def run(ctx: click.Context, ticks: int, interval: float) -> None:
    """Reap stale missions, then tick every active or synthesizing mission.

    Repeats --ticks times. Errors in one mission are reported without
    stopping the others.
    """
    from canopy.cli import _canopy_session
    from canopy.cli.formatting import format_tick_results

    with _canopy_session(ctx) as (canopy, console):
        for i in range(ticks):
            if i > 0 and interval > 0:
                time.sleep(interval)
            results = canopy.run_tick()
            if ticks > 1:
                console.print(f"[bold]Tick {i + 1}[/bold]")
            format_tick_results(results, console)
