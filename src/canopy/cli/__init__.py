"""Canopy CLI: terminal interface for creating and driving missions.

This module is never imported from canopy/__init__.py. It is only
loaded via the ``canopy`` entry point defined in pyproject.toml.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING

try:
    import click
except ImportError:
    raise ImportError(
        "CLI dependencies not installed. Install with: pip install canopy[cli]"
    ) from None

from canopy.cli.formatting import format_error, get_console

if TYPE_CHECKING:
    from collections.abc import Iterator

    from rich.console import Console

    from canopy.canopy import Canopy


@click.group()
@click.option(
    "--db",
    default=".canopy.db",
    envvar="CANOPY_DB",
    help="Path to canopy database.",
)
@click.option(
    "--no-search",
    is_flag=True,
    default=False,
    help="Disable web search for agents run from this invocation.",
)
@click.pass_context
def cli(ctx: click.Context, db: str, no_search: bool) -> None:
    """Canopy: tick-driven scheduling for trees of collaborating agents."""
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db
    ctx.obj["search"] = not no_search


def _get_canopy(ctx: click.Context) -> Canopy:
    from canopy.canopy import Canopy

    return Canopy.open(path=ctx.obj["db_path"], search=ctx.obj["search"])


@contextmanager
def _canopy_session(ctx: click.Context) -> Iterator[tuple[Canopy, Console]]:
    """Open a Canopy, yield (canopy, console), and close it on exit.

    Exceptions are rendered as CLI errors with exit status 1.
    """
    console = get_console()
    try:
        canopy = _get_canopy(ctx)
        try:
            yield canopy, console
        finally:
            canopy.close()
    except SystemExit:
        raise
    except Exception as e:
        format_error(str(e), console)
        raise SystemExit(1) from None


# Register subcommands after cli group is defined
from canopy.cli.commands.init import init  # noqa: E402
from canopy.cli.commands.create import create  # noqa: E402
from canopy.cli.commands.tick import tick  # noqa: E402
from canopy.cli.commands.run import run  # noqa: E402
from canopy.cli.commands.status import status  # noqa: E402
from canopy.cli.commands.respond import respond  # noqa: E402
from canopy.cli.commands.resume import resume  # noqa: E402
from canopy.cli.commands.report import report  # noqa: E402
from canopy.cli.commands.reap import reap  # noqa: E402

cli.add_command(init)
cli.add_command(create)
cli.add_command(tick)
cli.add_command(run)
cli.add_command(status)
cli.add_command(respond)
cli.add_command(resume)
cli.add_command(report)
cli.add_command(reap)
