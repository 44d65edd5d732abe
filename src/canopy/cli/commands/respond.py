"""canopy respond -- answer a waiting agent's input request."""

from __future__ import annotations

import json

import click


@click.command()
@click.argument("agent_id")
@click.argument("response")
@click.pass_context
def respond(ctx: click.Context, agent_id: str, response: str) -> None:
    """Send RESPONSE to AGENT_ID and put it back to work.

    RESPONSE is parsed as JSON when possible, otherwise sent as text.
    """
    from canopy.cli import _canopy_session

    try:
        payload = json.loads(response)
    except json.JSONDecodeError:
        payload = response

    with _canopy_session(ctx) as (canopy, console):
        agent = canopy.respond_input(agent_id, payload)
        console.print(f"[green]{agent.name}[/green] resumed with your response")
