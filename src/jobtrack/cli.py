"""CLI for the jobtrack lifecycle engine.

Convention-based: discovers .jobtrack/ by walking up from cwd.

Usage:
    jobtrack init                                    # Initialize .jobtrack/ in cwd
    jobtrack create "Annual report" --category=Standard --lead=alice
    jobtrack show <id>                               # Show project details
    jobtrack list --status="Pending Mockup"          # List projects
    jobtrack activity --since=<epoch-ms>             # Events across all projects
    jobtrack transitions <id>                        # Stages with guard verdicts
    jobtrack --role=admin move <id> "Pending Production" --override
    jobtrack hold <id> --reason="Client paused"      # Place on hold
    jobtrack release <id>                            # Release hold
    jobtrack cancel <id> --reason="Client withdrew"  # Cancel
    jobtrack reactivate <id>                         # Undo cancellation
    jobtrack convert <id> Standard                   # Change category
    jobtrack invoice <id> / payment <id> full_payment / mockup <id> upload
    jobtrack bottlenecks --days=14                   # Stale stages
    jobtrack dismiss <signature>                     # Snooze an alert for 24h
    jobtrack dismissals --prune-days=30              # List or prune dismissals
    jobtrack watch                                   # Poll and print alerts
    jobtrack serve --port=8377                       # HTTP API
"""

from __future__ import annotations

import click

from jobtrack import __version__
from jobtrack.cli_commands import lifecycle as lifecycle_commands
from jobtrack.cli_commands import monitor as monitor_commands
from jobtrack.cli_commands import projects as project_commands
from jobtrack.cli_commands import server as server_commands
from jobtrack.models import Role


@click.group()
@click.version_option(version=__version__, prog_name="jobtrack")
@click.option("--actor", default="cli", help="Requester identity for the audit trail (default: cli)")
@click.option(
    "--role",
    type=click.Choice([r.value for r in Role], case_sensitive=False),
    default=Role.STAFF.value,
    help="Requester role (default: staff)",
)
@click.pass_context
def cli(ctx: click.Context, actor: str, role: str) -> None:
    """jobtrack — production-job lifecycle engine."""
    ctx.ensure_object(dict)
    ctx.obj["actor"] = actor
    ctx.obj["role"] = Role(role.lower())


for _module in (project_commands, lifecycle_commands, monitor_commands, server_commands):
    for _command in _module.COMMANDS:
        cli.add_command(_command)


if __name__ == "__main__":
    cli()
