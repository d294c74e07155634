"""CLI commands for stage bottlenecks: bottlenecks, dismiss, dismissals, watch."""

from __future__ import annotations

import click

from jobtrack.bottlenecks import DAY_MS, BottleneckAlert, MonitorTicker
from jobtrack.cli_common import echo_json, fail, get_db, get_service
from jobtrack.core import read_config


def _print_alert(alert: BottleneckAlert) -> None:
    click.echo(f"{len(alert.entries)} project(s) stuck for {alert.threshold_days}+ days:")
    for e in alert.entries:
        click.echo(f"  {e.project_id}  {e.days_in_stage:3d}d  {e.status:<35} {e.name} ({e.priority.value})")
    click.echo(f"Signature: {alert.signature}")


class _EchoNotifier:
    def notify(self, alert: BottleneckAlert) -> None:
        _print_alert(alert)
        click.echo("")


@click.command()
@click.option("--days", default=None, type=click.IntRange(min=0), help="Threshold in days (default: from config)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def bottlenecks(days: int | None, as_json: bool) -> None:
    """List active projects that have sat in one stage too long."""
    with get_db() as db:
        alert = get_service(db).check_bottleneck_alert(days)
        if as_json:
            echo_json(alert.to_dict())
            return
        if not alert.entries:
            click.echo("No bottlenecks.")
            return
        _print_alert(alert)
        if not alert.surface:
            click.echo("(alert dismissed; reminder pending)")


@click.command()
@click.argument("signature", required=False)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def dismiss(ctx: click.Context, signature: str | None, as_json: bool) -> None:
    """Snooze the current bottleneck alert (or the given signature) for the reminder interval."""
    with get_db() as db:
        service = get_service(db)
        sig = signature if signature is not None else service.check_bottleneck_alert().signature
        try:
            service.dismiss_bottleneck_alert(sig, requester_id=ctx.obj["actor"])
        except ValueError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json({"dismissed": sig, "dismissed_by": ctx.obj["actor"]})
        else:
            click.echo(f"Dismissed alert ({sig.count('|') + 1} project(s))")


@click.command()
@click.option("--prune-days", default=None, type=click.IntRange(min=0), help="Delete dismissals older than N days")
@click.option("--limit", default=100, type=int, help="Max results (default 100)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def dismissals(prune_days: int | None, limit: int, as_json: bool) -> None:
    """List dismissed bottleneck alerts, or prune old ones."""
    with get_db() as db:
        if prune_days is not None:
            removed = db.prune_dismissals(db.clock() - prune_days * DAY_MS)
            if as_json:
                echo_json({"pruned": removed})
            else:
                click.echo(f"Pruned {removed} dismissal(s) older than {prune_days} day(s)")
            return
        records = db.list_dismissals(limit=limit)
        if as_json:
            echo_json(records)
            return
        if not records:
            click.echo("No dismissals.")
            return
        for r in records:
            count = r["signature"].count("|") + 1
            click.echo(f"{r['dismissed_at']}  {count} project(s)  by {r['dismissed_by'] or '-'}  {r['signature']}")


@click.command()
@click.option("--interval", default=None, type=float, help="Seconds between checks (default: from config)")
@click.option("--count", default=None, type=int, help="Stop after this many checks")
def watch(interval: float | None, count: int | None) -> None:
    """Poll for bottlenecks and print alerts as they surface."""
    with get_db() as db:
        service = get_service(db)
        seconds = interval if interval is not None else float(read_config(db.db_path.parent)["poll_interval_seconds"])
        try:
            ticker = MonitorTicker(service.check_bottleneck_alert, _EchoNotifier(), interval_seconds=seconds)
        except ValueError as e:
            fail(str(e), False)
        try:
            ticker.run(max_ticks=count)
        except KeyboardInterrupt:
            ticker.stop()


COMMANDS = [bottlenecks, dismiss, dismissals, watch]
