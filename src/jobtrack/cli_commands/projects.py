"""CLI commands for projects and their prerequisites: init, create, show, list, events, activity, pipelines, invoice, payment, mockup."""

from __future__ import annotations

from pathlib import Path

import click

from jobtrack.cli_common import echo_json, fail, get_db
from jobtrack.core import DB_FILENAME, JOBTRACK_DIR_NAME, JobTrackDB, default_config, read_config, write_config
from jobtrack.models import Category, MockupApproval, PaymentVerification, Priority, Project
from jobtrack.pipelines import PipelineRegistry
from jobtrack.types.events import EventRecord


def _format_project(project: Project) -> list[str]:
    lines = [
        f"{project.id}: {project.name}",
        f"  Category: {project.category.value}  Priority: {project.priority.value}",
        f"  Status:   {project.status}",
        f"  Lead:     {project.lead_id or '-'}",
    ]
    if project.hold.active:
        lines.append(f"  HOLD:     {project.hold.reason} (was '{project.hold.pre_hold_status}')")
    if project.cancellation.active:
        lines.append(f"  CANCELLED: {project.cancellation.reason}")
    billing = project.billing
    payments = ", ".join(sorted(v.value for v in billing.payment_verifications)) or "none"
    lines.append(f"  Invoice:  {'sent' if billing.invoice_sent else 'not sent'}  Payments: {payments}")
    mockup = project.mockup
    if mockup.has_file:
        lines.append(f"  Mockup:   v{mockup.version} {mockup.approval.value}")
    return lines


@click.command()
@click.option("--prefix", default=None, help="ID prefix for projects (default: directory name)")
def init(prefix: str | None) -> None:
    """Initialize .jobtrack/ in the current directory."""
    cwd = Path.cwd()
    jobtrack_dir = cwd / JOBTRACK_DIR_NAME

    if jobtrack_dir.exists():
        click.echo(f"{JOBTRACK_DIR_NAME}/ already exists in {cwd}")
        config = read_config(jobtrack_dir)
        with JobTrackDB(jobtrack_dir / DB_FILENAME, prefix=config.get("prefix", "job")) as db:
            db.initialize()
        return

    prefix = prefix or cwd.name
    jobtrack_dir.mkdir()
    (jobtrack_dir / "pipelines").mkdir()

    config = default_config()
    config["prefix"] = prefix
    write_config(jobtrack_dir, config)

    with JobTrackDB(jobtrack_dir / DB_FILENAME, prefix=prefix) as db:
        db.initialize()

    click.echo(f"Initialized {JOBTRACK_DIR_NAME}/ in {cwd}")
    click.echo(f"  Prefix: {prefix}")
    click.echo(f"  Database: {jobtrack_dir / DB_FILENAME}")
    click.echo(f"  Pipelines: {jobtrack_dir / 'pipelines'}/ (add .json files to override stage lists)")


def _format_event(ev: EventRecord) -> str:
    change = ""
    if ev["old_value"] or ev["new_value"]:
        change = f" {ev['old_value'] or ''} -> {ev['new_value'] or ''}"
    comment = f" ({ev['comment']})" if ev["comment"] else ""
    return f"{ev['created_at']}  {ev['event_type']}{change}{comment}  by {ev['actor'] or '-'}"


@click.command()
@click.argument("name")
@click.option(
    "--category",
    "-c",
    default=Category.STANDARD.value,
    help="Category (Standard, Emergency, Corporate Job, Quote)",
)
@click.option("--lead", "lead_id", default="", help="Project lead id")
@click.option("--priority", "-p", type=click.Choice([p.value for p in Priority]), default=None)
@click.option("--status", default=None, help="Starting stage (default: pipeline's first stage)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def create(
    ctx: click.Context,
    name: str,
    category: str,
    lead_id: str,
    priority: str | None,
    status: str | None,
    as_json: bool,
) -> None:
    """Create a project."""
    with get_db() as db:
        try:
            project = db.create_project(
                name,
                category=category,
                lead_id=lead_id,
                priority=priority,
                status=status,
                actor=ctx.obj["actor"],
            )
        except ValueError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json(project.to_dict())
        else:
            click.echo(f"Created {project.id}: {project.name} [{project.status}]")


@click.command()
@click.argument("project_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def show(project_id: str, as_json: bool) -> None:
    """Show project details."""
    with get_db() as db:
        try:
            project = db.get_project(project_id)
        except KeyError:
            fail(f"Not found: {project_id}", as_json)
        if as_json:
            echo_json(project.to_dict())
            return
        for line in _format_project(project):
            click.echo(line)


@click.command("list")
@click.option("--category", "-c", default=None, help="Filter by category")
@click.option("--status", "-s", default=None, help="Filter by status")
@click.option("--lead", "lead_id", default=None, help="Filter by lead id")
@click.option("--active", is_flag=True, help="Exclude held and cancelled projects")
@click.option("--limit", default=100, type=int, help="Max results (default 100)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_projects(
    category: str | None,
    status: str | None,
    lead_id: str | None,
    active: bool,
    limit: int,
    as_json: bool,
) -> None:
    """List projects."""
    with get_db() as db:
        try:
            projects = db.list_projects(
                category=category, status=status, lead_id=lead_id, active_only=active, limit=limit
            )
        except ValueError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json([p.to_dict() for p in projects])
            return
        if not projects:
            click.echo("No projects found.")
            return
        for p in projects:
            flag = " [HOLD]" if p.hold.active else " [CANCELLED]" if p.cancellation.active else ""
            click.echo(f"{p.id}  {p.category.value:<13} {p.status:<35} {p.name}{flag}")


@click.command()
@click.argument("project_id")
@click.option("--limit", default=50, type=int, help="Max events (default 50)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def events(project_id: str, limit: int, as_json: bool) -> None:
    """Show the audit trail of a project, newest first."""
    with get_db() as db:
        try:
            records = db.get_project_events(project_id, limit=limit)
        except KeyError:
            fail(f"Not found: {project_id}", as_json)
        if as_json:
            echo_json(records)
            return
        for ev in records:
            click.echo(_format_event(ev))


@click.command()
@click.option("--since", default=None, type=int, help="Only events after this epoch-ms time, oldest first")
@click.option("--limit", default=20, type=int, help="Max events (default 20)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def activity(since: int | None, limit: int, as_json: bool) -> None:
    """Show recent events across all projects."""
    with get_db() as db:
        records = db.get_events_since(since, limit=limit) if since is not None else db.get_recent_events(limit)
        if as_json:
            echo_json(records)
            return
        for ev in records:
            click.echo(f"{ev['project_id']}  {_format_event(ev)}")


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def pipelines(as_json: bool) -> None:
    """List stage pipelines and the categories they serve."""
    registry: PipelineRegistry
    with get_db() as db:
        registry = db.registry
    if as_json:
        echo_json([p.to_dict() for p in registry.list_pipelines()])
        return
    for pipeline in registry.list_pipelines():
        cats = ", ".join(c.value for c in pipeline.categories)
        click.echo(f"{pipeline.name} ({cats}): {len(pipeline.stages)} stages")
        for i, stage in enumerate(pipeline.stages):
            marker = f"  -> {pipeline.auto_advance[stage]}" if stage in pipeline.auto_advance else ""
            click.echo(f"  {i:2d}. {stage}{marker}")


@click.command()
@click.argument("project_id")
@click.option("--unset", is_flag=True, help="Mark the invoice as not sent")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def invoice(ctx: click.Context, project_id: str, unset: bool, as_json: bool) -> None:
    """Record that the invoice was sent."""
    with get_db() as db:
        try:
            project = db.set_invoice_sent(project_id, not unset, actor=ctx.obj["actor"])
        except KeyError:
            fail(f"Not found: {project_id}", as_json)
        if as_json:
            echo_json(project.to_dict())
        else:
            click.echo(f"{project.id}: invoice {'sent' if project.billing.invoice_sent else 'not sent'}")


@click.command()
@click.argument("project_id")
@click.argument("kind", type=click.Choice([v.value for v in PaymentVerification]))
@click.option("--remove", is_flag=True, help="Revoke the verification")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def payment(ctx: click.Context, project_id: str, kind: str, remove: bool, as_json: bool) -> None:
    """Record (or revoke) a payment verification."""
    with get_db() as db:
        try:
            if remove:
                project = db.remove_payment_verification(project_id, kind, actor=ctx.obj["actor"])
            else:
                project = db.add_payment_verification(project_id, kind, actor=ctx.obj["actor"])
        except KeyError:
            fail(f"Not found: {project_id}", as_json)
        if as_json:
            echo_json(project.to_dict())
        else:
            kinds = ", ".join(sorted(v.value for v in project.billing.payment_verifications)) or "none"
            click.echo(f"{project.id}: payments {kinds}")


@click.command()
@click.argument("project_id")
@click.argument("action", type=click.Choice(["upload", MockupApproval.APPROVED.value, MockupApproval.REJECTED.value]))
@click.option("--reason", default="", help="Rejection reason (required for 'rejected')")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def mockup(ctx: click.Context, project_id: str, action: str, reason: str, as_json: bool) -> None:
    """Record a mockup upload or the client's decision on it."""
    with get_db() as db:
        try:
            if action == "upload":
                project = db.record_mockup_upload(project_id, actor=ctx.obj["actor"])
            else:
                project = db.set_mockup_approval(project_id, action, reason=reason, actor=ctx.obj["actor"])
        except KeyError:
            fail(f"Not found: {project_id}", as_json)
        except ValueError as e:
            fail(str(e), as_json)
        if as_json:
            echo_json(project.to_dict())
        else:
            click.echo(f"{project.id}: mockup v{project.mockup.version} {project.mockup.approval.value}")


COMMANDS = [init, create, show, list_projects, events, activity, pipelines, invoice, payment, mockup]
