"""CLI commands that go through LifecycleService: transitions, move, hold, release, cancel, reactivate, convert."""

from __future__ import annotations

from collections.abc import Callable

import click

from jobtrack.cli_common import echo_json, fail, get_db, get_service, report_result
from jobtrack.lifecycle import LifecycleService
from jobtrack.outcomes import Blocked, LifecycleResult, StoreConflictError, UnknownStatusError


def _run(project_id: str, as_json: bool, call: Callable[[LifecycleService], LifecycleResult]) -> None:
    with get_db() as db:
        service = get_service(db)
        try:
            result = call(service)
        except KeyError:
            fail(f"Not found: {project_id}", as_json, code="PROJECT_NOT_FOUND")
        except UnknownStatusError as e:
            fail(str(e), as_json, code=e.code, valid=e.valid)
        except StoreConflictError as e:
            fail(str(e), as_json, code=e.code)
        except ValueError as e:
            fail(str(e), as_json)
        report_result(result, as_json)


@click.command()
@click.argument("project_id")
@click.option("--ready", is_flag=True, help="Only show stages the project can move to now")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def transitions(ctx: click.Context, project_id: str, ready: bool, as_json: bool) -> None:
    """List every stage with its guard verdict for the current role."""
    with get_db() as db:
        service = get_service(db)
        try:
            options = service.available_transitions(project_id, ctx.obj["role"])
        except KeyError:
            fail(f"Not found: {project_id}", as_json, code="PROJECT_NOT_FOUND")
        if ready:
            options = [o for o in options if o.ready]
        if as_json:
            echo_json(
                [
                    {
                        "to": o.to,
                        "index": o.index,
                        "ready": o.ready,
                        "blocked": o.decision.to_dict() if isinstance(o.decision, Blocked) else None,
                    }
                    for o in options
                ]
            )
            return
        for o in options:
            suffix = f"  [{o.decision.code}]" if isinstance(o.decision, Blocked) else ""
            click.echo(f"  {o.index:2d}. {o.to}{suffix}")


@click.command()
@click.argument("project_id")
@click.argument("status")
@click.option("--override", is_flag=True, help="Bypass billing prerequisites (admin only)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def move(ctx: click.Context, project_id: str, status: str, override: bool, as_json: bool) -> None:
    """Move a project to another stage."""
    _run(
        project_id,
        as_json,
        lambda svc: svc.attempt_transition(
            project_id,
            status,
            requester_id=ctx.obj["actor"],
            requester_role=ctx.obj["role"],
            allow_override=override,
        ),
    )


@click.command()
@click.argument("project_id")
@click.option("--reason", required=True, help="Why the project is paused")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def hold(ctx: click.Context, project_id: str, reason: str, as_json: bool) -> None:
    """Put a project on hold."""
    _run(project_id, as_json, lambda svc: svc.set_hold(project_id, True, reason=reason, requester_id=ctx.obj["actor"]))


@click.command()
@click.argument("project_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def release(ctx: click.Context, project_id: str, as_json: bool) -> None:
    """Release a hold and return the project to its previous stage."""
    _run(project_id, as_json, lambda svc: svc.set_hold(project_id, False, requester_id=ctx.obj["actor"]))


@click.command()
@click.argument("project_id")
@click.option("--reason", required=True, help="Why the project is cancelled")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def cancel(ctx: click.Context, project_id: str, reason: str, as_json: bool) -> None:
    """Cancel a project (clears any hold)."""
    _run(project_id, as_json, lambda svc: svc.cancel(project_id, reason=reason, requester_id=ctx.obj["actor"]))


@click.command()
@click.argument("project_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def reactivate(ctx: click.Context, project_id: str, as_json: bool) -> None:
    """Undo a cancellation, restoring the stage it was cancelled at."""
    _run(project_id, as_json, lambda svc: svc.reactivate(project_id, requester_id=ctx.obj["actor"]))


@click.command()
@click.argument("project_id")
@click.argument("category")
@click.option("--status", default=None, help="Stage in the new pipeline (default: keep or entry stage)")
@click.option("--override", is_flag=True, help="Bypass billing prerequisites for --status (admin only)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def convert(
    ctx: click.Context, project_id: str, category: str, status: str | None, override: bool, as_json: bool
) -> None:
    """Change a project's category, e.g. a Quote into a Standard job."""
    _run(
        project_id,
        as_json,
        lambda svc: svc.change_category(
            project_id,
            category,
            requester_id=ctx.obj["actor"],
            target_status=status,
            requester_role=ctx.obj["role"],
            allow_override=override,
        ),
    )


COMMANDS = [transitions, move, hold, release, cancel, reactivate, convert]
