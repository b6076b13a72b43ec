"""
pulsecore - CLI Interface

Command-line interface for local ingestion and issue inspection.
"""

import json
from dataclasses import replace

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .apps import App, AppOwners
from .config import Settings, configure_logging
from .errors import PulseError
from .events.models import EventInput
from .issues.manager import IssueManager
from .issues.priority import score
from .pipeline.context import PipelineContext
from .pipeline.correlator import Correlator


console = Console()

SEVERITY_STYLES = {"P0": "bold red", "P1": "red", "P2": "yellow", "P3": "dim"}


def _context(ctx: click.Context) -> PipelineContext:
    if "pipeline" not in ctx.obj:
        ctx.obj["pipeline"] = PipelineContext.from_settings(ctx.obj["settings"])
    return ctx.obj["pipeline"]


def _manager(ctx: click.Context) -> IssueManager:
    return IssueManager(_context(ctx).store)


@click.group()
@click.version_option(version=__version__)
@click.option("--db", "db_path", envvar="PULSE_DB_PATH", help="SQLite database file")
@click.option("--log-level", default=None, help="Logging level (default: PULSE_LOG_LEVEL)")
@click.pass_context
def cli(ctx: click.Context, db_path: str, log_level: str):
    """pulsecore - group events into issues and review them."""
    configure_logging(log_level)
    settings = Settings.from_env()
    if db_path:
        settings = replace(settings, db_path=db_path)
    ctx.obj = {"settings": settings}


@cli.command()
@click.argument("file", type=click.File("r"))
@click.option("--profile", "-p", default=None, help="Redaction profile override")
@click.pass_context
def ingest(ctx: click.Context, file, profile: str):
    """Ingest events from a JSON-lines FILE ('-' for stdin)."""

    inputs = []
    for line_no, line in enumerate(file, start=1):
        if not line.strip():
            continue
        try:
            inputs.append(EventInput.from_dict(json.loads(line)))
        except (ValueError, KeyError, TypeError) as e:
            console.print(f"[yellow]Skipping line {line_no}: {escape(str(e))}[/yellow]")

    correlator = Correlator(_context(ctx))
    with console.status("[bold green]Correlating events...[/bold green]"):
        batch = correlator.process_batch(inputs, profile=profile)

    table = Table(title="Ingest results")
    table.add_column("Event")
    table.add_column("Issue")
    table.add_column("Action")
    table.add_column("Redactions", justify="right")
    for result in batch.results:
        table.add_row(
            result.event.id[:8],
            result.issue.id[:8],
            "[green]created[/green]" if result.created else "attached",
            str(result.redactions_applied),
        )
    console.print(table)

    console.print(
        f"{batch.created_count} created, {batch.attached_count} attached, "
        f"{len(batch.failures)} failed"
    )
    for index, error in batch.failures:
        console.print(f"[red]Event #{index}: {escape(str(error))}[/red]")
    if batch.failures:
        raise SystemExit(1)


@cli.group()
def issues():
    """Inspect and update issues."""
    pass


@issues.command("list")
@click.option("--app", "app_id", default=None, help="Filter by app id")
@click.option("--env", "environment", default=None, help="Filter by environment")
@click.option("--status", default=None, help="Filter by status")
@click.option("--severity", default=None, help="Filter by severity")
@click.option("--sort", type=click.Choice(["priority", "last_seen"]), default="priority")
@click.option("--limit", default=50, show_default=True)
@click.pass_context
def list_issues(ctx, app_id, environment, status, severity, sort, limit):
    """List issues ranked by priority."""
    try:
        found = _manager(ctx).list_issues(
            app_id=app_id,
            environment=environment,
            status=status,
            severity=severity,
            sort=sort,
            limit=limit,
        )
    except (PulseError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise SystemExit(1)

    if not found:
        console.print("[dim]No issues found.[/dim]")
        return

    table = Table(title=f"Issues ({len(found)})")
    table.add_column("ID")
    table.add_column("Sev")
    table.add_column("Status")
    table.add_column("Title")
    table.add_column("Env")
    table.add_column("Total", justify="right")
    table.add_column("24h", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Assignee")
    for issue in found:
        priority = score(issue)
        style = SEVERITY_STYLES.get(issue.severity.value, "")
        table.add_row(
            issue.id[:8],
            f"[{style}]{issue.severity.value}[/{style}]" if style else issue.severity.value,
            issue.status.value,
            escape(issue.title),
            issue.environment,
            str(issue.counts.occurrences_total),
            str(issue.counts.occurrences_24h),
            f"{priority.total:.0f} ({priority.tier})",
            issue.routing.assigned_to if issue.routing else "-",
        )
    console.print(table)


@issues.command("show")
@click.argument("issue_id")
@click.pass_context
def show_issue(ctx, issue_id: str):
    """Show one issue with its score breakdown."""
    try:
        issue = _manager(ctx).get_issue(issue_id)
    except PulseError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise SystemExit(1)

    priority = score(issue)
    console.print(Panel.fit(
        f"[bold]{escape(issue.title)}[/bold]\n"
        f"Status: [cyan]{issue.status.value}[/cyan]  Severity: {issue.severity.value}  "
        f"Type: {issue.issue_type.value}\n"
        f"App: {issue.app_id}/{issue.environment}\n"
        f"Fingerprint: {issue.primary_fingerprint or '-'}\n"
        f"Assignee: {issue.routing.assigned_to if issue.routing else '-'}\n"
        f"Occurrences: {issue.counts.occurrences_total} total, "
        f"{issue.counts.occurrences_24h} in 24h, "
        f"~{issue.counts.unique_users_24h_est} users\n"
        f"Priority: {priority.total:.1f} ({priority.tier})\n"
        f"Last seen: {issue.timestamps.last_seen_at.isoformat()}",
        title=issue.id,
    ))
    if issue.description:
        console.print(escape(issue.description))


@issues.command("status")
@click.argument("issue_id")
@click.argument("status")
@click.option("--reason", "-r", required=True, help="Why the status changes")
@click.pass_context
def set_status(ctx, issue_id: str, status: str, reason: str):
    """Move an issue to STATUS."""
    try:
        issue = _manager(ctx).change_status(issue_id, status, reason)
    except (PulseError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise SystemExit(1)
    console.print(f"Issue {issue.id[:8]} is now [cyan]{issue.status.value}[/cyan]")


@issues.command("severity")
@click.argument("issue_id")
@click.argument("severity", type=click.Choice(["P0", "P1", "P2", "P3"]))
@click.option("--reason", "-r", required=True, help="Why the severity changes")
@click.pass_context
def set_severity(ctx, issue_id: str, severity: str, reason: str):
    """Change the severity of an issue."""
    try:
        issue = _manager(ctx).set_severity(issue_id, severity, reason)
    except PulseError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise SystemExit(1)
    console.print(f"Issue {issue.id[:8]} severity is now {issue.severity.value}")


@issues.command("assign")
@click.argument("issue_id")
@click.argument("assignee")
@click.option("--reason", "-r", required=True, help="Why the issue is reassigned")
@click.pass_context
def assign_issue(ctx, issue_id: str, assignee: str, reason: str):
    """Assign an issue to ASSIGNEE."""
    try:
        issue = _manager(ctx).assign(issue_id, assignee, reason)
    except PulseError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise SystemExit(1)
    console.print(f"Issue {issue.id[:8]} assigned to [green]{issue.routing.assigned_to}[/green]")


@cli.group()
def apps():
    """Manage registered apps."""
    pass


@apps.command("add")
@click.argument("app_id")
@click.option("--name", default="", help="Display name")
@click.option("--po", "po_emails", multiple=True, help="Product owner email (repeatable, first is default assignee)")
@click.option("--profile", default="standard", show_default=True, help="Redaction profile")
@click.pass_context
def add_app(ctx, app_id: str, name: str, po_emails, profile: str):
    """Register or update an app."""
    app = App(
        app_id=app_id,
        name=name,
        owners=AppOwners(po_emails=list(po_emails)),
        redaction_profile=profile,
    )
    try:
        _context(ctx).store.save_app(app)
    except PulseError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise SystemExit(1)
    console.print(f"Saved app [green]{app_id}[/green]")


def main():
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
