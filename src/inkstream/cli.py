"""Command-line interface for Inkstream."""

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from inkstream import __version__
from inkstream.core.config import Settings, get_settings
from inkstream.core.exceptions import InkstreamError
from inkstream.core.logging import configure_logging
from inkstream.models.events import WorkflowDetails
from inkstream.models.queries import ListQuery
from inkstream.models.workflow import WorkflowStatus, format_timestamp
from inkstream.runtime import Runtime, build_runtime

app = typer.Typer(
    name="inkstream",
    help="Document processing workflows: extract, format, translate, speak",
    no_args_is_help=True,
)
console = Console()

STATUS_COLORS = {
    WorkflowStatus.SUCCEEDED: "green",
    WorkflowStatus.FAILED: "red",
    WorkflowStatus.TIMED_OUT: "red",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Inkstream version: {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
) -> None:
    """Inkstream workflow CLI."""
    settings = get_settings()
    if debug:
        settings = settings.model_copy(update={"debug": True, "log_level": "DEBUG"})
    configure_logging(settings)
    ctx.obj = settings


def _runtime(ctx: typer.Context, use_mocks: bool = True) -> Runtime:
    settings: Settings = ctx.obj or get_settings()
    return build_runtime(settings, use_mocks=use_mocks)


def _colored(status: WorkflowStatus) -> str:
    color = STATUS_COLORS.get(status, "cyan")
    return f"[{color}]{status.value}[/{color}]"


def _show_workflow(details: WorkflowDetails) -> None:
    table = Table(title=f"Workflow {details.workflow_id}")
    table.add_column("Property", style="cyan")
    table.add_column("Value")

    table.add_row("User", details.user_id)
    table.add_row("Status", _colored(details.status))
    table.add_row("Category", details.status_category.value)
    table.add_row("Translate", str(details.parameters.translate))
    table.add_row("Speech", str(details.parameters.speech))
    table.add_row("Target Language", details.parameters.target_language)
    table.add_row("Original File", details.artifact_paths.original_file)
    for name, ref in details.artifact_paths.outputs().items():
        table.add_row(name.replace("_", " ").title(), ref)
    table.add_row("Created", format_timestamp(details.created_at))
    table.add_row("Updated", format_timestamp(details.updated_at))
    if details.error:
        table.add_row("Error", f"[red]{details.error}[/red]")
    console.print(table)

    history = Table(title="Status History")
    history.add_column("#", justify="right")
    history.add_column("Status")
    history.add_column("Timestamp")
    history.add_column("Error")
    for number, entry in enumerate(details.status_history, start=1):
        history.add_row(
            str(number),
            _colored(entry.status),
            format_timestamp(entry.timestamp),
            entry.error or "",
        )
    console.print(history)


@app.command()
def start(
    ctx: typer.Context,
    file_path: Path = typer.Argument(..., help="Path to a text document"),
    user: str = typer.Option("local-user", "--user", "-u", help="Owning user id"),
    translate: bool = typer.Option(False, "--translate", help="Translate the formatted text"),
    speech: bool = typer.Option(False, "--speech", help="Synthesize speech"),
    language: str = typer.Option("english", "--language", "-l", help="Target language"),
    mock: bool = typer.Option(True, "--mock/--no-mock", help="Use mock collaborators"),
) -> None:
    """Submit a document and run its workflow."""
    if not file_path.exists():
        console.print(f"[red]Error: File not found: {file_path}[/red]")
        raise typer.Exit(1)

    runtime = _runtime(ctx, use_mocks=mock)
    params = {"translate": translate, "speech": speech, "target_language": language}

    async def run() -> WorkflowDetails | None:
        input_ref = f"users/{user}/uploads/{file_path.name}"
        await runtime.blobs.put(input_ref, file_path.read_bytes())
        workflow_id = await runtime.orchestrator.start_workflow(user, params, input_ref)
        console.print(f"Started workflow: [cyan]{workflow_id}[/cyan]")

        # The mock extraction only finishes when told to
        if mock:
            extraction = runtime.extraction
            for job_id in list(extraction.jobs):
                for key in await extraction.emit_output(job_id):
                    await runtime.bridge.handle_artifact(key)
        return await runtime.orchestrator.get_workflow(user, workflow_id)

    try:
        details = asyncio.run(run())
    except InkstreamError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if details is None:
        console.print("[red]Workflow record not found[/red]")
        raise typer.Exit(1)

    _show_workflow(details)
    if details.status is WorkflowStatus.SUCCEEDED:
        console.print(Panel("[green]Workflow completed successfully![/green]"))
    elif details.is_terminal:
        console.print(Panel(f"[red]Workflow failed: {details.error}[/red]"))
        raise typer.Exit(1)


@app.command()
def status(
    ctx: typer.Context,
    workflow_id: str = typer.Argument(..., help="Workflow id"),
    user: str = typer.Option("local-user", "--user", "-u", help="Owning user id"),
) -> None:
    """Show a workflow and its status history."""
    runtime = _runtime(ctx)
    details = asyncio.run(runtime.orchestrator.get_workflow(user, workflow_id))
    if details is None:
        console.print(f"[red]Workflow not found: {workflow_id}[/red]")
        raise typer.Exit(1)
    _show_workflow(details)


@app.command("list")
def list_workflows(
    ctx: typer.Context,
    user: str = typer.Option("local-user", "--user", "-u", help="Owning user id"),
    limit: int | None = typer.Option(None, "--limit", "-n", help="Page size"),
    cursor: str | None = typer.Option(None, "--cursor", help="Cursor from a previous page"),
    sort_by: str | None = typer.Option(None, "--sort", help="createdAt or updatedAt"),
    status_filter: str | None = typer.Option(None, "--status", help="Filter by exact status"),
    category: str | None = typer.Option(
        None, "--category", help="Filter by category (active, completed, failed)"
    ),
) -> None:
    """List a user's workflows, newest first."""
    runtime = _runtime(ctx)
    query = ListQuery(
        limit=limit,
        cursor=cursor,
        sort_by=sort_by,
        status=status_filter,
        category=category,
    )
    try:
        page = asyncio.run(runtime.orchestrator.list_workflows(user, query))
    except InkstreamError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Workflows for {user}")
    table.add_column("Workflow", style="cyan")
    table.add_column("Status")
    table.add_column("Created")
    table.add_column("Updated")
    table.add_column("Original File")
    for record in page.items:
        table.add_row(
            record.workflow_id,
            _colored(record.status),
            format_timestamp(record.created_at),
            format_timestamp(record.updated_at),
            record.artifact_paths.original_file,
        )
    console.print(table)
    if page.next_cursor:
        console.print(f"Next cursor: [cyan]{page.next_cursor}[/cyan]")


@app.command()
def reap(ctx: typer.Context) -> None:
    """Delete job tokens that outlived their TTL."""
    runtime = _runtime(ctx)
    count = asyncio.run(runtime.bridge.reap_expired())
    console.print(f"Reaped [cyan]{count}[/cyan] expired job token(s)")


@app.command()
def expire(ctx: typer.Context) -> None:
    """Time out workflows that exceeded the execution time limit."""
    runtime = _runtime(ctx)
    expired = asyncio.run(runtime.registry.expire_overdue())
    for workflow_id in expired:
        console.print(f"  [yellow]TIMED_OUT[/yellow] {workflow_id}")
    console.print(f"Timed out [cyan]{len(expired)}[/cyan] workflow(s)")


@app.command()
def reconcile(
    ctx: typer.Context,
    event_file: Path = typer.Argument(..., help="JSON file holding an execution status event"),
) -> None:
    """Apply an execution status-change event to its workflow record."""
    if not event_file.exists():
        console.print(f"[red]Error: File not found: {event_file}[/red]")
        raise typer.Exit(1)

    try:
        event = json.loads(event_file.read_text())
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON: {e}[/red]")
        raise typer.Exit(1)
    if not isinstance(event, dict):
        console.print("[red]Event must be a JSON object[/red]")
        raise typer.Exit(1)

    runtime = _runtime(ctx)
    updated = asyncio.run(runtime.reconciler.handle_event(event))
    if updated:
        console.print("[green]Workflow record updated[/green]")
    else:
        console.print("[yellow]No workflow record changed[/yellow]")


if __name__ == "__main__":
    app()
