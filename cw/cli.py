"""cw CLI - query CloudWatch logs from the command line."""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import click
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from cw import __version__
from cw.core.config import get_db_path, get_log_path, settings
from cw.core.database import create_tables, engine_name, sqlite_version
from cw.core.errors import (
    NotFoundError,
    RemoteError,
    StoreError,
    ValidationError,
)
from cw.core.logging import setup_logging
from cw.core.timeparse import now_millis, parse_human_time
from cw.models import FetchTarget
from cw.services import (
    HistoryService,
    ListingService,
    QueryRunner,
    SourceResolver,
    TailEngine,
)
from cw.services.aws_client import LogsClientService
from cw.services.output import QueryResultWriter, get_event_writer

logger = logging.getLogger(__name__)

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}

app = typer.Typer(
    help="Swiss army knife to query CloudWatch logs from the CLI.",
    context_settings=CONTEXT_SETTINGS,
    no_args_is_help=True,
)
ls_app = typer.Typer(help="List log groups and log streams", no_args_is_help=True)
query_app = typer.Typer(help="Run Logs Insights queries and browse their history")
app.add_typer(ls_app, name="ls")
app.add_typer(query_app, name="query")

console = Console()
err_console = Console(stderr=True)

QUERY_EDITOR_HEADER = "# vim: ft=lq\n"

# Query runs default to the last hour
DEFAULT_QUERY_RANGE_MS = 60 * 60 * 1000


@dataclass
class CliState:
    """Global options shared by every command."""

    profile: str | None = None
    region: str | None = None
    endpoint: str | None = None
    verbose: int = 0
    _client: object = None

    def client(self):
        if self._client is None:
            self._client = LogsClientService.get_client(
                profile=self.profile, region=self.region, endpoint=self.endpoint
            )
        return self._client


@contextmanager
def handle_errors(action: str):
    """Turn service errors into a red message and exit code 1."""
    try:
        yield
    except (ValidationError, NotFoundError, RemoteError, StoreError) as e:
        logger.error(f"failed running command {action}, error={e}")
        err_console.print(f"[red]✗[/red] {escape(str(e))}")
        raise typer.Exit(1) from e
    except KeyboardInterrupt as e:
        logger.info(f"{action} interrupted")
        raise typer.Exit(130) from e


def parse_time_option(value: str | None) -> int | None:
    """Typer callback converting a time option to epoch milliseconds."""
    if value is None:
        return None
    try:
        return parse_human_time(value)
    except ValidationError as e:
        raise typer.BadParameter(str(e)) from e


def version_callback(value: bool):
    if value:
        console.print(f"cw {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    endpoint: str = typer.Option(
        None, "--endpoint", help="Custom CloudWatch Logs endpoint URL."
    ),
    profile: str = typer.Option(
        None,
        "--profile",
        help="The AWS profile to use. Defaults to the AWS_PROFILE environment variable.",
    ),
    region: str = typer.Option(
        None,
        "--region",
        help="The AWS region to use. Defaults to AWS_REGION or the profile's region.",
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Write verbose messages to stderr for debugging.",
    ),
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Print version.",
    ),
):
    """Swiss army knife to query CloudWatch logs from the CLI."""
    setup_logging(verbose)
    logger.info(f"cw {__version__} starting up, running {ctx.invoked_subcommand}")
    ctx.obj = CliState(profile=profile, region=region, endpoint=endpoint, verbose=verbose)


@ls_app.command("groups")
def list_groups(
    ctx: typer.Context,
    pattern: str = typer.Argument(None, help="Only show groups matching this name pattern"),
):
    """List log groups."""
    state: CliState = ctx.obj
    with handle_errors("ls groups"):
        for name in ListingService.list_groups(state.client(), pattern):
            console.print(name, highlight=False, markup=False)


@ls_app.command("streams")
def list_streams(
    ctx: typer.Context,
    group_name: str = typer.Argument(..., help="Log group name"),
    show_expired: bool = typer.Option(
        False,
        "--show-expired",
        "-s",
        help="Log streams that have exceeded the log group's retention period are "
        "considered expired and are filtered. Add this flag to show all streams.",
    ),
):
    """List the log streams of a group, most recently active first."""
    state: CliState = ctx.obj
    with handle_errors(f"ls streams <{group_name}>"):
        for name in ListingService.list_streams(
            state.client(), group_name, show_expired=show_expired
        ):
            console.print(name, highlight=False, markup=False)


@app.command("tail")
def tail(
    ctx: typer.Context,
    sources: str = typer.Argument(
        ...,
        metavar="groupName[:logStreamPrefix][,...]",
        help="Log groups to tail, each optionally narrowed by a stream prefix.",
    ),
    start_time: str = typer.Option(
        None,
        "--start-time",
        "-s",
        callback=parse_time_option,
        help="The UTC start time. Passed as either date/time or human-friendly format.",
    ),
    end_time: str = typer.Option(
        None,
        "--end-time",
        "-e",
        callback=parse_time_option,
        help="The UTC end time. Passed as either date/time or human-friendly format.",
    ),
    follow: bool = typer.Option(
        False, "--follow", "-f", help="Tail or continue following the logs."
    ),
    filter_pattern: str = typer.Option(
        None,
        "--filter",
        "-g",
        "--grep",
        help="Pattern to filter logs by. See "
        "http://docs.aws.amazon.com/AmazonCloudWatch/latest/logs/FilterAndPatternSyntax.html",
    ),
    timestamp: bool = typer.Option(
        False, "--timestamp", "-t", help="Print the event timestamp."
    ),
    event_id: bool = typer.Option(False, "--event-id", "-i", help="Print the event id."),
    stream_name: bool = typer.Option(
        False, "--stream-name", help="Print the log stream name of each event."
    ),
    group_name: bool = typer.Option(
        False, "--group-name", help="Print the log group name of each event."
    ),
    output: str = typer.Option(
        "text", "--output", "-o", help="Output format: text or json."
    ),
    local: bool = typer.Option(
        False, "--local", "-l", help="Treat date and time in local timezone."
    ),
):
    """Tail one or more log groups, merged in time order."""
    state: CliState = ctx.obj
    if output not in ("text", "json"):
        raise typer.BadParameter("must be text or json", param_hint="--output")

    def report(target: FetchTarget, error: Exception) -> None:
        err_console.print(f"[red]✗[/red] {escape(str(target))}: {escape(str(error.cause))}")

    writer = get_event_writer(
        output,
        use_local_time=local,
        with_timestamp=timestamp,
        with_group_name=group_name,
        with_stream_name=stream_name,
        with_event_id=event_id,
    )

    with handle_errors("tail"):
        client = state.client()
        targets = SourceResolver(client).resolve(sources)
        if start_time is None:
            start_time = now_millis() - settings.default_start_seconds * 1000

        engine = TailEngine(
            client,
            targets,
            start_time=start_time,
            end_time=end_time,
            filter_pattern=filter_pattern,
            follow=follow,
            on_error=report,
            queue_size=settings.tail_queue_size,
        )
        with engine:
            for event in engine.events():
                writer.write(event)

        if engine.failures:
            raise typer.Exit(1)


def read_query(file: Path | None) -> str:
    """Query text from a file, or from $EDITOR when no file is given."""
    if file is not None:
        if not file.exists():
            raise ValidationError(f"Query file {file} does not exist!")
        return file.read_text()

    edited = click.edit(QUERY_EDITOR_HEADER, extension=".lq", require_save=False) or ""
    query_text = edited.removeprefix(QUERY_EDITOR_HEADER)
    if not query_text.strip():
        raise ValidationError("No query was written, aborting")
    return query_text


@query_app.callback(invoke_without_command=True)
def query(
    ctx: typer.Context,
    group_names: list[str] = typer.Option(
        None, "--group-name", "-g", help="Log group to query, repeatable."
    ),
    file: Path = typer.Option(
        None,
        "--file",
        "-f",
        help="File holding the query. Without it $EDITOR is opened.",
    ),
    start_time: str = typer.Option(
        None,
        "--start-time",
        "-s",
        callback=parse_time_option,
        help="The UTC start time (default: one hour ago).",
    ),
    end_time: str = typer.Option(
        None,
        "--end-time",
        "-e",
        callback=parse_time_option,
        help="The UTC end time (default: now).",
    ),
    timeout: float = typer.Option(
        None, "--timeout", help="Give up and cancel the query after this many seconds."
    ),
    query_id: str = typer.Option(
        None, "--query-id", help="Identifier of the query definition to record the run under."
    ),
    include_ptr: bool = typer.Option(
        False, "--ptr", help="Include the @ptr field in the results."
    ),
):
    """Run a Logs Insights query and print the results as JSON lines."""
    if ctx.invoked_subcommand is not None:
        return

    state: CliState = ctx.obj
    with handle_errors("query"):
        if not group_names:
            raise ValidationError("At least one --group-name is required")

        query_text = read_query(file)
        end = end_time if end_time is not None else now_millis()
        start = start_time if start_time is not None else end - DEFAULT_QUERY_RANGE_MS

        create_tables()
        runner = QueryRunner(state.client())
        result = runner.run(
            query_text, group_names, start, end, timeout=timeout, query_id=query_id
        )
        QueryResultWriter(include_ptr=include_ptr).write_all(result.results or [])


@query_app.command("history")
def query_history(
    show_all: bool = typer.Option(
        False, "--all", "-a", help="Include soft-deleted runs."
    ),
    query_id: str = typer.Option(
        None, "--query-id", help="Only show runs of this query definition."
    ),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of runs to show"),
    offset: int = typer.Option(0, "--offset", help="Number of runs to skip"),
):
    """List recorded query runs, most recent first."""
    with handle_errors("query history"):
        create_tables()
        if query_id:
            runs = HistoryService.list_runs_by_query_id(query_id, include_deleted=show_all)
            total = len(runs)
            runs = runs[offset : offset + limit]
        else:
            runs, total = HistoryService.list_runs(
                include_deleted=show_all, limit=limit, offset=offset
            )

    if not runs:
        console.print("[yellow]No queries found[/yellow]")
        return

    table = Table(title=f"Query history (showing {len(runs)} of {total})")
    table.add_column("Run", style="cyan", no_wrap=True)
    table.add_column("Query", style="dim", no_wrap=True)
    table.add_column("Status", style="magenta")
    table.add_column("Records", justify="right")
    table.add_column("Created", style="dim")
    table.add_column("Contents", style="white")

    for run in runs:
        contents = " ".join(run.contents.split())
        contents = contents[:50] + "..." if len(contents) > 50 else contents
        status = run.status + (" (deleted)" if run.is_deleted else "")
        records = "" if run.records_total is None else str(run.records_total)
        table.add_row(
            run.id,
            run.query_id[:8],
            status,
            records,
            run.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            escape(contents),
        )

    console.print(table)


@query_app.command("delete")
def query_delete(run_id: str = typer.Argument(..., help="Run id")):
    """Soft-delete a run from the history."""
    with handle_errors("query delete"):
        create_tables()
        HistoryService.soft_delete(run_id)
    console.print(f"[green]✓[/green] Deleted {escape(run_id)}")


@query_app.command("restore")
def query_restore(run_id: str = typer.Argument(..., help="Run id")):
    """Restore a soft-deleted run."""
    with handle_errors("query restore"):
        create_tables()
        HistoryService.restore(run_id)
    console.print(f"[green]✓[/green] Restored {escape(run_id)}")


@query_app.command("cancel")
def query_cancel(ctx: typer.Context, run_id: str = typer.Argument(..., help="Run id")):
    """Ask CloudWatch to stop a running query."""
    state: CliState = ctx.obj
    with handle_errors("query cancel"):
        create_tables()
        cancelled = QueryRunner(state.client()).cancel(run_id)

    if cancelled:
        console.print(f"[green]✓[/green] Cancelled {escape(run_id)}")
    else:
        console.print(f"[yellow]Query {escape(run_id)} was not cancelled[/yellow]")


@app.command("info")
def info():
    """Show version and local file locations."""
    with handle_errors("info"):
        create_tables()
        database = f"{engine_name()}-{sqlite_version()}"

    console.print(f"Version:        {__version__}", highlight=False)
    console.print(f"Database:       {database}", highlight=False)
    console.print(
        f"Database Path:  {settings.database_url or get_db_path()}", highlight=False
    )
    console.print(f"Logs:           {get_log_path()}", highlight=False)


if __name__ == "__main__":
    app()
