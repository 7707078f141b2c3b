"""
CLI entry point for rundiff.

Commands:
    run         Run a command, show its output live, and record it
    diff        Compare two recorded executions of a command
    ls          List recorded executions, ranked by a fuzzy query
    rm          Delete one execution
    clean       Delete executions in bulk (search / file / all)
    archive     Move past-year entries into yearly archives
    prune       Delete executions older than the retention limit
    reindex     Rebuild the index from metadata files
    config      Show the effective configuration

Streams:
    A recorded command's own output owns stdout. rundiff's own messages
    (run summaries, errors) go to stderr. Listings and diffs requested
    explicitly go to stdout so they can be piped.

Architecture Note:
    The CLI only parses arguments and renders results; everything else lives
    in rundiff.engine.Engine.
"""

import json
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Optional

import typer
import yaml
from rich.console import Console
from rich.markup import escape

from rundiff import __version__
from rundiff.command import join_args_for_shell
from rundiff.config import config_to_dict, load_config, resolve_data_dir, setup_logging
from rundiff.engine import Engine
from rundiff.errors import InterruptedRunError, RundiffError, StorageError, StorageIOError
from rundiff.report import (
    build_comparison_dict,
    build_listing_dict,
    print_comparison,
    print_executions,
    print_ranked,
    print_run_summary,
    to_json,
)
from rundiff.schema import DiffMode, Execution, Stream

EXIT_INTERRUPTED = 130

# Options must come before the command; everything after it is the command.
COMMAND_CONTEXT = {
    "allow_extra_args": True,
    "ignore_unknown_options": True,
    "allow_interspersed_args": False,
}

app = typer.Typer(
    name="rundiff",
    help="Record command runs and diff their output over time.",
    add_completion=False,
    no_args_is_help=True,
)

clean_app = typer.Typer(
    help="Delete recorded executions in bulk.",
    no_args_is_help=True,
)
app.add_typer(clean_app, name="clean")

# Listings and diffs
console = Console()
# Summaries and errors
err_console = Console(stderr=True)


@dataclass
class CliState:
    """Global options shared by every command."""

    data_dir: Path | None = None
    verbose: bool = False
    debug: bool = False


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]rundiff[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    data_dir: Annotated[
        Optional[Path],
        typer.Option(
            "--data-dir",
            "-d",
            help="Data directory (default: $RUNDIFF_DATA_DIR or ~/.rundiff).",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Log progress to stderr."),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Debug logging and full error tracebacks."),
    ] = False,
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    rundiff - record shell commands and compare their output between runs.
    """
    ctx.obj = CliState(data_dir=data_dir, verbose=verbose, debug=debug)


# =============================================================================
# Helpers
# =============================================================================


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj if isinstance(ctx.obj, CliState) else CliState()


def _open_engine(ctx: typer.Context) -> Engine:
    """
    Load config, set up logging and open the engine.

    A corrupt index is rebuilt from metadata files and reported as a warning.
    """
    state = _state(ctx)
    data_dir = resolve_data_dir(state.data_dir)
    config = load_config(data_dir)
    level = "DEBUG" if state.debug else "INFO" if state.verbose else None
    setup_logging(config, level_override=level)
    engine = Engine(data_dir=data_dir, config=config, recover=True)
    _warn(engine.store.problems)
    return engine


def _warn(problems: list[StorageError]) -> None:
    for problem in problems:
        err_console.print(f"[yellow]warning:[/yellow] {escape(problem.message)}", highlight=False)


def _fail(ctx: typer.Context, error: Exception, json_output: bool = False, code: int = 1) -> None:
    """Report an error and exit."""
    debug = _state(ctx).debug
    if json_output:
        _output_json_error(error, debug)
    else:
        err_console.print(str(error), markup=False, style="red")
        if debug:
            err_console.print(traceback.format_exc(), markup=False, style="dim")
    raise typer.Exit(code=code)


def _output_json_error(error: Exception, include_traceback: bool = False) -> None:
    """Print an error as JSON on stdout."""
    if isinstance(error, RundiffError):
        output = {"error": True, **error.to_dict()}
    else:
        output = {"error": True, "error_type": type(error).__name__, "message": str(error)}
    if include_traceback:
        output["traceback"] = traceback.format_exc()
    print(json.dumps(output, indent=2))


def _streams(stream: str) -> tuple[Stream, ...]:
    if stream == "both":
        return (Stream.STDOUT, Stream.STDERR)
    try:
        return (Stream(stream),)
    except ValueError as e:
        raise typer.BadParameter("must be stdout, stderr or both", param_hint="--stream") from e


def _exit_status(exit_code: int) -> int:
    """Map a child exit code to our own; signal deaths become 128 + signal."""
    return 128 - exit_code if exit_code < 0 else exit_code


def _mode(linewise: bool | None, engine: Engine) -> DiffMode:
    if linewise is None:
        linewise = engine.config.display.linewise
    return DiffMode.LINEWISE if linewise else DiffMode.ALIGNED


# =============================================================================
# run
# =============================================================================


@app.command(context_settings=COMMAND_CONTEXT)
def run(
    ctx: typer.Context,
    command: Annotated[
        list[str],
        typer.Argument(help="Command to run. Quote it to keep pipes and redirects."),
    ],
    diff_code: Annotated[
        Optional[str],
        typer.Option("--diff-code", "-c", help="Diff against this earlier execution after running."),
    ] = None,
    linewise: Annotated[
        Optional[bool],
        typer.Option("--linewise/--aligned", help="Diff mode for --diff-code."),
    ] = None,
) -> None:
    """
    Run a command, stream its output, and record the execution.

    The exit status is the command's own.

    Example:
        $ rundiff run "make test | tail -5"
    """
    command_text = join_args_for_shell(command + list(ctx.args))
    try:
        with _open_engine(ctx) as engine:
            outcome = engine.run(
                command_text,
                working_dir=Path.cwd(),
                diff_code=diff_code,
                mode=_mode(linewise, engine),
            )
            print_run_summary(err_console, outcome.execution)
            if outcome.comparison is not None:
                print_comparison(err_console, outcome.comparison)
    except InterruptedRunError as e:
        _fail(ctx, e, code=EXIT_INTERRUPTED)
    except StorageIOError as e:
        if e.context.get("command_ran"):
            err_console.print("[yellow]The command ran but could not be recorded.[/yellow]")
        _fail(ctx, e)
    except RundiffError as e:
        _fail(ctx, e)

    raise typer.Exit(code=_exit_status(outcome.exit_code))


# =============================================================================
# diff
# =============================================================================


@app.command(context_settings=COMMAND_CONTEXT)
def diff(
    ctx: typer.Context,
    command: Annotated[
        Optional[list[str]],
        typer.Argument(help="Command whose runs to compare. Omit to pick by --query."),
    ] = None,
    from_selector: Annotated[
        Optional[str],
        typer.Option("--from", "-f", help="first, last, or a short code."),
    ] = None,
    to_selector: Annotated[
        Optional[str],
        typer.Option("--to", "-t", help="first, last, or a short code."),
    ] = None,
    query: Annotated[
        str,
        typer.Option("--query", "-q", help="Fuzzy query to pick the command when none is given."),
    ] = "",
    date: Annotated[
        Optional[str],
        typer.Option("--date", help="Only consider runs matching YYYY, YYYY-MM, MM-DD or a month."),
    ] = None,
    linewise: Annotated[
        Optional[bool],
        typer.Option("--linewise/--aligned", help="Compare line i with line i, or align lines."),
    ] = None,
    stream: Annotated[
        str,
        typer.Option("--stream", "-s", help="stdout, stderr or both."),
    ] = "stdout",
    ignore_trailing_newline: Annotated[
        bool,
        typer.Option("--ignore-trailing-newline", help="Ignore one trailing line break."),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output the diff as JSON."),
    ] = False,
) -> None:
    """
    Compare two recorded executions of a command.

    Defaults to the two most recent runs.

    Example:
        $ rundiff diff --from a --to last "make test | tail -5"
    """
    args = (command or []) + list(ctx.args)
    command_text = join_args_for_shell(args) if args else None
    streams = _streams(stream)

    try:
        with _open_engine(ctx) as engine:
            comparison = engine.diff(
                command=command_text,
                query=query,
                from_selector=from_selector,
                to_selector=to_selector,
                date_filter=date,
                mode=_mode(linewise, engine),
                streams=streams,
                ignore_trailing_newline=ignore_trailing_newline,
            )
    except RundiffError as e:
        _fail(ctx, e, json_output)

    if json_output:
        print(to_json(build_comparison_dict(comparison)))
    else:
        print_comparison(console, comparison)


# =============================================================================
# ls / rm
# =============================================================================


@app.command("ls")
def list_executions(
    ctx: typer.Context,
    query: Annotated[
        str,
        typer.Argument(help="Fuzzy query; a number also matches short codes."),
    ] = "",
    limit: Annotated[
        Optional[int],
        typer.Option(
            "--limit",
            "-n",
            help="Maximum number of executions to show. The table defaults to "
            "display.max_history_shown; --json lists all.",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output in JSON format."),
    ] = False,
    scores: Annotated[
        bool,
        typer.Option("--scores", help="Show match scores."),
    ] = False,
) -> None:
    """
    List recorded executions, best match first.

    Example:
        $ rundiff ls make --json
    """
    try:
        with _open_engine(ctx) as engine:
            known = len(engine.store.problems)
            if limit is None and not json_output:
                limit = engine.config.display.max_history_shown
            ranked = engine.search(query, limit=limit)
            problems = engine.store.problems[known:]
    except RundiffError as e:
        _fail(ctx, e, json_output)

    if json_output:
        print(to_json(build_listing_dict(ranked=ranked, query=query)))
    else:
        print_ranked(console, ranked, show_scores=scores)
    _warn(problems)


@app.command("rm", context_settings=COMMAND_CONTEXT)
def remove(
    ctx: typer.Context,
    code: Annotated[str, typer.Argument(help="Short code of the execution.")],
    command: Annotated[list[str], typer.Argument(help="The command it belongs to.")],
) -> None:
    """
    Delete one execution.

    Example:
        $ rundiff rm b "make test"
    """
    command_text = join_args_for_shell(command + list(ctx.args))
    try:
        with _open_engine(ctx) as engine:
            execution = engine.remove(command_text, code)
    except RundiffError as e:
        _fail(ctx, e)
    err_console.print(f"Deleted [cyan]{execution.short_code}[/cyan] of {execution.command_text}", highlight=False)


# =============================================================================
# clean
# =============================================================================


DryRunOption = Annotated[
    bool,
    typer.Option("--dry-run", help="Show what would be deleted."),
]
YesOption = Annotated[
    bool,
    typer.Option("--yes", "-y", help="Do not ask for confirmation."),
]


def _report_clean(executions: list[Execution], dry_run: bool) -> None:
    verb = "Would delete" if dry_run else "Deleted"
    if executions:
        print_executions(err_console, executions)
    err_console.print(f"{verb} {len(executions)} execution(s)")


@clean_app.command("search")
def clean_search(
    ctx: typer.Context,
    query: Annotated[str, typer.Argument(help="Fuzzy query over commands.")],
    dry_run: DryRunOption = False,
    yes: YesOption = False,
) -> None:
    """Delete executions whose command matches a query."""
    try:
        with _open_engine(ctx) as engine:
            targets = engine.clean_matching(query, dry_run=True)
            if not dry_run and targets and not yes:
                typer.confirm(f"Delete {len(targets)} execution(s)?", abort=True)
            removed = targets if dry_run else engine.clean_matching(query)
    except (RundiffError, ValueError) as e:
        _fail(ctx, e)
    _report_clean(removed, dry_run)


@clean_app.command("file")
def clean_file(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="File or directory the executions relate to.")],
    dry_run: DryRunOption = False,
    yes: YesOption = False,
) -> None:
    """Delete executions that ran in, or mention, a path."""
    try:
        with _open_engine(ctx) as engine:
            targets = engine.clean_by_path(path, dry_run=True)
            if not dry_run and targets and not yes:
                typer.confirm(f"Delete {len(targets)} execution(s)?", abort=True)
            removed = targets if dry_run else engine.clean_by_path(path)
    except RundiffError as e:
        _fail(ctx, e)
    _report_clean(removed, dry_run)


@clean_app.command("all")
def clean_all(
    ctx: typer.Context,
    dry_run: DryRunOption = False,
    yes: YesOption = False,
) -> None:
    """Delete every recorded execution."""
    try:
        with _open_engine(ctx) as engine:
            count = engine.clean_all(dry_run=True)
            if not dry_run and count and not yes:
                typer.confirm(f"Delete all {count} execution(s)?", abort=True)
            if not dry_run:
                count = engine.clean_all()
    except RundiffError as e:
        _fail(ctx, e)
    verb = "Would delete" if dry_run else "Deleted"
    err_console.print(f"{verb} {count} execution(s)")


# =============================================================================
# Maintenance
# =============================================================================


@app.command()
def archive(ctx: typer.Context) -> None:
    """Move entries from past years into yearly archive files."""
    try:
        with _open_engine(ctx) as engine:
            moved = engine.archive()
    except RundiffError as e:
        _fail(ctx, e)
    err_console.print(f"Archived {moved} execution(s)")


@app.command()
def prune(
    ctx: typer.Context,
    days: Annotated[
        Optional[int],
        typer.Option("--days", min=1, help="Age limit (default: storage.max_retention_days)."),
    ] = None,
) -> None:
    """Delete executions older than the retention limit."""
    try:
        with _open_engine(ctx) as engine:
            removed = engine.prune(days)
    except RundiffError as e:
        _fail(ctx, e)
    err_console.print(f"Pruned {removed} execution(s)")


@app.command()
def reindex(ctx: typer.Context) -> None:
    """Rebuild the index from the metadata files on disk."""
    try:
        with _open_engine(ctx) as engine:
            count = engine.reindex()
            problems = list(engine.store.problems)
    except RundiffError as e:
        _fail(ctx, e)
    for problem in problems:
        err_console.print(f"[yellow]skipped:[/yellow] {problem.message}", highlight=False)
    err_console.print(f"Indexed {count} execution(s)")


@app.command("config")
def show_config(ctx: typer.Context) -> None:
    """Show the effective configuration."""
    data_dir = resolve_data_dir(_state(ctx).data_dir)
    try:
        config = load_config(data_dir)
    except RundiffError as e:
        _fail(ctx, e)
    console.print(f"# data dir: {data_dir}", markup=False, highlight=False)
    console.print(yaml.safe_dump(config_to_dict(config), sort_keys=False), markup=False, highlight=False)


if __name__ == "__main__":
    app()
