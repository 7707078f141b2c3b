"""
Console rendering for rundiff.

Renders execution listings, ranked search results and diffs with Rich.

Design Principles:
    - Output goes through a caller-supplied Console so the CLI can route it
      (summaries to stderr while a command's own output owns stdout)
    - Captured text is shown literally: no Rich markup is interpreted and
      control bytes are made visible
    - Status at a glance: exit codes and changes are colored
"""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from rundiff.diff.compare import ExecutionComparison
from rundiff.diff.engine import DiffOp, detect_moves
from rundiff.matcher import Ranked
from rundiff.schema import DiffTag, Execution

ICON_SUCCESS = "[green]✓[/green]"
ICON_FAILURE = "[red]✗[/red]"

STYLE_DELETE = "red"
STYLE_INSERT = "green"
STYLE_EQUAL = ""

_VISIBLE_CONTROLS = {"\t", "\n"}


def sanitize(text: str) -> str:
    """Make control characters visible, keeping tabs and newlines."""
    out = []
    for ch in text:
        if ch in _VISIBLE_CONTROLS:
            out.append(ch)
        elif ch == "\r":
            out.append("\\r")
        elif ord(ch) < 32 or ord(ch) == 127:
            out.append(f"\\x{ord(ch):02x}")
        else:
            out.append(ch)
    return "".join(out)


def format_timestamp(execution: Execution) -> str:
    return execution.timestamp.strftime("%Y-%m-%d %H:%M:%S")


def format_exit(code: int) -> str:
    if code == 0:
        return f"{ICON_SUCCESS} 0"
    return f"{ICON_FAILURE} [red]{code}[/red]"


def _truncate(s: str, max_len: int) -> str:
    if len(s) <= max_len:
        return s
    return s[: max_len - 3] + "..."


# =============================================================================
# Listings
# =============================================================================


def print_executions(
    console: Console,
    executions: list[Execution],
    title: str | None = None,
) -> None:
    """Print a table of executions."""
    if not executions:
        console.print("[dim]No executions recorded.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", title=title)
    table.add_column("Code", style="cyan")
    table.add_column("When")
    table.add_column("Exit", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Command", overflow="fold")

    for execution in executions:
        command = Text(_truncate(sanitize(execution.command_text), 80))
        if execution.archived:
            command.append(" (archived)", style="dim")
        table.add_row(
            execution.short_code,
            format_timestamp(execution),
            format_exit(execution.exit_code),
            f"{execution.duration_ms}ms",
            command,
        )

    console.print(table)


def print_ranked(console: Console, ranked: list[Ranked], show_scores: bool = False) -> None:
    """Print search results with matched characters highlighted."""
    if not ranked:
        console.print("[dim]No matching executions.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Code", style="cyan")
    table.add_column("When")
    table.add_column("Exit", justify="right")
    table.add_column("Command", overflow="fold")
    if show_scores:
        table.add_column("Score", justify="right", style="dim")

    for item in ranked:
        execution: Execution = item.candidate.payload
        row = [
            execution.short_code,
            format_timestamp(execution),
            format_exit(execution.exit_code),
            highlight(item.candidate.text, item.match.indices),
        ]
        if show_scores:
            row.append(str(item.score))
        table.add_row(*row)

    console.print(table)


def highlight(text: str, indices: tuple[int, ...]) -> Text:
    """Bold the matched characters of a text."""
    result = Text()
    marked = set(indices)
    for i, ch in enumerate(text):
        result.append(sanitize(ch), style="bold yellow" if i in marked else "")
    return result


# =============================================================================
# Diffs
# =============================================================================


def print_comparison(console: Console, comparison: ExecutionComparison) -> None:
    """Print a comparison: header, then one diff section per stream."""
    old, new = comparison.old, comparison.new

    header = Text()
    header.append(" ")
    header.append(_truncate(sanitize(new.command_text), 60), style="bold")
    header.append(" │ ", style="dim")
    header.append(old.short_code, style="bold red")
    header.append(f" ({format_timestamp(old)})", style="dim")
    header.append(" → ")
    header.append(new.short_code, style="bold green")
    header.append(f" ({format_timestamp(new)})", style="dim")
    header.append(" │ ", style="dim")
    header.append(comparison.mode.value, style="magenta")
    console.print(Panel(header, expand=False))

    if comparison.exit_code_changed:
        console.print(
            f"  [dim]Exit code:[/dim] [red]{old.exit_code}[/red] → [green]{new.exit_code}[/green]"
        )

    for stream, ops in comparison.diffs.items():
        deleted, inserted = comparison.line_counts(stream)
        console.print()
        if deleted == 0 and inserted == 0:
            console.print(f"[bold]{stream.value}[/bold] [dim]identical[/dim]")
            continue
        console.print(
            f"[bold]{stream.value}[/bold] [red]-{deleted}[/red] [green]+{inserted}[/green]"
        )
        console.print(render_ops(ops))
        moves = detect_moves(ops)
        if moves:
            console.print(f"[dim]{len(moves)} block(s) moved[/dim]")


def render_ops(ops: list[DiffOp]) -> Text:
    """Render DiffOps inline: deletions red and struck through, insertions green."""
    text = Text()
    for op in ops:
        segment = sanitize(op.text)
        if op.tag == DiffTag.DELETE:
            text.append(segment, style=f"{STYLE_DELETE} strike")
        elif op.tag == DiffTag.INSERT:
            text.append(segment, style=f"bold {STYLE_INSERT}")
        else:
            text.append(segment, style=STYLE_EQUAL)
    return text


def print_run_summary(console: Console, execution: Execution) -> None:
    """One-line summary after a run."""
    icon = ICON_SUCCESS if execution.exit_code == 0 else ICON_FAILURE
    console.print(
        f"{icon} recorded [bold cyan]{execution.short_code}[/bold cyan] "
        f"[dim](exit {execution.exit_code}, {execution.duration_ms}ms)[/dim]"
    )
