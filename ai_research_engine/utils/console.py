"""
Rich console utilities for dual-mode CLI output.

Human Mode (--format text):
    - Rich spinners, colored tables and panels

Agent Mode (--format json):
    - Structured JSON output to stdout
    - No ANSI codes or spinners

Examples:
    >>> from ai_research_engine.utils.console import output_mode, spinner, success
    >>> output_mode.format = "text"
    >>> with spinner("Running request..."):
    ...     summary = run_request_sync(config, "req-1")
    >>> success("Request completed")

    >>> output_mode.format = "json"
    >>> success("Request completed")  # Buffers to JSON
    >>> output_mode.flush_json()      # Outputs JSON to stdout
"""

from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ai_research_engine.engine.models import AIRequest, TaskResult


class OutputMode:
    """
    Output mode configuration for dual-mode CLI.

    Attributes:
        format: Output format - "text" (human) or "json" (agent)
        quiet: If True, suppress non-essential output
        _json_buffer: Internal buffer for JSON output in agent mode
    """

    def __init__(self, format_type: str = "text", quiet: bool = False):
        if format_type not in ["text", "json"]:
            raise ValueError(f"Invalid format: {format_type}. Must be 'text' or 'json'")

        self.format = format_type
        self.quiet = quiet
        self._json_buffer: dict[str, Any] = {}

    def is_human(self) -> bool:
        return self.format == "text"

    def is_agent(self) -> bool:
        return self.format == "json"

    def add_json(self, key: str, value: Any) -> None:
        """Add key-value pair to the JSON buffer (flushed by flush_json())."""
        self._json_buffer[key] = value

    def flush_json(self) -> None:
        """
        Output buffered JSON to stdout and clear buffer.

        Only outputs in agent mode. In human mode, this is a no-op.
        """
        if self.is_agent() and self._json_buffer:
            json.dump(self._json_buffer, sys.stdout, indent=2, default=str)
            sys.stdout.write("\n")
            sys.stdout.flush()
            self._json_buffer.clear()


# Global output mode instance (set by CLI flags)
output_mode = OutputMode()

# Global Rich console instances for human mode
console = Console()  # stdout
console_err = Console(stderr=True)  # stderr


@contextmanager
def spinner(message: str):
    """
    Show a spinner during an operation in human mode; silent otherwise.

    Args:
        message: Status message to display
    """
    if output_mode.is_human():
        with console.status(f"[bold blue]{message}", spinner="dots") as status:
            yield status
    else:
        yield None


def success(message: str) -> None:
    if output_mode.is_human():
        console.print(f"[green]✓[/green] {message}")
    elif output_mode.is_agent():
        output_mode.add_json("status", "success")
        output_mode.add_json("message", message)


def error(message: str) -> None:
    """
    Print an error message.

    Human mode: Red X with message to stderr
    Agent mode: Buffer to JSON
    """
    if output_mode.is_human():
        console_err.print(f"[red]✗[/red] {message}", style="red")
    elif output_mode.is_agent():
        output_mode.add_json("status", "error")
        output_mode.add_json("error", message)


def warning(message: str) -> None:
    if output_mode.is_human():
        console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")
    elif output_mode.is_agent():
        output_mode.add_json("warning", message)


def info(message: str) -> None:
    if output_mode.is_human() and not output_mode.quiet:
        console.print(f"[blue]ℹ[/blue] {message}")


def _status_markup(status: str | None) -> str:
    if status == "completed":
        return "[green]completed[/green]"
    if status in ("failed", "format_invalid"):
        return f"[red]{status}[/red]"
    return f"[yellow]{status}[/yellow]"


def print_request_summary(summary: dict[str, Any]) -> None:
    """
    Print the summary returned by a request run.

    Human mode: Rich panel (green when every task completed, yellow on
    partial failure, red when the request failed)
    Agent mode: Buffer the summary as JSON

    Expected keys: request_id, status, processed, completed, failed, total
    """
    if output_mode.is_agent():
        output_mode.add_json("request", summary)
        return

    if output_mode.quiet:
        print(
            f"{summary['request_id']}\t{summary['status']}\t"
            f"{summary['completed']}\t{summary['failed']}\t{summary['total']}"
        )
        return

    summary_text = f"""
[bold]Request:[/bold] {summary['request_id']}
[bold]Status:[/bold] {_status_markup(summary['status'])}
[bold]Tasks:[/bold] {summary['processed']}/{summary['total']} processed, \
{summary['completed']} completed, {summary['failed']} failed
"""

    if summary["status"] == "failed":
        border_style = "red"
    elif summary["failed"] > 0 or summary["status"] != "completed":
        border_style = "yellow"
    else:
        border_style = "green"

    console.print(
        Panel(
            summary_text.strip(),
            title="[bold]AI Request[/bold]",
            border_style=border_style,
            box=box.ROUNDED,
        )
    )


def print_request_details(request: AIRequest, results: list[TaskResult]) -> None:
    """
    Print a stored request with its per-attempt results.

    Human mode: Panel with request state plus a results table
    Agent mode: Buffer request and results as JSON
    """
    total_cost = round(sum(result.cost_estimate or 0.0 for result in results), 6)

    if output_mode.is_agent():
        output_mode.add_json(
            "request",
            {
                "id": request.id,
                "batch_id": request.batch_id,
                "status": request.status,
                "retrieval_method": request.retrieval_method,
                "completed_tasks": request.completed_tasks,
                "failed_tasks": request.failed_tasks,
                "error_text": request.error_text,
                "started_at": request.started_at,
                "completed_at": request.completed_at,
                "total_cost": total_cost,
            },
        )
        output_mode.add_json(
            "results",
            [
                {
                    "id": result.id,
                    "task_id": result.task_id,
                    "status": result.status,
                    "error_code": result.error_code,
                    "schema_validation_passed": result.schema_validation_passed,
                    "tokens_in": result.tokens_in,
                    "tokens_out": result.tokens_out,
                    "cost_estimate": result.cost_estimate,
                    "duration_ms": result.duration_ms,
                }
                for result in results
            ],
        )
        return

    header = f"""
[bold]Request:[/bold] {request.id}
[bold]Batch:[/bold] {request.batch_id}
[bold]Status:[/bold] {_status_markup(request.status)}
[bold]Retrieval:[/bold] {request.retrieval_method}
[bold]Progress:[/bold] {request.completed_tasks} finished, {request.failed_tasks} failed
[bold]Total Cost:[/bold] ${total_cost:.6f}
"""
    if request.error_text:
        header += f"[bold]Errors:[/bold]\n{request.error_text}\n"

    console.print(Panel(header.strip(), box=box.ROUNDED))

    if not results:
        info("No task results recorded yet")
        return

    table = Table(title="Task Results", box=box.ROUNDED)
    table.add_column("Task", style="cyan", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Error", style="magenta")
    table.add_column("Valid", justify="center")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right", style="green")

    for result in results:
        valid_symbol = (
            "[green]✓[/green]" if result.schema_validation_passed else "[red]✗[/red]"
        )
        table.add_row(
            result.task_id,
            _status_markup(result.status),
            result.error_code or "",
            valid_symbol,
            f"{result.tokens_in}/{result.tokens_out}",
            f"${(result.cost_estimate or 0.0):.6f}",
        )

    console.print(table)


def print_queue_summary(sweep: dict[str, Any]) -> None:
    """Print the result of a queue sweep: one row per request."""
    if output_mode.is_agent():
        output_mode.add_json("processed", sweep["processed"])
        output_mode.add_json("total", sweep["total"])
        output_mode.add_json("requests", sweep["requests"])
        return

    if not sweep["requests"]:
        info("No queued requests")
        return

    table = Table(title="Queue Sweep", box=box.ROUNDED)
    table.add_column("Request", style="cyan", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Completed", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Total", justify="right")

    for summary in sweep["requests"]:
        table.add_row(
            summary["request_id"],
            _status_markup(summary["status"]),
            str(summary.get("completed", 0)),
            str(summary.get("failed", 0)),
            str(summary.get("total", 0)),
        )

    console.print(table)
