"""Rich output formatting for genorun CLI commands."""

from __future__ import annotations

import json
from typing import Any, Literal

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from genorun.core.models import JobStatus

# =============================================================================
# Shared console instance
# =============================================================================

console = Console()


class StatusColors:
    """Color per job status."""

    JOB_STATUS: dict[JobStatus, str] = {
        JobStatus.PENDING: "yellow",
        JobStatus.RUNNING: "blue",
        JobStatus.COMPLETED: "green",
        JobStatus.FAILED: "red",
        JobStatus.CANCELLED: "magenta",
    }

    @classmethod
    def for_job(cls, status: JobStatus) -> str:
        return cls.JOB_STATUS.get(status, "white")


def format_duration(seconds: float | None) -> str:
    """Format a duration in seconds, e.g. "5.2s", "3m 12s", "1h 30m"."""
    if seconds is None:
        return "N/A"
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m"


def format_status(status: JobStatus) -> str:
    color = StatusColors.for_job(status)
    return f"[{color}]{status.value}[/{color}]"


# =============================================================================
# Tables
# =============================================================================


def create_regions_table(regions: list[dict[str, Any]]) -> Table:
    table = Table(title="Prophage Regions")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Sequence", no_wrap=True)
    table.add_column("Start", justify="right")
    table.add_column("End", justify="right")
    table.add_column("Length", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Completeness")
    table.add_column("Genes", justify="right")
    for r in regions:
        complete = r["completeness"] == "complete"
        table.add_row(
            str(r["region_index"]),
            r["seq_name"],
            str(r["start"]),
            str(r["end"]),
            str(r["length"]),
            f"{r['score']:.4g}",
            f"{r['confidence']:.2f}",
            f"[green]{r['completeness']}[/green]" if complete else f"[dim]{r['completeness']}[/dim]",
            str(r["gene_count"]),
        )
    return table


def create_hits_table(hits: list[dict[str, Any]]) -> Table:
    table = Table(title="Resistance Predictions")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Sequence", no_wrap=True)
    table.add_column("ARG")
    table.add_column("Class")
    table.add_column("Pred. prob", justify="right")
    table.add_column("Class prob", justify="right")
    for h in hits:
        table.add_row(
            str(h["index"]),
            h["sequence_id"],
            "[green]yes[/green]" if h["is_arg"] else "no",
            h["arg_class"] or "-",
            _fmt_prob(h["pred_prob"]),
            _fmt_prob(h["class_prob"]),
        )
    return table


def create_summary_table(summary: dict[str, Any]) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    for key, value in summary.items():
        if isinstance(value, dict):
            value = ", ".join(f"{k}: {v}" for k, v in value.items()) or "-"
        table.add_row(key.replace("_", " "), str(value))
    return table


def _fmt_prob(value: float | None) -> str:
    return "-" if value is None else f"{value:.3f}"


def print_results(result: dict[str, Any], console_instance: Console | None = None) -> None:
    """Print summary metrics followed by the regions or hits table."""
    out = console_instance or console
    out.print(create_summary_table(result.get("summary", {})))
    if result.get("regions"):
        out.print(create_regions_table(result["regions"]))
    elif result.get("hits"):
        out.print(create_hits_table(result["hits"]))
    else:
        out.print("[dim]No records reported.[/dim]")


def print_json(data: Any) -> None:
    """Emit machine-readable JSON without Rich markup processing."""
    typer.echo(json.dumps(data, indent=2, default=str))


def output_error(
    message: str,
    *,
    hints: list[str] | None = None,
    severity: Literal["error", "warning"] = "error",
    json_output: bool = False,
    console_instance: Console | None = None,
) -> None:
    """Print an error or warning with optional hints, or as JSON."""
    if json_output:
        result: dict[str, Any] = {"success": False, "message": message}
        if hints:
            result["hints"] = hints
        print_json(result)
        return

    out = console_instance or console
    color = "red" if severity == "error" else "yellow"
    label = "Error" if severity == "error" else "Warning"
    out.print(f"[{color}]{label}:[/{color}] {escape(message)}")
    if hints:
        out.print()
        out.print("[dim]Hints:[/dim]")
        for hint in hints:
            out.print(f"  - {hint}")


__all__ = [
    "StatusColors",
    "console",
    "create_hits_table",
    "create_regions_table",
    "create_summary_table",
    "format_duration",
    "format_status",
    "output_error",
    "print_json",
    "print_results",
]
