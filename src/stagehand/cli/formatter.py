import json
import typer
from pathlib import Path
from typing import Any, List
from pydantic import BaseModel
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from stagehand.utils.diagnostics import ProvisionDiagnostic

# Create a stderr console for logging
error_console = Console(stderr=True)

class OutputFormatter:
    """
    Handles output formatting for the provisioning CLI.
    Ensures separation of concerns between System Logs (stderr) and Data (stdout).
    """

    @staticmethod
    def log(message: str, severity: str = "info") -> None:
        """
        Print progress messages to stderr with color coding.
        """
        style = "white"
        prefix = "[STAGEHAND]"

        if severity == "warning":
            style = "yellow"
        elif severity == "error":
            style = "red"
        elif severity == "critical":
            style = "bold red"
        elif severity == "success":
            style = "green"

        error_console.print(f"[{style}]{prefix} {escape(message)}[/{style}]", highlight=False)

    @staticmethod
    def print_diagnostics(diagnostics: List[ProvisionDiagnostic]) -> None:
        """
        Prints a summary table of everything that failed or degraded during the run.
        """
        if not diagnostics:
            return

        table = Table(title="Provisioning Diagnostics", border_style="red", header_style="bold red")
        table.add_column("Severity", style="bold")
        table.add_column("Code")
        table.add_column("Phase")
        table.add_column("Message")
        table.add_column("Suggestion")

        for diag in diagnostics:
            color = "red"
            if diag.severity == "warning":
                color = "yellow"
            elif diag.severity == "critical":
                color = "bold red"

            table.add_row(
                f"[{color}]{diag.severity.upper()}[/{color}]",
                diag.error_code,
                diag.phase,
                diag.message,
                diag.suggestion or "",
            )

        error_console.print(table)
        error_console.print() # spacing

    @staticmethod
    def print_log_tail(log_path: Path, lines: int = 20) -> None:
        """Echo the last lines of a service log to stderr."""
        if not log_path.exists():
            return

        content = log_path.read_text(encoding="utf-8", errors="replace").splitlines()
        tail = content[-lines:]
        if not tail:
            return

        error_console.print(f"--- last {len(tail)} lines of {log_path} ---", markup=False, highlight=False)
        for line in tail:
            error_console.print(line, markup=False, highlight=False)

    @staticmethod
    def print_data(data: Any) -> None:
        """
        Print a result to stdout.
        Handles Pydantic models and paths.
        """
        if isinstance(data, str):
            typer.echo(data)
            return

        def json_serializer(obj):
            if isinstance(obj, BaseModel):
                return obj.model_dump(mode='json')
            return str(obj)

        try:
            output = json.dumps(data, indent=2, default=json_serializer)
            typer.echo(output)
        except TypeError as e:
            OutputFormatter.log(f"JSON Serialization failed: {e}", severity="error")
            typer.echo(str(data))
