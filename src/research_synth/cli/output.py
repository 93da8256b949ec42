"""Response envelopes and console rendering for the CLI."""

import json
import sys
from typing import Any, NoReturn, Optional

import click


def emit_success(data: Any, *, meta: Optional[dict[str, Any]] = None) -> None:
    """Print a success envelope as JSON."""
    click.echo(
        json.dumps(
            {"success": True, "data": data, "error": None, "meta": meta or {}},
            indent=2,
            default=str,
        )
    )


def emit_error(
    message: str,
    *,
    code: str,
    error_type: str,
    remediation: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> NoReturn:
    """Print an error envelope as JSON and exit with status 1."""
    payload: dict[str, Any] = {
        "success": False,
        "data": None,
        "error": message,
        "error_code": code,
        "error_type": error_type,
    }
    if remediation:
        payload["remediation"] = remediation
    if details:
        payload["details"] = details
    click.echo(json.dumps(payload, indent=2, default=str))
    sys.exit(1)


def print_markdown(markdown: str) -> None:
    """Render markdown to the terminal."""
    from rich.console import Console
    from rich.markdown import Markdown

    Console().print(Markdown(markdown))


def print_provider_table(rows: list[tuple[str, str, bool]]) -> None:
    from rich.console import Console
    from rich.table import Table

    table = Table(title="Providers")
    table.add_column("Provider")
    table.add_column("Role")
    table.add_column("Configured")
    for name, role, configured in rows:
        table.add_row(name, role, "[green]yes[/green]" if configured else "[red]no[/red]")
    Console().print(table)
