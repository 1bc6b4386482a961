from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from rich.console import Console
from rich.table import Table

from dmcertsync.engine import RunReport, Status

_STATUS_STYLES = {
    Status.MATCHED: "green",
    Status.CORRECTED: "cyan",
    Status.DRIFTED: "yellow",
    Status.FAILED: "red",
}


def _show(value: str | None) -> str:
    return "(absent)" if value is None else value


def render_table(report: RunReport) -> str:
    title = f"Enrollment certificate binding ({report.mode.value})"
    if report.enrollment_id:
        title = f"{title}: {report.enrollment_id}"
    table = Table(title=title)
    table.add_column("Value")
    table.add_column("Status")
    table.add_column("Current")
    table.add_column("Expected")
    table.add_column("Detail")

    for result in report.results:
        style = _STATUS_STYLES[result.status]
        table.add_row(
            result.kind.value,
            f"[{style}]{result.status.value}[/{style}]",
            _show(result.current_value),
            _show(result.expected_value),
            result.detail,
        )

    console = Console(record=True, width=160)
    if report.discovery_error:
        console.print(f"[red]Discovery failed: {report.discovery_error}[/red]")
    else:
        console.print(table)
    return console.export_text()


def render_json(report: RunReport) -> str:
    return json.dumps(report.to_dict(), indent=2)


def render_inspection(details: Mapping[str, Any]) -> str:
    table = Table(title="Enrollment inspection", show_header=False)
    table.add_column("Field")
    table.add_column("Value")
    for key, value in details.items():
        table.add_row(key, "(absent)" if value is None else str(value))
    console = Console(record=True, width=160)
    console.print(table)
    return console.export_text()
