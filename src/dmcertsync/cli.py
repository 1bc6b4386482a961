from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import typer
import yaml
from rich.console import Console

from dmcertsync import __version__
from dmcertsync.certs import certificates_json_schema, open_certificate_source
from dmcertsync.config import Settings, load_settings
from dmcertsync.engine import Mode, RunReport, reconcile
from dmcertsync.enrollment import locate_enrollment
from dmcertsync.errors import ConfigError, DmCertSyncError
from dmcertsync.identity import (
    resolve_certificate,
    resolve_enrollment_thumbprint,
    resolve_management_id,
)
from dmcertsync.oplog import OperationLog
from dmcertsync.paths import ValueKind, value_location
from dmcertsync.report import render_inspection, render_json, render_table
from dmcertsync.store import SqliteStore, load_snapshot_file, open_store, resolve_db_path

ARG_SNAPSHOT = typer.Argument(..., exists=True, readable=True, help="YAML/JSON store snapshot")
OPT_CONFIG = typer.Option(
    None, "--config", exists=True, readable=True, help="YAML/JSON settings file"
)
OPT_STORE = typer.Option(None, "--store", help="Configuration store backend: registry|sqlite")
OPT_STORE_PATH = typer.Option(None, "--store-path", help="Path to SQLite store (sqlite backend)")
OPT_CERTIFICATES = typer.Option(
    None, "--certificates", help="'system' or a JSON file of certificate records"
)
OPT_PROVIDER_ID = typer.Option(None, "--provider-id", help="Enrollment provider to match")
OPT_ISSUER = typer.Option(None, "--issuer-pattern", help="Management CA issuer pattern (regex)")
OPT_LOG_DIR = typer.Option(None, "--log-dir", help="Directory for run logs")
OPT_FORMAT = typer.Option("table", "--format", help="table/json")
OPT_VERBOSE = typer.Option(False, "--verbose", "-v", help="Echo log events to stderr")
OPT_OUTPUT = typer.Option(None, "--output", help="Write output to file")

app = typer.Typer(help="MDM enrollment certificate binding repair", add_completion=False)
store_app = typer.Typer(help="Offline SQLite store")
schema_app = typer.Typer(help="Schema export")
app.add_typer(store_app, name="store")
app.add_typer(schema_app, name="schema")

console = Console()
err_console = Console(stderr=True)


def _settings(config: Path | None, **overrides: Any) -> Settings:
    try:
        return load_settings(config, **overrides)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2) from exc


def _execute(mode: Mode, settings: Settings, format: str, verbose: bool) -> None:
    if format not in {"table", "json"}:
        console.print(f"Unknown format: {format}")
        raise typer.Exit(code=2)
    try:
        store = open_store(settings.store, settings.store_path)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2) from exc
    certificates = open_certificate_source(settings.certificates)

    started_at = datetime.now(tz=timezone.utc)
    log = OperationLog.for_run(
        settings.log_dir_path, started_at, console=err_console if verbose else None
    )
    try:
        report = reconcile(
            store,
            certificates,
            log,
            mode=mode,
            provider_id=settings.provider_id,
            issuer_pattern=settings.issuer_pattern,
        )
    finally:
        log.close()

    _emit_report(report, format)
    if log.failures:
        err_console.print(
            f"[yellow]{log.failures} log event(s) could not be written to {log.path}[/yellow]"
        )
    raise typer.Exit(code=report.exit_code)


def _emit_report(report: RunReport, format: str) -> None:
    if format == "json":
        typer.echo(render_json(report))
        return
    console.print(render_table(report), markup=False, highlight=False)


@app.command()
def version() -> None:
    console.print(__version__)


@app.command()
def remediate(
    config: Path | None = OPT_CONFIG,
    store: str | None = OPT_STORE,
    store_path: str | None = OPT_STORE_PATH,
    certificates: str | None = OPT_CERTIFICATES,
    provider_id: str | None = OPT_PROVIDER_ID,
    issuer_pattern: str | None = OPT_ISSUER,
    log_dir: str | None = OPT_LOG_DIR,
    format: str = OPT_FORMAT,
    verbose: bool = OPT_VERBOSE,
) -> None:
    """Detect drift in the certificate binding values and correct it."""
    settings = _settings(
        config,
        store=store,
        store_path=store_path,
        certificates=certificates,
        provider_id=provider_id,
        issuer_pattern=issuer_pattern,
        log_dir=log_dir,
    )
    _execute(Mode.REMEDIATE, settings, format, verbose)


@app.command()
def detect(
    config: Path | None = OPT_CONFIG,
    store: str | None = OPT_STORE,
    store_path: str | None = OPT_STORE_PATH,
    certificates: str | None = OPT_CERTIFICATES,
    provider_id: str | None = OPT_PROVIDER_ID,
    issuer_pattern: str | None = OPT_ISSUER,
    log_dir: str | None = OPT_LOG_DIR,
    format: str = OPT_FORMAT,
    verbose: bool = OPT_VERBOSE,
) -> None:
    """Report drift without writing. Exits 1 when any value is out of sync."""
    settings = _settings(
        config,
        store=store,
        store_path=store_path,
        certificates=certificates,
        provider_id=provider_id,
        issuer_pattern=issuer_pattern,
        log_dir=log_dir,
    )
    _execute(Mode.DETECT, settings, format, verbose)


@app.command()
def inspect(
    config: Path | None = OPT_CONFIG,
    store: str | None = OPT_STORE,
    store_path: str | None = OPT_STORE_PATH,
    certificates: str | None = OPT_CERTIFICATES,
    provider_id: str | None = OPT_PROVIDER_ID,
    issuer_pattern: str | None = OPT_ISSUER,
    format: str = OPT_FORMAT,
    verbose: bool = OPT_VERBOSE,
) -> None:
    """Show the enrollment, its identity data and the stored binding values (read-only)."""
    settings = _settings(
        config,
        store=store,
        store_path=store_path,
        certificates=certificates,
        provider_id=provider_id,
        issuer_pattern=issuer_pattern,
    )
    try:
        config_store = open_store(settings.store, settings.store_path)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2) from exc
    log = OperationLog(console=err_console if verbose else None)

    try:
        enrollment = locate_enrollment(config_store, log, settings.provider_id)
    except DmCertSyncError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc

    details: dict[str, Any] = {"enrollment_id": enrollment.id}
    try:
        details["ent_dm_id"] = resolve_management_id(config_store, enrollment, log)
    except DmCertSyncError as exc:
        details["ent_dm_id"] = None
        details["ent_dm_id_error"] = str(exc)
    try:
        details["enrollment_thumbprint"] = resolve_enrollment_thumbprint(
            config_store, enrollment, log
        )
    except DmCertSyncError as exc:
        details["enrollment_thumbprint"] = None
        details["enrollment_thumbprint_error"] = str(exc)
    try:
        certificate = resolve_certificate(
            open_certificate_source(settings.certificates), log, settings.issuer_pattern
        )
        details["certificate_thumbprint"] = certificate.thumbprint
        details["certificate_issuer"] = certificate.issuer
    except DmCertSyncError as exc:
        details["certificate_thumbprint"] = None
        details["certificate_error"] = str(exc)
    for kind in ValueKind:
        location = value_location(enrollment.id, kind)
        details[location.name] = config_store.get(location.path, location.name)
    log.close()

    if format == "json":
        typer.echo(json.dumps(details, indent=2))
        return
    console.print(render_inspection(details), markup=False, highlight=False)


@store_app.command("import")
def store_import(
    path: Path = ARG_SNAPSHOT,
    store_path: str | None = OPT_STORE_PATH,
) -> None:
    """Seed the offline store from a `{key path: {name: value}}` snapshot."""
    try:
        snapshot = load_snapshot_file(path)
        db = SqliteStore(resolve_db_path(store_path))
        count = db.import_snapshot(snapshot)
    except (ValueError, yaml.YAMLError) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    console.print(f"Imported {count} value(s) into {db.db_path}")


@store_app.command("export")
def store_export(
    store_path: str | None = OPT_STORE_PATH,
    output: Path | None = OPT_OUTPUT,
) -> None:
    """Dump the offline store as a YAML snapshot."""
    db = SqliteStore(resolve_db_path(store_path))
    text = yaml.safe_dump(db.export_snapshot(), sort_keys=True)
    if output:
        output.write_text(text, encoding="utf-8")
        console.print(f"Wrote {output}")
    else:
        typer.echo(text)


@schema_app.command("certificates")
def schema_certificates(
    output: Path | None = OPT_OUTPUT,
) -> None:
    """Print the JSON schema of a certificate export file."""
    text = json.dumps(certificates_json_schema(), indent=2)
    if output:
        output.write_text(text, encoding="utf-8")
        console.print(f"Wrote {output}")
    else:
        typer.echo(text)


def main() -> None:
    """Entrypoint for `python -m dmcertsync.cli`."""

    app(prog_name="dmcertsync")


if __name__ == "__main__":
    main()
