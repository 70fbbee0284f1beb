from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_anomalies, render_import, render_threshold_result
from services.validation import AnomalyType, check_thresholds

_MISSING_TOKENS = {"", "none", "null", "missing"}


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for the energy console: CSV imports, anomaly review and threshold checks.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


def _parse_value(raw: str) -> Optional[float]:
    if raw.strip().lower() in _MISSING_TOKENS:
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise typer.BadParameter(f"{raw!r} is not a number.", param_hint="VALUE") from exc


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Console API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    poll_interval: Optional[float] = typer.Option(
        None,
        "--poll-interval",
        help="Seconds between status checks when waiting for an import.",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Maximum seconds to wait when polling an import.",
    ),
    user_email: Optional[str] = typer.Option(
        None,
        "--user",
        help="Email recorded in the import log (defaults to CLI_USER_EMAIL env).",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(
        base_url=base_url,
        poll_interval=poll_interval,
        poll_timeout=timeout,
        user_email=user_email,
    )
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("import")
def import_command(
    ctx: typer.Context,
    file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, readable=True, help="CSV with meter_id, ts, value."
    ),
    wait: bool = typer.Option(
        False,
        "--wait/--no-wait",
        help="Wait for the import to finish and display the result.",
    ),
) -> None:
    """Upload a CSV file of readings for asynchronous import."""
    state = _get_state(ctx)
    typer.echo(f"Uploading {file} to {state.config.base_url} ...")
    file_id = state.client.upload_import(file)
    typer.secho(f"Upload accepted. file_id={file_id}", fg=typer.colors.GREEN)

    if not wait:
        return

    interval = state.config.poll_interval
    poll_timeout = state.config.poll_timeout
    typer.echo(f"Waiting for import (interval={interval}s, timeout={poll_timeout}s)...")
    payload = state.client.poll_import(file_id, interval=interval, timeout=poll_timeout)
    typer.echo()
    render_import(payload)
    if payload.get("status") == "failed":
        raise typer.Exit(code=1)


@app.command("import-status")
def import_status_command(
    ctx: typer.Context,
    file_id: str = typer.Argument(..., help="Identifier returned from the import command."),
) -> None:
    """Fetch the status and summary of an import."""
    state = _get_state(ctx)
    render_import(state.client.get_import(file_id))


@app.command("anomalies")
def anomalies_command(
    ctx: typer.Context,
    anomaly_type: Optional[AnomalyType] = typer.Option(
        None, "--type", "-t", case_sensitive=False, help="Only show one anomaly type."
    ),
) -> None:
    """List detected anomalies, newest first."""
    state = _get_state(ctx)
    render_anomalies(
        state.client.list_anomalies(anomaly_type.value if anomaly_type else None)
    )


@app.command("check")
def check_command(
    value: str = typer.Argument(..., help="Reading to check; 'missing' for an absent value."),
    history: List[float] = typer.Argument(None, help="Historical values to compare against."),
) -> None:
    """Check a value against historical readings locally, without the API."""
    result = check_thresholds(_parse_value(value), history or [])
    render_threshold_result(result)
