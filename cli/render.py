from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer

from services.validation import ThresholdResult, format_percentage


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def import_complete_message(rows_ok: int, rows_err: int) -> str:
    return f"Import complete: {rows_ok} rows, {rows_err} errors"


def render_import(payload: Dict[str, Any]) -> None:
    echo_heading("Import")
    echo_key_values(
        (key, payload.get(key))
        for key in ("file_id", "file_name", "status", "uploaded_at", "processed_at", "processing_ms")
    )

    summary = payload.get("summary") or {}
    typer.echo()
    echo_heading("Summary")
    if summary:
        typer.echo(import_complete_message(summary.get("rows_ok", 0), summary.get("rows_err", 0)))
        echo_key_values(
            (key, summary.get(key))
            for key in ("anomaly_count", "min_value", "max_value", "mean_value")
        )
        per_meter = summary.get("per_meter_count") or {}
        if per_meter:
            typer.echo("per_meter_count:")
            for meter_id, count in per_meter.items():
                typer.echo(f"  - {meter_id}: {count}")
    else:
        typer.echo("No summary available.")

    errors = payload.get("errors") or []
    typer.echo()
    echo_heading("Errors")
    if errors:
        for error in errors:
            typer.echo(f"  - row {error.get('row_number')}: {error.get('reason')}")
    else:
        typer.echo("No errors recorded.")


def render_anomalies(items: List[Dict[str, Any]]) -> None:
    echo_heading(f"Anomalies ({len(items)})")
    if not items:
        typer.echo("No anomalies found.")
        return
    for item in items:
        delta = item.get("delta")
        shown = format_percentage(delta) if delta is not None else "-"
        comment = item.get("comment") or ""
        typer.echo(
            f"  - {item.get('ts')} {item.get('meter_id')} {item.get('type')} "
            f"value={item.get('value')} delta={shown} {comment}".rstrip()
        )


def render_threshold_result(result: ThresholdResult) -> None:
    echo_heading("Threshold check")
    if result.is_anomaly:
        typer.secho(f"Anomaly: {result.type.value}", fg=typer.colors.RED)
    elif result.message:
        typer.secho(result.message, fg=typer.colors.YELLOW)
    else:
        typer.secho("Within threshold", fg=typer.colors.GREEN)
    if result.delta is not None:
        typer.echo(f"delta: {format_percentage(result.delta)}")
