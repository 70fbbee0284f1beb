from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import typer

from cli.config import CLIConfig

_PENDING_STATUSES = {"uploaded", "processing"}


class ApiClient:
    """Thin HTTP client for the energy console API."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=30.0)

    def close(self) -> None:
        self._client.close()

    def upload_import(self, path: Path) -> str:
        if not path.is_file():
            raise typer.BadParameter(f"Path {path} is not a file.")

        data = {"user_email": self._config.user_email} if self._config.user_email else None
        with path.open("rb") as handle:
            response = self._send(
                "POST",
                "/imports",
                files={"file": (path.name, handle, "text/csv")},
                data=data,
            )
        file_id = response.json().get("file_id")
        if not isinstance(file_id, str):
            raise typer.BadParameter("Unexpected response payload when uploading file.")
        return file_id

    def get_import(self, file_id: str) -> Dict[str, Any]:
        return self._send("GET", f"/imports/{file_id}", not_found=f"Import {file_id}").json()

    def list_anomalies(self, anomaly_type: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"type": anomaly_type} if anomaly_type else None
        return self._send("GET", "/anomalies", params=params).json()

    def poll_import(self, file_id: str, interval: float, timeout: float) -> Dict[str, Any]:
        deadline = time.monotonic() + timeout
        last_payload: Dict[str, Any] | None = None
        while time.monotonic() <= deadline:
            last_payload = self.get_import(file_id)
            if last_payload.get("status") not in _PENDING_STATUSES:
                return last_payload
            time.sleep(interval)
        last_status = last_payload.get("status") if last_payload else "unknown"
        typer.secho(
            f"Timed out waiting for import {file_id}. Last status: {last_status}",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1)

    def _send(
        self, method: str, url: str, not_found: Optional[str] = None, **kwargs: Any
    ) -> httpx.Response:
        response = self._client.request(method, url, **kwargs)
        if response.status_code == 404 and not_found:
            raise typer.BadParameter(f"{not_found} was not found.")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        try:
            detail = exc.response.json().get("detail")
        except ValueError:
            detail = exc.response.text.strip()
        typer.secho(
            f"Request failed with status {exc.response.status_code}: "
            f"{detail or 'no detail provided.'}",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1)
