from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from typer.testing import CliRunner

from cli.app import app
from cli.config import DEFAULT_BASE_URL, load_config
from cli.render import import_complete_message


class StubClient:
    def __init__(self, config, upload_response: str = "file-123") -> None:
        self.config = config
        self.upload_response = upload_response
        self.uploaded_path: Path | None = None
        self.poll_calls: List[tuple[str, float, float]] = []
        self.anomaly_filters: List[Optional[str]] = []
        self.import_payload: Dict[str, Any] = {
            "file_id": upload_response,
            "file_name": "data.csv",
            "status": "partial",
            "uploaded_at": "2024-01-01T00:00:00Z",
            "processed_at": "2024-01-01T00:00:01Z",
            "processing_ms": 123,
            "summary": {
                "rows_ok": 2,
                "rows_err": 1,
                "anomaly_count": 1,
                "min_value": 1.0,
                "max_value": 2.0,
                "mean_value": 1.5,
                "per_meter_count": {"meter-a": 1, "meter-b": 1},
            },
            "errors": [{"row_number": 4, "reason": "invalid timestamp"}],
        }
        self.closed = False

    def upload_import(self, path: Path) -> str:
        self.uploaded_path = path
        return self.upload_response

    def poll_import(self, file_id: str, interval: float, timeout: float) -> Dict[str, Any]:
        self.poll_calls.append((file_id, interval, timeout))
        return self.import_payload

    def get_import(self, file_id: str) -> Dict[str, Any]:
        payload = self.import_payload.copy()
        payload["file_id"] = file_id
        return payload

    def list_anomalies(self, anomaly_type: Optional[str] = None) -> List[Dict[str, Any]]:
        self.anomaly_filters.append(anomaly_type)
        return [
            {
                "id": "an-1",
                "reading_id": "r-1",
                "meter_id": "meter-a",
                "ts": "2024-01-01T03:00:00Z",
                "value": 150.0,
                "type": "SPIKE",
                "delta": 50.0,
                "comment": None,
            }
        ]

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def stub(monkeypatch) -> StubClient:
    client = StubClient(config=None)

    def factory(config):
        client.config = config
        return client

    monkeypatch.setattr("cli.app.ApiClient", factory)
    return client


def _csv(tmp_path: Path) -> Path:
    path = tmp_path / "data.csv"
    path.write_text("meter_id,ts,value\nm,2024-01-01T00:00:00Z,1.0\n")
    return path


def test_import_without_wait(stub: StubClient, runner: CliRunner, tmp_path) -> None:
    csv_path = _csv(tmp_path)

    result = runner.invoke(app, ["import", str(csv_path)])

    assert result.exit_code == 0
    assert "Upload accepted" in result.stdout
    assert stub.uploaded_path == csv_path
    assert not stub.poll_calls
    assert stub.closed is True


def test_import_with_wait(stub: StubClient, runner: CliRunner, tmp_path) -> None:
    result = runner.invoke(
        app,
        ["--poll-interval", "0.1", "--timeout", "5", "import", str(_csv(tmp_path)), "--wait"],
    )

    assert result.exit_code == 0
    assert "Import complete: 2 rows, 1 errors" in result.stdout
    assert "row 4: invalid timestamp" in result.stdout
    assert stub.poll_calls == [("file-123", 0.1, 5.0)]


def test_import_with_wait_exits_non_zero_on_failure(
    stub: StubClient, runner: CliRunner, tmp_path
) -> None:
    stub.import_payload = {**stub.import_payload, "status": "failed", "summary": None}

    result = runner.invoke(app, ["import", str(_csv(tmp_path)), "--wait"])

    assert result.exit_code == 1
    assert "No summary available." in result.stdout


def test_import_status_command(stub: StubClient, runner: CliRunner) -> None:
    result = runner.invoke(app, ["import-status", "file-999"])

    assert result.exit_code == 0
    assert "file_id: file-999" in result.stdout
    assert "meter-a: 1" in result.stdout
    assert stub.closed is True


def test_anomalies_command(stub: StubClient, runner: CliRunner) -> None:
    result = runner.invoke(app, ["anomalies", "--type", "spike"])

    assert result.exit_code == 0
    assert stub.anomaly_filters == ["SPIKE"]
    assert "Anomalies (1)" in result.stdout
    assert "SPIKE value=150.0 delta=+50.0%" in result.stdout


@pytest.mark.parametrize(
    ("args", "expected"),
    [
        (["150", "100", "105", "110"], ["Anomaly: SPIKE", "delta: +42.9%"]),
        (["missing", "100"], ["Anomaly: MISSING"]),
        (["116", "100", "105", "95"], ["Out-of-threshold value", "delta: +16.0%"]),
        (["105", "100", "110", "95"], ["Within threshold"]),
        (["100"], ["Within threshold"]),
    ],
)
def test_check_command(
    stub: StubClient, runner: CliRunner, args: List[str], expected: List[str]
) -> None:
    result = runner.invoke(app, ["check", *args])

    assert result.exit_code == 0
    for text in expected:
        assert text in result.stdout


def test_check_command_rejects_non_numeric_value(stub: StubClient, runner: CliRunner) -> None:
    result = runner.invoke(app, ["check", "lots", "100"])

    assert result.exit_code != 0


def test_load_config_prefers_options_over_environment(monkeypatch) -> None:
    monkeypatch.setenv("API_BASE_URL", "http://console:9000/")
    monkeypatch.setenv("CLI_POLL_INTERVAL", "not-a-number")
    monkeypatch.setenv("CLI_POLL_TIMEOUT", "-3")
    monkeypatch.setenv("CLI_USER_EMAIL", "env@example.com")

    config = load_config()
    assert config.base_url == "http://console:9000"
    assert config.poll_interval == 0.5
    assert config.poll_timeout == 120.0
    assert config.user_email == "env@example.com"

    monkeypatch.delenv("API_BASE_URL")
    overridden = load_config(poll_interval=2.0, user_email="cli@example.com")
    assert overridden.base_url == DEFAULT_BASE_URL
    assert overridden.poll_interval == 2.0
    assert overridden.user_email == "cli@example.com"


def test_import_complete_message() -> None:
    assert import_complete_message(120, 5) == "Import complete: 120 rows, 5 errors"
    assert import_complete_message(0, 0) == "Import complete: 0 rows, 0 errors"
