"""Background CSV import of meter readings."""

from __future__ import annotations

import csv
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from functools import lru_cache, partial
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional
from uuid import uuid4

from fastapi import BackgroundTasks, UploadFile

from app.schemas import (
    ImportJob,
    ImportLog,
    ImportRowError,
    ImportStatus,
    ImportSummary,
)
from datastore.tables import Tables, build_default_tables
from models.records import MeterReading
from services.aggregator import Aggregator
from services.console import ReadingService, build_default_reading_service
from services.csv_validation import (
    NOT_A_NUMBER_MESSAGE,
    RowError,
    validate_csv_data,
    validate_csv_structure,
    validate_date,
    validate_numeric,
)
from services.validation import parse_timestamp
from settings import get_settings
from storage.upload_store import UploadStore, build_default_store

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("meter_id", "ts", "value")

ROW_RULES = {
    "ts": validate_date,
    "value": partial(validate_numeric, minimum=0),
}


def _row_reason(error: RowError) -> str:
    if error.field == "ts":
        return "invalid timestamp"
    if error.field == "value":
        if error.message == NOT_A_NUMBER_MESSAGE:
            return "invalid numeric value"
        return "negative value"
    return f"missing required field(s): {error.field}"


class ImportService:
    """Coordinates upload storage, background parsing, and result retrieval."""

    def __init__(
        self,
        store: UploadStore,
        tables: Tables,
        readings: ReadingService,
        aggregator: Aggregator,
        workers: int = 4,
        default_user_email: str = "import@localhost",
    ) -> None:
        self.store = store
        self.tables = tables
        self.readings = readings
        self.aggregator = aggregator
        self.default_user_email = default_user_email
        self.executor = ThreadPoolExecutor(max_workers=workers)
        self._futures: Dict[str, Future[None]] = {}
        self._futures_lock = Lock()

    def enqueue_file(
        self,
        background_tasks: BackgroundTasks,
        file: UploadFile,
        user_email: Optional[str] = None,
    ) -> str:
        """Persist the upload and trigger asynchronous processing."""
        file_id = str(uuid4())
        filename = Path(file.filename or "upload.csv").name
        key = f"{file_id}/{filename}"

        file.file.seek(0)
        contents = file.file.read()
        if isinstance(contents, str):
            contents = contents.encode("utf-8")
        if not contents:
            raise ValueError("Uploaded file is empty.")

        self.store.put(key, contents)

        uploaded_at = datetime.now(timezone.utc)
        self.tables.import_jobs.put_item(
            ImportJob(
                file_id=file_id,
                file_name=filename,
                status=ImportStatus.uploaded,
                uploaded_at=uploaded_at,
            )
        )

        future = self.executor.submit(
            self._process_file,
            file_id=file_id,
            key=key,
            user_email=user_email or self.default_user_email,
        )
        with self._futures_lock:
            self._futures[file_id] = future
        future.add_done_callback(lambda _f, fid=file_id: self._clear_future(fid))

        background_tasks.add_task(file.close)
        return file_id

    def fetch_result(self, file_id: str) -> ImportJob:
        """Retrieve an import job's current state."""
        job = self.tables.import_jobs.get_item(file_id)
        if job is None:
            raise KeyError(f"Import {file_id!r} not found.")
        return job

    def list_logs(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[ImportLog]:
        lower = parse_timestamp(start) if start is not None else None
        upper = parse_timestamp(end) if end is not None else None
        logs = self.tables.import_logs.scan(
            lambda log: (lower is None or log.ts >= lower) and (upper is None or log.ts <= upper)
        )
        return sorted(logs, key=lambda log: log.ts, reverse=True)

    def shutdown(self) -> None:
        """Clean up executor resources during application shutdown."""
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _clear_future(self, file_id: str) -> None:
        with self._futures_lock:
            self._futures.pop(file_id, None)

    def _skip(
        self,
        errors: List[ImportRowError],
        file_id: str,
        key: str,
        row_number: int,
        reason: str,
    ) -> None:
        errors.append(ImportRowError(row_number=row_number, reason=reason))
        logger.warning(
            "Skipping row: %s",
            reason,
            extra={
                "file_id": file_id,
                "object_key": key,
                "row_number": row_number,
                "reason": reason,
            },
        )

    def _process_file(
        self, file_id: str, key: str, user_email: str
    ) -> None:
        start_time = time.perf_counter()
        job = self.fetch_result(file_id)
        job.status = ImportStatus.processing
        self.tables.import_jobs.put_item(job)

        errors: List[ImportRowError] = []
        summary: Optional[ImportSummary] = None
        status = ImportStatus.processing

        try:
            rows: List[Dict[str, Optional[str]]] = []
            with self.store.open_text(key) as handle:
                reader = csv.DictReader(handle)
                if not reader.fieldnames:
                    raise ValueError("CSV file is missing a header row.")

                normalized = {name.lower().strip(): name for name in reader.fieldnames if name}
                structure = validate_csv_structure(list(normalized), REQUIRED_COLUMNS)
                if not structure.is_valid:
                    raise ValueError(
                        f"CSV missing required columns: {', '.join(structure.missing_columns)}"
                    )

                for raw_row in reader:
                    rows.append(
                        {column: raw_row.get(normalized[column]) for column in REQUIRED_COLUMNS}
                    )

            report = validate_csv_data(rows, REQUIRED_COLUMNS, rules=ROW_RULES)
            reported = set()
            for error in report.errors:
                if error.row in reported:
                    continue
                reported.add(error.row)
                # data rows are numbered from 2, after the header
                self._skip(errors, file_id, key, error.row + 1, _row_reason(error))

            created = self.readings.create_many(
                (row["meter_id"].strip(), row["ts"], float(row["value"]))
                for row in report.valid_rows
            )
            anomaly_count = sum(1 for _, anomaly in created if anomaly is not None)
            accepted = [
                MeterReading(meter_id=reading.meter_id, timestamp=reading.ts, value=reading.value)
                for reading, _ in created
            ]

            aggregated = self.aggregator.aggregate(accepted)
            summary = ImportSummary(
                rows_ok=aggregated.row_count,
                rows_err=len(errors),
                anomaly_count=anomaly_count,
                min_value=aggregated.min_value,
                max_value=aggregated.max_value,
                mean_value=aggregated.mean_value,
                per_meter_count=dict(aggregated.per_meter_count),
            )

            if aggregated.row_count == 0 and errors:
                status = ImportStatus.failed
            elif errors:
                status = ImportStatus.partial
            else:
                status = ImportStatus.processed
        except Exception as exc:  # noqa: BLE001 - job failures are reported on the record
            logger.error(
                "Import failed: %s", exc, extra={"file_id": file_id, "object_key": key}
            )
            status = ImportStatus.failed
            errors.append(ImportRowError(row_number=1, reason=str(exc)))
            summary = None

        processing_ms = int((time.perf_counter() - start_time) * 1000)
        job.status = status
        job.processed_at = datetime.now(timezone.utc)
        job.processing_ms = processing_ms
        job.summary = summary
        job.errors = errors
        self.tables.import_jobs.put_item(job)

        rows_ok = summary.rows_ok if summary else 0
        self.tables.import_logs.put_item(
            ImportLog(
                id=str(uuid4()),
                ts=job.processed_at,
                user_email=user_email,
                file_name=job.file_name,
                rows_ok=rows_ok,
                rows_err=len(errors),
            )
        )
        logger.info(
            "Import finished",
            extra={
                "file_id": file_id,
                "status": status.value,
                "processing_ms": processing_ms,
                "rows_ok": rows_ok,
                "rows_err": len(errors),
            },
        )


@lru_cache
def build_default_importer(workers: Optional[int] = None) -> ImportService:
    """Factory that wires the importer with the default store and tables."""
    settings = get_settings()
    return ImportService(
        store=build_default_store(),
        tables=build_default_tables(),
        readings=build_default_reading_service(),
        aggregator=Aggregator(),
        workers=workers or settings.import_workers,
        default_user_email=settings.default_user_email,
    )
