"""Services behind the console: readings, anomaly review and administration."""

from __future__ import annotations

import logging
from bisect import bisect_left, bisect_right
from contextlib import ExitStack
from datetime import datetime, timezone
from functools import lru_cache
from threading import Lock
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from app.schemas import (
    Anomaly,
    AnomalyDetail,
    EmissionFactor,
    PiTag,
    PiTagCreate,
    PiTagStatus,
    Reading,
    Role,
    ThresholdCheckResponse,
    User,
)
from datastore.tables import Tables, build_default_tables
from services.validation import (
    AnomalyType,
    Timestamp,
    check_thresholds,
    format_percentage,
    get_anomaly_type,
    get_percentage_difference,
    historical_mean,
    parse_timestamp,
)
from settings import get_settings

logger = logging.getLogger(__name__)

DEFAULT_EMISSION_FACTORS = (
    ("1", "Electricity - France", 0.0571),
    ("2", "Natural Gas", 0.2428),
    ("3", "Heating Oil", 0.3248),
    ("4", "District Heating", 0.1294),
    ("5", "Coal", 0.396),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReadingService:
    """Stores readings and classifies each one against its meter's history."""

    def __init__(self, tables: Tables, history_window: int = 10) -> None:
        self.tables = tables
        self.history_window = history_window
        self._meter_locks: Dict[str, Lock] = {}
        self._meter_locks_guard = Lock()

    def list(self, meter_id: Optional[str] = None) -> List[Reading]:
        readings = self.tables.readings.scan(
            None if meter_id is None else (lambda reading: reading.meter_id == meter_id)
        )
        return sorted(readings, key=lambda reading: reading.ts)

    def get(self, reading_id: str) -> Reading:
        reading = self.tables.readings.get_item(reading_id)
        if reading is None:
            raise KeyError(f"Reading {reading_id!r} not found.")
        return reading

    def history(
        self,
        meter_id: str,
        before: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Reading]:
        """Most recent readings of a meter strictly before ``before``, oldest first."""
        cutoff = parse_timestamp(before) if before is not None else None
        readings = [
            reading
            for reading in self.list(meter_id)
            if cutoff is None or reading.ts < cutoff
        ]
        window = self.history_window if limit is None else limit
        return readings[-window:] if window else []

    def create(
        self, meter_id: str, ts: datetime, value: Optional[float]
    ) -> Tuple[Reading, Optional[Anomaly]]:
        [created] = self.create_many([(meter_id, ts, value)])
        return created

    def create_many(
        self, rows: Iterable[Tuple[str, Timestamp, Optional[float]]]
    ) -> List[Tuple[Reading, Optional[Anomaly]]]:
        """Store a batch of readings, classifying each against its meter's history.

        Rows are classified in order, so later rows see earlier rows of the same
        batch. The meters involved stay locked from the history lookup until the
        batch is written, and each table is persisted once per batch.
        """
        pending = [(meter_id, parse_timestamp(ts), value) for meter_id, ts, value in rows]
        if not pending:
            return []

        meters = sorted({meter_id for meter_id, _, _ in pending})
        created: List[Tuple[Reading, Optional[Anomaly]]] = []
        with ExitStack() as stack:
            for meter_id in meters:
                stack.enter_context(self._lock_for(meter_id))

            timelines = self._measured_timelines(meters)
            for meter_id, timestamp, value in pending:
                reading = Reading(id=str(uuid4()), meter_id=meter_id, ts=timestamp, value=value)
                stamps, measured = timelines[meter_id]
                position = bisect_left(stamps, timestamp)
                window = measured[max(0, position - self.history_window):position]
                created.append((reading, self._classify(reading, window)))
                if value is not None:
                    slot = bisect_right(stamps, timestamp)
                    stamps.insert(slot, timestamp)
                    measured.insert(slot, reading)

            self.tables.readings.put_items(reading for reading, _ in created)
            self.tables.anomalies.put_items(
                anomaly for _, anomaly in created if anomaly is not None
            )

        for reading, anomaly in created:
            if anomaly is None:
                continue
            logger.info(
                "Anomaly detected",
                extra={
                    "reading_id": reading.id,
                    "meter_id": reading.meter_id,
                    "anomaly_type": anomaly.type.value,
                    "delta": anomaly.delta,
                },
            )
        return created

    def update(
        self,
        reading_id: str,
        value: Optional[float] = None,
        ts: Optional[datetime] = None,
    ) -> Reading:
        reading = self.get(reading_id)
        if value is not None:
            if value < 0:
                raise ValueError("Reading value must not be negative.")
            reading.value = value
        if ts is not None:
            reading.ts = parse_timestamp(ts)
        self.tables.readings.put_item(reading)
        return reading

    def check(
        self, meter_id: str, value: Optional[float], ts: Optional[datetime] = None
    ) -> ThresholdCheckResponse:
        """Run the threshold check for a candidate value without storing it."""
        cutoff = parse_timestamp(ts) if ts is not None else None
        measured = [
            reading.value
            for reading in self.list(meter_id)
            if reading.value is not None and (cutoff is None or reading.ts < cutoff)
        ]
        window = measured[-self.history_window:] if self.history_window else []
        result = check_thresholds(value, window)
        return ThresholdCheckResponse(
            is_anomaly=result.is_anomaly,
            type=result.type,
            delta=result.delta,
            formatted_delta=None if result.delta is None else format_percentage(result.delta),
            message=result.message,
            history_size=len(window),
        )

    def _lock_for(self, meter_id: str) -> Lock:
        with self._meter_locks_guard:
            return self._meter_locks.setdefault(meter_id, Lock())

    def _measured_timelines(
        self, meters: List[str]
    ) -> Dict[str, Tuple[List[datetime], List[Reading]]]:
        """Readings with a value for each meter, in time order, with their timestamps."""
        wanted = set(meters)
        timelines: Dict[str, Tuple[List[datetime], List[Reading]]] = {
            meter_id: ([], []) for meter_id in meters
        }
        found = self.tables.readings.scan(
            lambda reading: reading.meter_id in wanted and reading.value is not None
        )
        for reading in sorted(found, key=lambda reading: reading.ts):
            stamps, measured = timelines[reading.meter_id]
            stamps.append(reading.ts)
            measured.append(reading)
        return timelines

    def _classify(self, reading: Reading, window: List[Reading]) -> Optional[Anomaly]:
        values = [item.value for item in window]
        mean = historical_mean(values) or 0.0

        flat_values = list(values)
        flat_timestamps: List[datetime] = [item.ts for item in window]
        if reading.value is not None:
            flat_values.append(reading.value)
            flat_timestamps.append(reading.ts)

        kind = get_anomaly_type(reading.value, mean, flat_values, flat_timestamps)
        if kind is None:
            return None

        if kind is AnomalyType.SPIKE:
            delta: Optional[float] = get_percentage_difference(reading.value, mean)
        elif kind is AnomalyType.FLAT:
            delta = 0.0
        else:
            delta = None

        return Anomaly(
            id=str(uuid4()),
            reading_id=reading.id,
            type=kind,
            delta=delta,
            created_at=_utcnow(),
        )


class AnomalyService:
    """Review queue for detected anomalies and their corrections."""

    def __init__(self, tables: Tables, readings: ReadingService) -> None:
        self.tables = tables
        self.readings = readings

    def get(self, anomaly_id: str) -> Anomaly:
        anomaly = self.tables.anomalies.get_item(anomaly_id)
        if anomaly is None:
            raise KeyError(f"Anomaly {anomaly_id!r} not found.")
        return anomaly

    def list_details(
        self,
        anomaly_type: Optional[AnomalyType] = None,
        meter_id: Optional[str] = None,
    ) -> List[AnomalyDetail]:
        details: List[AnomalyDetail] = []
        for anomaly in self.tables.anomalies.scan():
            if anomaly_type is not None and anomaly.type != anomaly_type:
                continue
            reading = self.tables.readings.get_item(anomaly.reading_id)
            if reading is None:
                continue
            if meter_id is not None and reading.meter_id != meter_id:
                continue
            details.append(
                AnomalyDetail(
                    id=anomaly.id,
                    reading_id=reading.id,
                    meter_id=reading.meter_id,
                    ts=reading.ts,
                    value=reading.value,
                    type=anomaly.type,
                    delta=anomaly.delta,
                    comment=anomaly.comment,
                    corrected_at=anomaly.corrected_at,
                )
            )
        return sorted(details, key=lambda detail: detail.ts, reverse=True)

    def correct(
        self, anomaly_id: str, comment: str, value: Optional[float] = None
    ) -> Anomaly:
        """Attach a correction comment and optionally fix the reading's value."""
        text = (comment or "").strip()
        if not text:
            raise ValueError("A correction comment is required.")

        anomaly = self.get(anomaly_id)
        if value is not None:
            self.readings.update(anomaly.reading_id, value=value)

        anomaly.comment = text
        anomaly.corrected_at = _utcnow()
        self.tables.anomalies.put_item(anomaly)
        logger.info(
            "Anomaly corrected",
            extra={"anomaly_id": anomaly.id, "reading_id": anomaly.reading_id},
        )
        return anomaly

    def bulk_correct(self, anomaly_ids: Iterable[str], comment: str) -> List[Anomaly]:
        ids = list(anomaly_ids)
        for anomaly_id in ids:
            self.get(anomaly_id)
        return [self.correct(anomaly_id, comment) for anomaly_id in ids]


class FactorService:
    def __init__(self, tables: Tables) -> None:
        self.tables = tables
        if not len(tables.emission_factors):
            for factor_id, name, value in DEFAULT_EMISSION_FACTORS:
                tables.emission_factors.put_item(
                    EmissionFactor(id=factor_id, name=name, value=value)
                )

    def list(self) -> List[EmissionFactor]:
        return sorted(self.tables.emission_factors.scan(), key=lambda factor: factor.id)

    def update(self, factor_id: str, value: float) -> EmissionFactor:
        if not value > 0:
            raise ValueError("Emission factor must be greater than zero.")
        factor = self.tables.emission_factors.get_item(factor_id)
        if factor is None:
            raise KeyError(f"Emission factor {factor_id!r} not found.")
        factor.value = value
        self.tables.emission_factors.put_item(factor)
        return factor


class UserService:
    def __init__(self, tables: Tables) -> None:
        self.tables = tables

    def list(self) -> List[User]:
        return sorted(self.tables.users.scan(), key=lambda user: user.email)

    def create(self, email: str, role: Role) -> User:
        normalized = email.strip().lower()
        if self.tables.users.scan(lambda user: user.email == normalized):
            raise ValueError(f"User {normalized!r} already exists.")
        user = User(id=str(uuid4()), email=normalized, role=role)
        self.tables.users.put_item(user)
        return user

    def delete(self, user_id: str) -> None:
        if not self.tables.users.delete_item(user_id):
            raise KeyError(f"User {user_id!r} not found.")


class PiTagService:
    """Registry of PI tags available for preview and connectivity tests."""

    def __init__(self, tables: Tables) -> None:
        self.tables = tables

    def list(self) -> List[PiTag]:
        return sorted(self.tables.pi_tags.scan(), key=lambda tag: tag.name)

    def register(self, payload: PiTagCreate) -> PiTag:
        if self.tables.pi_tags.get_item(payload.name) is not None:
            raise ValueError(f"PI tag {payload.name!r} already exists.")
        tag = PiTag(id=str(uuid4()), **payload.model_dump())
        self.tables.pi_tags.put_item(tag)
        return tag

    def preview(self, name: str) -> PiTag:
        tag = self.tables.pi_tags.get_item(name)
        if tag is None:
            raise KeyError(f"PI tag {name!r} not found.")
        return tag

    def test_tag(self, name: str) -> bool:
        tag = self.tables.pi_tags.get_item(name)
        return tag is not None and tag.status is PiTagStatus.ok


@lru_cache
def build_default_reading_service() -> ReadingService:
    return ReadingService(
        tables=build_default_tables(), history_window=get_settings().history_window
    )


@lru_cache
def build_default_anomaly_service() -> AnomalyService:
    return AnomalyService(tables=build_default_tables(), readings=build_default_reading_service())


@lru_cache
def build_default_factor_service() -> FactorService:
    return FactorService(tables=build_default_tables())


@lru_cache
def build_default_user_service() -> UserService:
    return UserService(tables=build_default_tables())


@lru_cache
def build_default_pi_tag_service() -> PiTagService:
    return PiTagService(tables=build_default_tables())
