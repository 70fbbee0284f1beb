"""Threshold checks and anomaly classification for meter readings.

Every function here is pure: no I/O, no shared state, and no exceptions for
numeric input. ``NaN`` flows through as ``NaN`` in arithmetic and makes every
comparison false, so callers are expected to parse and reject bad input first.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional, Sequence, Union

SPIKE_RATIO = 1.4
LOWER_THRESHOLD_RATIO = 0.85
UPPER_THRESHOLD_RATIO = 1.15
FLAT_WINDOW = timedelta(hours=48)
OUT_OF_THRESHOLD_MESSAGE = "Out-of-threshold value"

Timestamp = Union[str, datetime]


class AnomalyType(str, Enum):
    """Categories of anomalies recorded against a reading."""

    MISSING = "MISSING"
    SPIKE = "SPIKE"
    FLAT = "FLAT"


@dataclass(frozen=True)
class ThresholdResult:
    """Outcome of :func:`check_thresholds`.

    ``is_anomaly`` is only set for hard anomalies (missing values and spikes).
    A plain threshold violation keeps ``is_anomaly`` false but carries a delta
    and :data:`OUT_OF_THRESHOLD_MESSAGE`.
    """

    is_anomaly: bool
    type: Optional[AnomalyType] = None
    delta: Optional[float] = None
    message: Optional[str] = None


def parse_timestamp(value: Timestamp) -> datetime:
    """Return ``value`` as a timezone-aware UTC datetime.

    Accepts ISO-8601 strings (including a trailing ``Z``) and datetimes. Naive
    values are taken to be UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        candidate = value.strip()
        if not candidate:
            raise ValueError("Timestamp is empty.")

        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"

        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError as exc:
            raise ValueError("Invalid timestamp format") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)


def is_spike(value: float, historical_mean: float) -> bool:
    """True when ``value`` is at least 40% above the historical mean."""
    if historical_mean == 0:
        return False
    return value >= historical_mean * SPIKE_RATIO


def is_missing(value: Any) -> bool:
    return value is None


def is_out_of_threshold(value: float, historical_mean: float) -> bool:
    """True when ``value`` is strictly outside +/-15% of the historical mean.

    A zero mean is not special-cased here, unlike :func:`is_spike`: any
    non-zero value is out of threshold against a zero mean.
    """
    return (
        value < historical_mean * LOWER_THRESHOLD_RATIO
        or value > historical_mean * UPPER_THRESHOLD_RATIO
    )


def is_flat(readings: Sequence[float], timestamps: Sequence[Timestamp]) -> bool:
    """True when every reading is identical for at least 48 hours.

    ``readings`` and ``timestamps`` are parallel and ordered by time; only the
    first and last timestamps are compared.
    """
    if len(readings) < 2 or len(timestamps) < 2:
        return False

    first = readings[0]
    if any(reading != first for reading in readings[1:]):
        return False

    try:
        start = parse_timestamp(timestamps[0])
        end = parse_timestamp(timestamps[-1])
    except (TypeError, ValueError):
        return False

    return end - start >= FLAT_WINDOW


def get_percentage_difference(value: float, mean: float) -> float:
    if mean == 0:
        return 0.0
    return ((value - mean) / mean) * 100


def format_percentage(percentage: float) -> str:
    """Format a percentage with an explicit sign and one decimal, e.g. ``+20.5%``."""
    sign = "+" if percentage >= 0 else "-"
    return f"{sign}{abs(percentage):.1f}%"


def historical_mean(values: Sequence[float]) -> Optional[float]:
    """Plain arithmetic mean of the comparison window, ``None`` when empty."""
    if not values:
        return None
    return sum(values) / len(values)


def get_anomaly_type(
    value: Optional[float],
    mean: float,
    readings: Sequence[float],
    timestamps: Sequence[Timestamp],
) -> Optional[AnomalyType]:
    """Categorise a reading, checking MISSING, then SPIKE, then FLAT."""
    if is_missing(value):
        return AnomalyType.MISSING

    if mean > 0 and value >= mean * SPIKE_RATIO:
        return AnomalyType.SPIKE

    if is_flat(readings, timestamps):
        return AnomalyType.FLAT

    return None


def has_issue(
    value: Optional[float],
    mean: float,
    readings: Sequence[float],
    timestamps: Sequence[Timestamp],
) -> bool:
    """True when a reading needs attention, including plain threshold violations."""
    if is_missing(value):
        return True
    return (
        is_spike(value, mean)
        or is_out_of_threshold(value, mean)
        or is_flat(readings, timestamps)
    )


def check_thresholds(
    value: Optional[float], historical_values: Sequence[float]
) -> ThresholdResult:
    """Compare a reading against its history and decide how to flag it."""
    if is_missing(value):
        return ThresholdResult(is_anomaly=True, type=AnomalyType.MISSING)

    mean = historical_mean(historical_values)
    if mean is None:
        return ThresholdResult(is_anomaly=False)

    if is_spike(value, mean):
        return ThresholdResult(
            is_anomaly=True,
            type=AnomalyType.SPIKE,
            delta=get_percentage_difference(value, mean),
        )

    if is_out_of_threshold(value, mean):
        return ThresholdResult(
            is_anomaly=False,
            delta=get_percentage_difference(value, mean),
            message=OUT_OF_THRESHOLD_MESSAGE,
        )

    return ThresholdResult(is_anomaly=False)
