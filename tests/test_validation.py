"""Unit tests for the threshold and anomaly classification rules."""

from __future__ import annotations

import math
from datetime import datetime, timezone

import pytest

from services.validation import (
    OUT_OF_THRESHOLD_MESSAGE,
    AnomalyType,
    ThresholdResult,
    check_thresholds,
    format_percentage,
    get_anomaly_type,
    get_percentage_difference,
    has_issue,
    historical_mean,
    is_flat,
    is_missing,
    is_out_of_threshold,
    is_spike,
    parse_timestamp,
)

FLAT_READINGS = [100, 100, 100]
FLAT_TIMESTAMPS = [
    "2025-05-10T00:00:00Z",
    "2025-05-11T12:00:00Z",
    "2025-05-12T13:00:00Z",
]
NORMAL_READINGS = [100, 105, 102]
NORMAL_TIMESTAMPS = [
    "2025-05-10T00:00:00Z",
    "2025-05-10T12:00:00Z",
    "2025-05-11T00:00:00Z",
]


def test_is_spike_boundary_is_inclusive() -> None:
    assert is_spike(140, 100) is True
    assert is_spike(100 * 1.4, 100) is True
    assert is_spike(139, 100) is False
    assert is_spike(139.99, 100) is False
    assert is_spike(50, 100) is False


def test_is_spike_ignores_zero_mean() -> None:
    assert is_spike(0, 0) is False
    assert is_spike(10, 0) is False


def test_is_missing_only_for_none() -> None:
    assert is_missing(None) is True
    assert is_missing(0) is False
    assert is_missing("") is False
    assert is_missing(math.nan) is False


def test_is_out_of_threshold_is_strict() -> None:
    assert is_out_of_threshold(84, 100) is True
    assert is_out_of_threshold(116, 100) is True

    assert is_out_of_threshold(100, 100) is False
    assert is_out_of_threshold(110, 100) is False
    assert is_out_of_threshold(90, 100) is False
    assert is_out_of_threshold(100 * 0.85, 100) is False
    assert is_out_of_threshold(100 * 1.15, 100) is False


def test_zero_mean_is_guarded_for_spikes_but_not_thresholds() -> None:
    assert is_spike(5, 0) is False
    assert is_out_of_threshold(5, 0) is True
    assert is_out_of_threshold(0, 0) is False

    result = check_thresholds(5, [0, 0])
    assert result == ThresholdResult(
        is_anomaly=False, delta=0.0, message=OUT_OF_THRESHOLD_MESSAGE
    )


def test_is_flat_requires_identical_values_for_48_hours() -> None:
    timestamps = [
        "2025-05-10T00:00:00Z",
        "2025-05-11T00:00:00Z",
        "2025-05-12T00:00:00Z",
    ]
    assert is_flat([100, 100, 100], timestamps) is True

    short = [
        "2025-05-10T00:00:00Z",
        "2025-05-10T12:00:00Z",
        "2025-05-11T00:00:00Z",
    ]
    assert is_flat([100, 100, 100], short) is False
    assert is_flat([100, 101, 100], timestamps) is False


def test_is_flat_edge_cases() -> None:
    assert is_flat([], []) is False
    assert is_flat([100], ["2025-05-10T00:00:00Z"]) is False
    assert is_flat([100, 100], ["not-a-date", "2025-05-12T00:00:00Z"]) is False

    start = datetime(2025, 5, 10, tzinfo=timezone.utc)
    end = datetime(2025, 5, 12, 0, 0, 1, tzinfo=timezone.utc)
    assert is_flat([7.5, 7.5], [start, end]) is True


def test_get_percentage_difference() -> None:
    assert get_percentage_difference(120, 100) == pytest.approx(20)
    assert get_percentage_difference(80, 100) == pytest.approx(-20)
    assert get_percentage_difference(0, 0) == 0
    assert get_percentage_difference(50, 0) == 0


@pytest.mark.parametrize(
    ("percentage", "expected"),
    [
        (20.5, "+20.5%"),
        (-15.3, "-15.3%"),
        (0, "+0.0%"),
        (-0.0, "+0.0%"),
        (42.857, "+42.9%"),
    ],
)
def test_format_percentage(percentage: float, expected: str) -> None:
    assert format_percentage(percentage) == expected


def test_historical_mean() -> None:
    assert historical_mean([]) is None
    assert historical_mean([100, 110, 90]) == pytest.approx(100)


def test_get_anomaly_type_priority() -> None:
    assert get_anomaly_type(None, 100, [], []) is AnomalyType.MISSING
    assert get_anomaly_type(150, 100, [], []) is AnomalyType.SPIKE
    assert get_anomaly_type(100, 100, FLAT_READINGS, FLAT_TIMESTAMPS) is AnomalyType.FLAT
    assert get_anomaly_type(105, 100, NORMAL_READINGS, NORMAL_TIMESTAMPS) is None

    assert get_anomaly_type(None, 100, FLAT_READINGS, FLAT_TIMESTAMPS) is AnomalyType.MISSING
    assert get_anomaly_type(150, 100, FLAT_READINGS, FLAT_TIMESTAMPS) is AnomalyType.SPIKE


def test_get_anomaly_type_ignores_plain_threshold_violations() -> None:
    assert get_anomaly_type(116, 100, [], []) is None
    assert get_anomaly_type(0, 0, [], []) is None


def test_has_issue() -> None:
    assert has_issue(None, 100, [], []) is True
    assert has_issue(150, 100, [], []) is True
    assert has_issue(116, 100, [], []) is True
    assert has_issue(84, 100, [], []) is True
    assert has_issue(100, 100, FLAT_READINGS, FLAT_TIMESTAMPS) is True
    assert has_issue(105, 100, NORMAL_READINGS, NORMAL_TIMESTAMPS) is False


def test_check_thresholds_missing_value() -> None:
    result = check_thresholds(None, [100, 110, 90])

    assert result.is_anomaly is True
    assert result.type is AnomalyType.MISSING
    assert result.delta is None


def test_check_thresholds_spike() -> None:
    result = check_thresholds(150, [100, 105, 110])

    assert result.is_anomaly is True
    assert result.type is AnomalyType.SPIKE
    assert result.delta > 40


def test_check_thresholds_out_of_threshold_is_not_an_anomaly() -> None:
    result = check_thresholds(116, [100, 105, 95])

    assert result.is_anomaly is False
    assert result.type is None
    assert result.delta > 0
    assert result.message == OUT_OF_THRESHOLD_MESSAGE == "Out-of-threshold value"


def test_check_thresholds_within_threshold() -> None:
    result = check_thresholds(105, [100, 110, 95])

    assert result == ThresholdResult(is_anomaly=False, type=None, delta=None, message=None)


def test_check_thresholds_without_history() -> None:
    result = check_thresholds(100, [])

    assert result.is_anomaly is False
    assert result.type is None
    assert result.delta is None


def test_check_thresholds_is_idempotent() -> None:
    history = [100, 105, 110]

    assert check_thresholds(150, history) == check_thresholds(150, history)
    assert history == [100, 105, 110]


def test_nan_input_never_raises_and_is_not_flagged() -> None:
    nan = math.nan

    assert is_spike(nan, 100) is False
    assert is_out_of_threshold(nan, 100) is False
    assert math.isnan(get_percentage_difference(nan, 100))
    assert is_flat([nan, nan], ["2025-05-10T00:00:00Z", "2025-05-13T00:00:00Z"]) is False
    assert check_thresholds(nan, [100, 100]) == ThresholdResult(is_anomaly=False)
    assert check_thresholds(100, [nan]) == ThresholdResult(is_anomaly=False)


def test_parse_timestamp_normalises_to_utc() -> None:
    expected = datetime(2024, 1, 1, tzinfo=timezone.utc)

    assert parse_timestamp("2024-01-01T00:00:00Z") == expected
    assert parse_timestamp("2024-01-01T01:00:00+01:00") == expected
    assert parse_timestamp("2024-01-01T00:00:00") == expected
    assert parse_timestamp(datetime(2024, 1, 1)) == expected

    with pytest.raises(ValueError):
        parse_timestamp("yesterday")
    with pytest.raises(ValueError):
        parse_timestamp("  ")
