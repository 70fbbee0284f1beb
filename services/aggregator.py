"""Aggregation logic for imported meter readings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable

from models.records import MeterReading


@dataclass
class AggregationSummary:
    """Computed statistics for a batch of meter readings."""

    row_count: int = 0
    min_value: float | None = None
    max_value: float | None = None
    mean_value: float | None = None
    per_meter_count: Dict[str, int] = field(default_factory=dict)


class Aggregator:
    """Pure aggregation component that can be unit tested in isolation.

    Missing readings are counted per meter but left out of the statistics.
    """

    def aggregate(self, readings: Iterable[MeterReading]) -> AggregationSummary:
        summary = AggregationSummary()
        total = 0.0
        measured = 0

        for reading in readings:
            summary.row_count += 1
            summary.per_meter_count[reading.meter_id] = (
                summary.per_meter_count.get(reading.meter_id, 0) + 1
            )

            value = reading.value
            if value is None:
                continue
            measured += 1
            total += value

            if summary.min_value is None or value < summary.min_value:
                summary.min_value = value
            if summary.max_value is None or value > summary.max_value:
                summary.max_value = value

        if measured:
            summary.mean_value = total / measured

        return summary
