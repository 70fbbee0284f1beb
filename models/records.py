"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(slots=True)
class MeterReading:
    """A single meter reading parsed from a CSV row or a manual entry."""

    meter_id: str
    timestamp: datetime
    value: Optional[float]
