"""Pydantic schemas for the HTTP API layer and the record tables."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from services.validation import AnomalyType


class ImportStatus(str, Enum):
    """Import job lifecycle states exposed via the API."""

    uploaded = "uploaded"
    processing = "processing"
    processed = "processed"
    partial = "partial"
    failed = "failed"


class Role(str, Enum):
    operator = "Operator"
    data_manager = "DataManager"
    manager = "Manager"
    admin = "Admin"


class PiTagStatus(str, Enum):
    ok = "OK"
    ko = "KO"


class Reading(BaseModel):
    """A stored meter reading. ``value`` is ``None`` for a missing reading."""

    id: str
    meter_id: str
    ts: datetime
    value: Optional[float] = None


class ReadingCreate(BaseModel):
    meter_id: str = Field(..., min_length=1)
    ts: datetime
    value: Optional[float] = Field(default=None, ge=0)


class ReadingUpdate(BaseModel):
    ts: Optional[datetime] = None
    value: Optional[float] = Field(default=None, ge=0)


class ThresholdCheckRequest(BaseModel):
    """Check a candidate value against a meter's stored history."""

    meter_id: str = Field(..., min_length=1)
    value: Optional[float] = None
    ts: Optional[datetime] = Field(
        default=None, description="Only history before this instant is compared."
    )


class ThresholdCheckResponse(BaseModel):
    is_anomaly: bool
    type: Optional[AnomalyType] = None
    delta: Optional[float] = None
    formatted_delta: Optional[str] = None
    message: Optional[str] = None
    history_size: int = Field(0, ge=0)


class Anomaly(BaseModel):
    id: str
    reading_id: str
    type: AnomalyType
    delta: Optional[float] = None
    comment: Optional[str] = None
    created_at: datetime
    corrected_at: Optional[datetime] = None


class AnomalyDetail(BaseModel):
    """An anomaly joined with the reading it was raised against."""

    id: str
    reading_id: str
    meter_id: str
    ts: datetime
    value: Optional[float] = None
    type: AnomalyType
    delta: Optional[float] = None
    comment: Optional[str] = None
    corrected_at: Optional[datetime] = None


class AnomalyCorrection(BaseModel):
    comment: str = Field(..., min_length=1)
    value: Optional[float] = Field(
        default=None, ge=0, description="Corrected reading value, if any."
    )


class BulkAnomalyCorrection(BaseModel):
    anomaly_ids: List[str] = Field(..., min_length=1)
    comment: str = Field(..., min_length=1)


class ImportUploadResponse(BaseModel):
    """Immediate response payload after accepting a CSV upload."""

    file_id: str = Field(..., description="Generated identifier for the uploaded file.")


class ImportSummary(BaseModel):
    """Counts and statistics for the readings accepted by an import."""

    rows_ok: int = Field(..., ge=0)
    rows_err: int = Field(0, ge=0)
    anomaly_count: int = Field(0, ge=0)
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    mean_value: Optional[float] = None
    per_meter_count: Dict[str, int] = Field(default_factory=dict)


class ImportRowError(BaseModel):
    """Details about a row that failed validation or parsing."""

    row_number: int = Field(..., ge=1)
    reason: str


class ImportJob(BaseModel):
    """Full record representing an uploaded CSV and its processing outcome."""

    file_id: str
    file_name: str
    status: ImportStatus
    uploaded_at: datetime
    processed_at: Optional[datetime] = None
    processing_ms: Optional[int] = Field(
        default=None, description="Duration in milliseconds from start to finish."
    )
    summary: Optional[ImportSummary] = None
    errors: List[ImportRowError] = Field(default_factory=list)


class ImportLog(BaseModel):
    id: str
    ts: datetime
    user_email: str
    file_name: str
    rows_ok: int = Field(..., ge=0)
    rows_err: int = Field(..., ge=0)


class EmissionFactor(BaseModel):
    id: str
    name: str
    value: float = Field(..., gt=0)
    unit: str = "kgCO2e/kWh"


class EmissionFactorUpdate(BaseModel):
    value: float = Field(..., gt=0)


class User(BaseModel):
    id: str
    email: str
    role: Role


class UserCreate(BaseModel):
    email: str = Field(..., min_length=3)
    role: Role = Role.operator

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        candidate = value.strip().lower()
        local, _, domain = candidate.partition("@")
        if not local or not domain:
            raise ValueError("email must contain a local part and a domain")
        return candidate


class PiTag(BaseModel):
    id: str
    name: str
    description: str = ""
    site_id: Optional[str] = None
    status: PiTagStatus = PiTagStatus.ok
    value: Optional[float] = None
    unit: Optional[str] = None
    timestamp: Optional[datetime] = None


class PiTagCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    site_id: Optional[str] = None
    status: PiTagStatus = PiTagStatus.ok
    value: Optional[float] = None
    unit: Optional[str] = None
    timestamp: Optional[datetime] = None


class PiTagTestResult(BaseModel):
    name: str
    ok: bool
