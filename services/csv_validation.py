"""Structural and field-level checks for imported CSV rows."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence


@dataclass(frozen=True)
class FieldCheck:
    is_valid: bool
    message: str = ""


@dataclass(frozen=True)
class CsvStructureCheck:
    is_valid: bool
    missing_columns: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RowError:
    """A validation failure; ``row`` is 1-based over the data rows."""

    row: int
    field: str
    message: str


@dataclass
class CsvValidationReport:
    valid_rows: List[Mapping[str, Any]] = field(default_factory=list)
    invalid_rows: List[Mapping[str, Any]] = field(default_factory=list)
    errors: List[RowError] = field(default_factory=list)


FieldRule = Callable[[str], FieldCheck]


def _is_blank(value: Any) -> bool:
    return value is None or not str(value).strip()


def validate_csv_row(row: Mapping[str, Any], required_fields: Iterable[str]) -> bool:
    """True when every required field is present with a non-blank value."""
    return all(
        name in row and not _is_blank(row[name]) for name in required_fields
    )


def missing_fields(row: Mapping[str, Any], required_fields: Iterable[str]) -> List[str]:
    return [name for name in required_fields if _is_blank(row.get(name))]


def validate_csv_structure(
    headers: Sequence[str], required_columns: Iterable[str]
) -> CsvStructureCheck:
    present = set(headers)
    missing = [column for column in required_columns if column not in present]
    return CsvStructureCheck(is_valid=not missing, missing_columns=missing)


NOT_A_NUMBER_MESSAGE = "Value must be a number"


def validate_numeric(
    value: str,
    minimum: Optional[float] = None,
    maximum: Optional[float] = None,
) -> FieldCheck:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return FieldCheck(False, NOT_A_NUMBER_MESSAGE)

    if number != number:
        return FieldCheck(False, NOT_A_NUMBER_MESSAGE)
    if minimum is not None and number < minimum:
        return FieldCheck(False, f"Value must be at least {minimum:g}")
    if maximum is not None and number > maximum:
        return FieldCheck(False, f"Value must be no more than {maximum:g}")
    return FieldCheck(True)


def validate_date(value: str, fmt: str = "YYYY-MM-DD") -> FieldCheck:
    candidate = (value or "").strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        datetime.fromisoformat(candidate)
    except ValueError:
        return FieldCheck(False, f"Invalid date format. Expected: {fmt}")
    return FieldCheck(True)


def validate_csv_data(
    rows: Iterable[Mapping[str, Any]],
    required_fields: Sequence[str],
    rules: Optional[Dict[str, FieldRule]] = None,
) -> CsvValidationReport:
    """Split rows into valid and invalid ones, collecting per-row errors.

    Rows missing a required field get a single error naming every missing
    field. Extra ``rules`` only run on structurally valid rows, and only for
    fields that carry a value.
    """
    report = CsvValidationReport()

    for index, row in enumerate(rows, start=1):
        row_valid = validate_csv_row(row, required_fields)

        if not row_valid:
            missing = missing_fields(row, required_fields)
            report.errors.append(
                RowError(
                    row=index,
                    field=", ".join(missing),
                    message=f"Missing required field(s): {', '.join(missing)}",
                )
            )
        elif rules:
            for name, rule in rules.items():
                raw = row.get(name)
                if _is_blank(raw):
                    continue
                check = rule(str(raw))
                if not check.is_valid:
                    row_valid = False
                    report.errors.append(
                        RowError(row=index, field=name, message=check.message)
                    )

        if row_valid:
            report.valid_rows.append(row)
        else:
            report.invalid_rows.append(row)

    return report
