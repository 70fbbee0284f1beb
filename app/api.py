"""HTTP route definitions for the service."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Response,
    UploadFile,
    status,
)

from app.schemas import (
    Anomaly,
    AnomalyCorrection,
    AnomalyDetail,
    BulkAnomalyCorrection,
    EmissionFactor,
    EmissionFactorUpdate,
    ImportJob,
    ImportLog,
    ImportUploadResponse,
    PiTag,
    PiTagCreate,
    PiTagTestResult,
    Reading,
    ReadingCreate,
    ReadingUpdate,
    ThresholdCheckRequest,
    ThresholdCheckResponse,
    User,
    UserCreate,
)
from services.console import (
    AnomalyService,
    FactorService,
    PiTagService,
    ReadingService,
    UserService,
    build_default_anomaly_service,
    build_default_factor_service,
    build_default_pi_tag_service,
    build_default_reading_service,
    build_default_user_service,
)
from services.importer import ImportService, build_default_importer
from services.validation import AnomalyType

router = APIRouter()


def get_importer() -> ImportService:
    return build_default_importer()


def get_readings() -> ReadingService:
    return build_default_reading_service()


def get_anomalies() -> AnomalyService:
    return build_default_anomaly_service()


def get_factors() -> FactorService:
    return build_default_factor_service()


def get_users() -> UserService:
    return build_default_user_service()


def get_pi_tags() -> PiTagService:
    return build_default_pi_tag_service()


def _not_found(exc: KeyError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.args[0])


def _bad_request(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.post(
    "/readings",
    status_code=status.HTTP_201_CREATED,
    response_model=Reading,
    summary="Record a meter reading and classify it against the meter's history.",
)
async def create_reading(
    payload: ReadingCreate,
    readings: ReadingService = Depends(get_readings),
) -> Reading:
    reading, _ = readings.create(payload.meter_id, payload.ts, payload.value)
    return reading


@router.get("/readings", response_model=List[Reading], summary="List readings.")
async def list_readings(
    meter_id: Optional[str] = Query(None),
    readings: ReadingService = Depends(get_readings),
) -> List[Reading]:
    return readings.list(meter_id)


@router.post(
    "/readings/check",
    response_model=ThresholdCheckResponse,
    summary="Check a candidate value against the meter's history without storing it.",
)
async def check_reading(
    payload: ThresholdCheckRequest,
    readings: ReadingService = Depends(get_readings),
) -> ThresholdCheckResponse:
    return readings.check(payload.meter_id, payload.value, payload.ts)


@router.get("/readings/{reading_id}", response_model=Reading, summary="Fetch a reading.")
async def get_reading(
    reading_id: str,
    readings: ReadingService = Depends(get_readings),
) -> Reading:
    try:
        return readings.get(reading_id)
    except KeyError as exc:
        raise _not_found(exc) from exc


@router.patch("/readings/{reading_id}", response_model=Reading, summary="Update a reading.")
async def update_reading(
    reading_id: str,
    payload: ReadingUpdate,
    readings: ReadingService = Depends(get_readings),
) -> Reading:
    try:
        return readings.update(reading_id, value=payload.value, ts=payload.ts)
    except KeyError as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise _bad_request(exc) from exc


@router.post(
    "/imports",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ImportUploadResponse,
    summary="Upload a CSV file of readings for asynchronous import.",
)
async def upload_import(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(..., description="CSV file with meter_id, ts and value columns."),
    user_email: Optional[str] = Form(None),
    importer: ImportService = Depends(get_importer),
) -> ImportUploadResponse:
    try:
        file_id = importer.enqueue_file(background_tasks, file, user_email=user_email)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return ImportUploadResponse(file_id=file_id)


@router.get("/imports/logs", response_model=List[ImportLog], summary="List import logs.")
async def list_import_logs(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    importer: ImportService = Depends(get_importer),
) -> List[ImportLog]:
    return importer.list_logs(start, end)


@router.get(
    "/imports/{file_id}",
    response_model=ImportJob,
    summary="Fetch the status and summary of an import.",
)
async def get_import(
    file_id: str,
    importer: ImportService = Depends(get_importer),
) -> ImportJob:
    try:
        return importer.fetch_result(file_id)
    except KeyError as exc:
        raise _not_found(exc) from exc


@router.get(
    "/anomalies",
    response_model=List[AnomalyDetail],
    summary="List anomalies with their readings, newest first.",
)
async def list_anomalies(
    anomaly_type: Optional[AnomalyType] = Query(None, alias="type"),
    meter_id: Optional[str] = Query(None),
    anomalies: AnomalyService = Depends(get_anomalies),
) -> List[AnomalyDetail]:
    return anomalies.list_details(anomaly_type, meter_id)


@router.post(
    "/anomalies/corrections",
    response_model=List[Anomaly],
    summary="Apply one correction comment to several anomalies.",
)
async def bulk_correct_anomalies(
    payload: BulkAnomalyCorrection,
    anomalies: AnomalyService = Depends(get_anomalies),
) -> List[Anomaly]:
    try:
        return anomalies.bulk_correct(payload.anomaly_ids, payload.comment)
    except KeyError as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise _bad_request(exc) from exc


@router.post(
    "/anomalies/{anomaly_id}/correction",
    response_model=Anomaly,
    summary="Comment on an anomaly and optionally correct its reading.",
)
async def correct_anomaly(
    anomaly_id: str,
    payload: AnomalyCorrection,
    anomalies: AnomalyService = Depends(get_anomalies),
) -> Anomaly:
    try:
        return anomalies.correct(anomaly_id, payload.comment, value=payload.value)
    except KeyError as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise _bad_request(exc) from exc


@router.get("/factors", response_model=List[EmissionFactor], summary="List emission factors.")
async def list_factors(factors: FactorService = Depends(get_factors)) -> List[EmissionFactor]:
    return factors.list()


@router.patch(
    "/factors/{factor_id}",
    response_model=EmissionFactor,
    summary="Update an emission factor's value.",
)
async def update_factor(
    factor_id: str,
    payload: EmissionFactorUpdate,
    factors: FactorService = Depends(get_factors),
) -> EmissionFactor:
    try:
        return factors.update(factor_id, payload.value)
    except KeyError as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise _bad_request(exc) from exc


@router.get("/users", response_model=List[User], summary="List console users.")
async def list_users(users: UserService = Depends(get_users)) -> List[User]:
    return users.list()


@router.post(
    "/users",
    status_code=status.HTTP_201_CREATED,
    response_model=User,
    summary="Create a console user.",
)
async def create_user(
    payload: UserCreate,
    users: UserService = Depends(get_users),
) -> User:
    try:
        return users.create(payload.email, payload.role)
    except ValueError as exc:
        raise _bad_request(exc) from exc


@router.delete(
    "/users/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a console user.",
)
async def delete_user(user_id: str, users: UserService = Depends(get_users)) -> Response:
    try:
        users.delete(user_id)
    except KeyError as exc:
        raise _not_found(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/pi-tags", response_model=List[PiTag], summary="List registered PI tags.")
async def list_pi_tags(tags: PiTagService = Depends(get_pi_tags)) -> List[PiTag]:
    return tags.list()


@router.post(
    "/pi-tags",
    status_code=status.HTTP_201_CREATED,
    response_model=PiTag,
    summary="Register a PI tag.",
)
async def register_pi_tag(
    payload: PiTagCreate,
    tags: PiTagService = Depends(get_pi_tags),
) -> PiTag:
    try:
        return tags.register(payload)
    except ValueError as exc:
        raise _bad_request(exc) from exc


@router.get("/pi-tags/{name}", response_model=PiTag, summary="Preview a PI tag.")
async def preview_pi_tag(name: str, tags: PiTagService = Depends(get_pi_tags)) -> PiTag:
    try:
        return tags.preview(name)
    except KeyError as exc:
        raise _not_found(exc) from exc


@router.get(
    "/pi-tags/{name}/test",
    response_model=PiTagTestResult,
    summary="Test whether a PI tag is reachable.",
)
async def probe_pi_tag(name: str, tags: PiTagService = Depends(get_pi_tags)) -> PiTagTestResult:
    return PiTagTestResult(name=name, ok=tags.test_tag(name))


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
