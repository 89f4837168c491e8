"""FastAPI application for campus event management with duplicate detection."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..dedup import DetectorConfig, DuplicateDetectionService, DuplicateGate
from ..errors import InvalidCandidate
from ..events.models import EventCategory, EventStatus, parse_timestamp
from ..storage.event_store import PgEventStore

logger = structlog.get_logger()

# Global instances
store: PgEventStore | None = None
detection_service: DuplicateDetectionService | None = None
duplicate_gate: DuplicateGate | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    global store, detection_service, duplicate_gate

    logger.info("starting_application")

    store = PgEventStore()
    await store.connect()
    await store.initialize_schema()

    detection_service = DuplicateDetectionService(store=store, config=DetectorConfig.from_env())
    duplicate_gate = DuplicateGate(detection_service)

    yield

    await store.close()
    logger.info("application_shutdown")


app = FastAPI(
    title="Campus Events API",
    description="Event management with duplicate event detection",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Validation failed",
            "errors": [
                {"field": ".".join(str(p) for p in err["loc"][1:]), "message": err["msg"]}
                for err in exc.errors()
            ],
        },
    )


# Request models

class CoordinatesIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class AddressIn(BaseModel):
    street: str | None = None
    city: str | None = None
    state: str | None = None
    zipCode: str | None = None
    country: str | None = None


class VenueIn(BaseModel):
    """Venue of an event."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=2, max_length=100)
    address: AddressIn | None = None
    coordinates: CoordinatesIn | None = None
    capacity: int | None = Field(default=None, ge=1)
    isOnline: bool | None = None


class DateTimeIn(BaseModel):
    start: datetime
    end: datetime | None = None


class DuplicateCheckRequest(BaseModel):
    """Draft event submitted for an advisory duplicate check."""
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    title: str = Field(..., min_length=5, max_length=100)
    description: str = Field(..., min_length=20, max_length=2000)
    category: EventCategory
    venue: VenueIn
    date_time: DateTimeIn = Field(..., alias="dateTime")
    exclude_event_id: str | None = Field(default=None, alias="excludeEventId")


class EventCreateRequest(BaseModel):
    """New event."""
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    title: str = Field(..., min_length=5, max_length=100)
    description: str = Field(..., min_length=20, max_length=2000)
    category: EventCategory
    venue: VenueIn
    date_time: DateTimeIn = Field(..., alias="dateTime")
    tags: list[str] = Field(default_factory=list)
    skip_duplicate_check: bool = Field(default=False, alias="skipDuplicateCheck")


class EventUpdateRequest(BaseModel):
    """Partial update of an event."""
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    title: str | None = Field(default=None, min_length=5, max_length=100)
    description: str | None = Field(default=None, min_length=20, max_length=2000)
    category: EventCategory | None = None
    venue: VenueIn | None = None
    date_time: DateTimeIn | None = Field(default=None, alias="dateTime")
    tags: list[str] | None = None
    skip_duplicate_check: bool = Field(default=False, alias="skipDuplicateCheck")


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str


_CONTROL_FIELDS = {"skipDuplicateCheck", "excludeEventId"}


def _event_fields(body: BaseModel, exclude_unset: bool = False) -> dict[str, Any]:
    """Event fields of a request as a JSON-shaped record."""
    data = body.model_dump(
        mode="json", by_alias=True, exclude_none=True, exclude_unset=exclude_unset
    )
    return {k: v for k, v in data.items() if k not in _CONTROL_FIELDS}


def _validate_schedule(start: datetime, end: datetime | None):
    now = datetime.now(timezone.utc)
    if start <= now:
        raise HTTPException(status_code=400, detail="Event start date must be in the future")
    if end is not None and end <= start:
        raise HTTPException(status_code=400, detail="Event end date must be after start date")


# Endpoints

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@app.post("/events/check-duplicates")
async def check_duplicates(
    request: DuplicateCheckRequest,
    user_id: str = Header(..., alias="X-User-Id"),
):
    """Advisory duplicate check before an organizer confirms a new event."""
    record = {**_event_fields(request), "organizer": user_id}

    try:
        report = await duplicate_gate.advisory_check(
            record, exclude_event_id=request.exclude_event_id
        )
    except InvalidCandidate as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    logger.info(
        "duplicate_check_performed",
        user_id=user_id,
        event_title=request.title,
        duplicates_found=len(report.result.duplicates),
        suggestions_found=len(report.result.suggestions),
        degraded=report.degraded,
    )

    return {"success": True, **report.to_dict(detection_service)}


@app.post("/events", status_code=201)
async def create_event(
    request: EventCreateRequest,
    user_id: str = Header(..., alias="X-User-Id"),
):
    """Create an event unless it is a very-high-confidence duplicate."""
    _validate_schedule(
        parse_timestamp(request.date_time.start),
        parse_timestamp(request.date_time.end) if request.date_time.end else None,
    )

    record = {**_event_fields(request), "organizer": user_id}

    try:
        decision = await duplicate_gate.check_create(
            record, skip_duplicate_check=request.skip_duplicate_check
        )
    except InvalidCandidate as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    if decision.blocked:
        return JSONResponse(
            status_code=409,
            content={"success": False, **decision.to_dict(detection_service)},
        )

    record["status"] = EventStatus.DRAFT.value
    try:
        event = await store.insert_event(record)
    except Exception as e:
        logger.error("create_event_failed", user_id=user_id, error=str(e))
        raise HTTPException(status_code=500, detail="Server error creating event") from e

    logger.info(
        "event_created",
        event_id=event["_id"],
        title=event["title"],
        organizer_id=user_id,
        category=event["category"],
        duplicate_check_skipped=request.skip_duplicate_check,
    )

    return {
        "success": True,
        "message": "Event created successfully",
        "event": event,
        "duplicateWarnings": len(decision.warnings),
    }


@app.put("/events/{event_id}")
async def update_event(
    event_id: str,
    request: EventUpdateRequest,
    user_id: str = Header(..., alias="X-User-Id"),
):
    """Update an event, re-checking duplicates when scoring fields change."""
    existing = await store.get_event(event_id)
    if existing is None:
        raise HTTPException(status_code=404, detail="Event not found")

    if existing.get("status") in (EventStatus.COMPLETED.value, EventStatus.CANCELLED.value):
        raise HTTPException(
            status_code=400, detail="Cannot update completed or cancelled events"
        )

    if request.date_time is not None:
        current_dates = existing.get("dateTime") or {}
        start = request.date_time.start or current_dates.get("start")
        end = request.date_time.end or current_dates.get("end")
        _validate_schedule(
            parse_timestamp(start),
            parse_timestamp(end) if end else None,
        )

    changes = _event_fields(request, exclude_unset=True)

    try:
        decision = await duplicate_gate.check_update(
            existing, changes, skip_duplicate_check=request.skip_duplicate_check
        )
    except InvalidCandidate as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    if decision.blocked:
        return JSONResponse(
            status_code=409,
            content={"success": False, **decision.to_dict(detection_service)},
        )

    event = await store.update_event(event_id, changes)

    logger.info("event_updated", event_id=event_id, user_id=user_id, fields=sorted(changes))

    return {
        "success": True,
        "message": "Event updated successfully",
        "event": event,
    }
