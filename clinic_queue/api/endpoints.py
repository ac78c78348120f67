"""API endpoints for the clinic queue service."""

from datetime import UTC, datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from clinic_queue import __version__
from clinic_queue.errors import QueueError
from clinic_queue.models.patient import PatientCreate, PatientUpdate
from clinic_queue.models.responses import (
    HealthResponse,
    PatientListResponse,
    PatientOut,
    PatientResponse,
    QueueStatsOut,
    RegistryStatsOut,
    SuccessResponse,
    VisitListResponse,
    VisitOut,
    VisitResponse,
)
from clinic_queue.models.session import AdminSession
from clinic_queue.models.visit import VisitAdvance, VisitCreate, VisitUpdate
from clinic_queue.services.export import export_patients, export_visits
from clinic_queue.services.queue import QueueEngine, get_queue_engine
from clinic_queue.services.session_manager import InMemorySessionManager, get_session_manager
from clinic_queue.utils.logging import get_logger

logger = get_logger(__name__)

ERROR_STATUS = {
    "not_found": 404,
    "patient_not_found": 404,
    "duplicate_phone": 409,
    "invalid_transition": 409,
    "queue_number_conflict": 409,
    "validation_error": 422,
}


async def queue_error_handler(request: Request, exc: QueueError) -> JSONResponse:
    """Translate engine failures into JSON error responses."""
    status_code = ERROR_STATUS.get(exc.code, 400)
    logger.info(f"{request.method} {request.url.path} failed with {exc.code}: {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})


async def require_admin(
    x_session_id: Annotated[str | None, Header()] = None,
    session: Annotated[str | None, Cookie()] = None,
    sessions: InMemorySessionManager = Depends(get_session_manager),
) -> AdminSession:
    """Resolve the caller's admin session from the header or the session cookie."""
    session_id = x_session_id or session
    if not session_id:
        raise HTTPException(status_code=401, detail="Not authorized")

    admin_session = sessions.get_session(session_id)
    if admin_session is None:
        logger.warning("Rejected request with unknown or expired session")
        raise HTTPException(status_code=401, detail="Not authorized")
    return admin_session


router = APIRouter()
protected = APIRouter(dependencies=[Depends(require_admin)])

Engine = Annotated[QueueEngine, Depends(get_queue_engine)]


# Visits


@protected.get("/visits", response_model=VisitListResponse, tags=["Visits"])
async def list_visits(engine: Engine, date: str | None = None) -> VisitListResponse:
    """List visits for a day (all visits when no date is given) with per-status counts."""
    entries, stats = await engine.board(date)
    return VisitListResponse(
        visits=[VisitOut.from_entry(entry) for entry in entries],
        total=len(entries),
        stats=QueueStatsOut.from_stats(stats),
    )


@protected.post("/visits", response_model=VisitResponse, status_code=201, tags=["Visits"])
async def create_visit(request: VisitCreate, engine: Engine) -> VisitResponse:
    """Enqueue a registered patient for today."""
    entry = await engine.enqueue(request.patient_id, reason=request.reason)
    return VisitResponse(visit=VisitOut.from_entry(entry))


@protected.get("/visits/{visit_id}", response_model=VisitResponse, tags=["Visits"])
async def get_visit(visit_id: str, engine: Engine) -> VisitResponse:
    return VisitResponse(visit=VisitOut.from_entry(await engine.get(visit_id)))


@protected.post("/visits/{visit_id}/advance", response_model=VisitResponse, tags=["Visits"])
async def advance_visit(visit_id: str, engine: Engine, request: VisitAdvance | None = None) -> VisitResponse:
    """Move a visit to its next status (WAITING -> IN_ROOM -> FINISHED)."""
    entry = await engine.advance(visit_id, reason=request.reason if request else None)
    return VisitResponse(visit=VisitOut.from_entry(entry))


@protected.patch("/visits/{visit_id}", response_model=VisitResponse, tags=["Visits"])
async def update_visit(visit_id: str, request: VisitUpdate, engine: Engine) -> VisitResponse:
    """Update status, reason, or the visit's patient contact details.

    A status must be the visit's next status. An explicit null reason or
    patient_email clears it.
    """
    reason = request.reason
    if reason is None and "reason" in request.model_fields_set:
        reason = ""
    patient_email = request.patient_email
    if patient_email is None and "patient_email" in request.model_fields_set:
        patient_email = ""

    entry = await engine.update_visit(
        visit_id,
        status=request.status,
        reason=reason,
        patient_name=request.patient_name,
        patient_phone=request.patient_phone,
        patient_email=patient_email,
    )
    return VisitResponse(visit=VisitOut.from_entry(entry))


@protected.delete("/visits/{visit_id}", response_model=SuccessResponse, tags=["Visits"])
async def delete_visit(visit_id: str, engine: Engine) -> SuccessResponse:
    await engine.remove(visit_id)
    return SuccessResponse()


# Patients


@protected.get("/patients", response_model=PatientListResponse, tags=["Patients"])
async def list_patients(
    engine: Engine,
    search: str | None = None,
    patient_filter: Annotated[Literal["all", "with_visits", "new_today"], Query(alias="filter")] = "all",
) -> PatientListResponse:
    """List patients, newest first, with visit counts and registry stats."""
    items = await engine.registry.list_patients(
        with_stats=True,
        search=search,
        only_with_visits=patient_filter == "with_visits",
        only_new_today=patient_filter == "new_today",
    )
    stats = await engine.registry.stats()
    return PatientListResponse(
        patients=[PatientOut.from_stats(item) for item in items],
        total=len(items),
        stats=RegistryStatsOut.from_stats(stats),
    )


@protected.post("/patients", response_model=PatientResponse, status_code=201, tags=["Patients"])
async def create_patient(request: PatientCreate, engine: Engine) -> PatientResponse:
    patient = await engine.registry.register(**request.model_dump())
    return PatientResponse(patient=PatientOut.from_patient(patient))


@protected.get("/patients/{patient_id}", response_model=PatientResponse, tags=["Patients"])
async def get_patient(patient_id: str, engine: Engine) -> PatientResponse:
    return PatientResponse(patient=PatientOut.from_patient(await engine.registry.get(patient_id)))


@protected.patch("/patients/{patient_id}", response_model=PatientResponse, tags=["Patients"])
async def update_patient(
    patient_id: str, request: PatientUpdate, engine: Engine, propagate: bool = False
) -> PatientResponse:
    """Edit a patient. With propagate=true, existing visits get the new name/phone."""
    patient = await engine.update_patient(patient_id, request, propagate=propagate)
    return PatientResponse(patient=PatientOut.from_patient(patient))


@protected.delete("/patients/{patient_id}", response_model=SuccessResponse, tags=["Patients"])
async def delete_patient(patient_id: str, engine: Engine) -> SuccessResponse:
    """Delete a patient together with all of its visits."""
    await engine.registry.remove(patient_id)
    return SuccessResponse()


# Export


@protected.get("/export", tags=["Export"])
async def export_csv(
    engine: Engine,
    date: str | None = None,
    kind: Annotated[Literal["visits", "patients"], Query(alias="type")] = "visits",
) -> Response:
    """Download the day's visits or the whole patient registry as CSV."""
    export = await export_patients(engine) if kind == "patients" else await export_visits(engine, date)
    logger.info(f"Exported {export.filename}")
    return Response(
        content=export.content,
        media_type=export.media_type,
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )


router.include_router(protected)
