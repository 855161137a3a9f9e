from collections.abc import Collection
import logging

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from timetabler.api.deps import get_actor_id, get_db, get_job_manager, get_layout, get_snapshot_cache
from timetabler.core.exceptions import AppError, ResourceNotFoundError, SchedulerError
from timetabler.models.timetable import TimetableEntry
from timetabler.schemas.timetable import (
    ClassSummary,
    ConstraintsPayload,
    GenerateTimetableRequest,
    GenerateTimetableResponse,
    GenerationJobOut,
    SaveTimetableRequest,
    SaveTimetableResponse,
    SchoolSummary,
    SubjectSummary,
    TeacherSummary,
    TimetableEntryOut,
    ValidateTimetableRequest,
    ValidateTimetableResponse,
)
from timetabler.services.audit import log_activity
from timetabler.services.conflict_checker import ValidationReport
from timetabler.services.export import export_csv, export_json
from timetabler.services.fitness import evaluate_fitness
from timetabler.services.generation_jobs import GenerationJobManager
from timetabler.services.schedule_repository import (
    ScheduleRepository,
    TimetableFilters,
    TimetableRelation,
    parse_include,
)
from timetabler.services.scheduling_types import ScheduleEntry, SchedulingSnapshot
from timetabler.services.snapshot_cache import SnapshotCache
from timetabler.services.time_model import DailyLayout
from timetabler.services.timetable_generator import to_response

router = APIRouter()
logger = logging.getLogger(__name__)

ENTRY_FIELDS = (
    "id",
    "day",
    "period",
    "class_id",
    "subject_id",
    "teacher_id",
    "school_id",
    "start_time",
    "end_time",
    "room_number",
    "created_by",
    "updated_by",
    "created_at",
)

EXPORT_RELATIONS = frozenset(
    {TimetableRelation.school_class, TimetableRelation.subject, TimetableRelation.teacher}
)


def serialize_entry(row: TimetableEntry, include: Collection[TimetableRelation]) -> TimetableEntryOut:
    # Relations are raise_on_sql, so only touch the ones that were eagerly loaded.
    data = {name: getattr(row, name) for name in ENTRY_FIELDS}
    if TimetableRelation.school_class in include and row.school_class is not None:
        data["school_class"] = ClassSummary.model_validate(row.school_class)
    if TimetableRelation.subject in include and row.subject is not None:
        data["subject"] = SubjectSummary.model_validate(row.subject)
    if TimetableRelation.teacher in include and row.teacher is not None:
        data["teacher"] = TeacherSummary.model_validate(row.teacher)
    if TimetableRelation.school in include and row.school is not None:
        data["school"] = SchoolSummary.model_validate(row.school)
    return TimetableEntryOut(**data)


def _check_against_store(
    repository: ScheduleRepository,
    school_id: int,
    entries: list[ScheduleEntry],
    constraints_payload: ConstraintsPayload,
    cache: SnapshotCache | None = None,
) -> tuple[SchedulingSnapshot, ValidationReport, float]:
    class_ids = sorted({entry.class_id for entry in entries})
    snapshot = repository.fetch_snapshot(school_id, class_ids, cache=cache)
    constraints = constraints_payload.to_constraints()
    fitness_report = evaluate_fitness(
        entries,
        constraints,
        snapshot.existing,
        period_limits=snapshot.period_limits(constraints),
        known_assignments={assignment.key for assignment in snapshot.assignments},
    )
    return snapshot, fitness_report.validation, fitness_report.fitness


@router.post("/generate", response_model=GenerateTimetableResponse)
def generate_timetable(
    payload: GenerateTimetableRequest,
    db: Session = Depends(get_db),
    manager: GenerationJobManager = Depends(get_job_manager),
    cache: SnapshotCache = Depends(get_snapshot_cache),
) -> GenerateTimetableResponse:
    snapshot = ScheduleRepository(db).fetch_snapshot(payload.school_id, payload.class_ids, cache=cache)
    job = manager.submit(payload, snapshot)
    result = manager.wait(job)
    if result is None:
        raise AppError("Generation was cancelled before it started", status_code=409, details={"job_id": job.id})
    return to_response(result)


@router.post("/generation-jobs", response_model=GenerationJobOut, status_code=status.HTTP_202_ACCEPTED)
def submit_generation_job(
    payload: GenerateTimetableRequest,
    db: Session = Depends(get_db),
    manager: GenerationJobManager = Depends(get_job_manager),
    cache: SnapshotCache = Depends(get_snapshot_cache),
) -> GenerationJobOut:
    snapshot = ScheduleRepository(db).fetch_snapshot(payload.school_id, payload.class_ids, cache=cache)
    return manager.submit(payload, snapshot).to_out()


@router.get("/generation-jobs/{job_id}", response_model=GenerationJobOut)
def get_generation_job(job_id: str, manager: GenerationJobManager = Depends(get_job_manager)) -> GenerationJobOut:
    job = manager.get(job_id)
    if job is None:
        raise ResourceNotFoundError("Generation job", job_id)
    return job.to_out()


@router.post("/generation-jobs/{job_id}/cancel", response_model=GenerationJobOut)
def cancel_generation_job(job_id: str, manager: GenerationJobManager = Depends(get_job_manager)) -> GenerationJobOut:
    job = manager.cancel(job_id)
    if job is None:
        raise ResourceNotFoundError("Generation job", job_id)
    return job.to_out()


@router.post("/save", response_model=SaveTimetableResponse)
def save_timetable(
    payload: SaveTimetableRequest,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
    cache: SnapshotCache = Depends(get_snapshot_cache),
    layout: DailyLayout = Depends(get_layout),
) -> SaveTimetableResponse:
    repository = ScheduleRepository(db)
    entries = payload.entries(layout)
    # Uncached: the conflict gate must see rows committed by other processes.
    snapshot, report, fitness = _check_against_store(repository, payload.school_id, entries, payload.constraints)
    if report.hard_conflicts:
        logger.warning(
            "Refused to save timetable for school %s: %d hard conflict(s)",
            payload.school_id,
            report.hard_conflicts,
        )
        raise SchedulerError(
            "Timetable has hard conflicts and was not saved",
            details={"errors": report.errors},
        )

    class_ids = sorted({entry.class_id for entry in entries})
    log_activity(
        db,
        actor_id=actor_id,
        action="timetable.replace",
        school_id=payload.school_id,
        entity_type="timetable",
        entity_id=",".join(str(class_id) for class_id in class_ids),
        details={
            "entries": len(entries),
            "fitness": payload.fitness if payload.fitness is not None else fitness,
            "algorithm": payload.algorithm,
            "replaced_classes": [item.class_id for item in snapshot.classes],
        },
    )
    count = repository.replace_schedule(entries, payload.school_id, actor_id, cache=cache)
    return SaveTimetableResponse(count=count, message=f"Saved {count} timetable entries")


@router.post("/validate", response_model=ValidateTimetableResponse)
def validate_timetable_payload(
    payload: ValidateTimetableRequest,
    db: Session = Depends(get_db),
    cache: SnapshotCache = Depends(get_snapshot_cache),
    layout: DailyLayout = Depends(get_layout),
) -> ValidateTimetableResponse:
    _, report, fitness = _check_against_store(
        ScheduleRepository(db),
        payload.school_id,
        payload.entries(layout),
        payload.constraints,
        cache,
    )
    return ValidateTimetableResponse(
        errors=report.errors,
        warnings=report.warnings,
        hard_conflicts=report.hard_conflicts,
        fitness=fitness,
    )


@router.get("/export")
def export_timetable(
    school_id: int = Query(ge=1),
    requested_format: str = Query(default="csv", alias="format"),
    class_id: int | None = Query(default=None, ge=1),
    teacher_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> Response:
    export_format = requested_format.strip().lower()
    if export_format not in {"csv", "json"}:
        raise SchedulerError(
            f"Unsupported export format: {requested_format}",
            details={"supported": ["csv", "json"]},
        )

    rows = ScheduleRepository(db).query(
        school_id,
        TimetableFilters(class_id=class_id, teacher_id=teacher_id, limit=None),
        include=EXPORT_RELATIONS,
    )
    filename = f"timetable_school_{school_id}.{export_format}"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    if export_format == "csv":
        return Response(content=export_csv(rows), media_type="text/csv", headers=headers)
    body = export_json([serialize_entry(row, EXPORT_RELATIONS).model_dump(mode="json") for row in rows])
    return Response(content=body, media_type="application/json", headers=headers)


@router.get("", response_model=list[TimetableEntryOut])
def list_timetable(
    school_id: int = Query(ge=1),
    class_id: int | None = Query(default=None, ge=1),
    teacher_id: int | None = Query(default=None, ge=1),
    subject_id: int | None = Query(default=None, ge=1),
    day: int | None = Query(default=None, ge=1, le=7),
    period: int | None = Query(default=None, ge=1),
    include: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[TimetableEntryOut]:
    relations = parse_include(include)
    filters = TimetableFilters(
        class_id=class_id,
        teacher_id=teacher_id,
        subject_id=subject_id,
        day=day,
        period=period,
        page=page,
        limit=limit,
    )
    rows = ScheduleRepository(db).query(school_id, filters, include=relations)
    return [serialize_entry(row, relations) for row in rows]
