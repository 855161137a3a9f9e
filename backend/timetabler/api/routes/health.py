from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import inspect, text

from timetabler.core.config import get_settings
from timetabler.db.session import engine

router = APIRouter()

settings = get_settings()

REQUIRED_COLUMNS = {
    "schools": {"id", "name", "code", "deleted_at"},
    "school_classes": {"id", "school_id", "name", "max_periods_per_day", "deleted_at"},
    "subjects": {"id", "school_id", "credit_hours"},
    "teachers": {"id", "school_id", "first_name", "last_name"},
    "teacher_class_subjects": {"id", "teacher_id", "class_id", "subject_id", "is_active", "deleted_at"},
    "timetable_entries": {"id", "school_id", "class_id", "day", "period", "start_time", "end_time", "deleted_at"},
}


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/health/live")
def health_live() -> dict:
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/health/ready")
def health_ready(request: Request) -> JSONResponse:
    db_ok = True
    missing_tables: list[str] = []
    missing_columns: dict[str, list[str]] = {}
    db_error: str | None = None

    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
            inspector = inspect(connection)
            table_names = set(inspector.get_table_names())
            for table_name, columns in REQUIRED_COLUMNS.items():
                if table_name not in table_names:
                    missing_tables.append(table_name)
                    continue
                existing = {item["name"] for item in inspector.get_columns(table_name)}
                missing = sorted(columns - existing)
                if missing:
                    missing_columns[table_name] = missing
    except Exception as exc:  # pragma: no cover - environment dependent
        db_ok = False
        db_error = str(exc)

    schema_ok = not missing_tables and not missing_columns
    workers_ok = getattr(request.app.state, "job_manager", None) is not None
    ready = db_ok and schema_ok and workers_ok

    payload = {
        "status": "ok" if ready else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": {
            "ok": db_ok,
            "schema_ok": schema_ok,
            "missing_tables": missing_tables,
            "missing_columns": missing_columns,
            "error": db_error,
        },
        "generation": {
            "ok": workers_ok,
            "workers": settings.generation_workers,
            "evaluation_workers": settings.evaluation_workers,
            "timeout_seconds": settings.generation_timeout_seconds,
        },
    }
    return JSONResponse(status_code=200 if ready else 503, content=payload)
