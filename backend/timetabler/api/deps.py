from collections.abc import Generator

from fastapi import Header, Request
from sqlalchemy.orm import Session

from timetabler.core.config import get_settings
from timetabler.db.session import SessionLocal
from timetabler.services.generation_jobs import GenerationJobManager
from timetabler.services.snapshot_cache import SnapshotCache
from timetabler.services.time_model import DailyLayout

snapshot_cache = SnapshotCache(ttl_seconds=get_settings().snapshot_cache_ttl_seconds)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor_id(x_actor_id: int | None = Header(default=None, ge=1)) -> int | None:
    return x_actor_id


def get_job_manager(request: Request) -> GenerationJobManager:
    return request.app.state.job_manager


def get_snapshot_cache() -> SnapshotCache:
    return snapshot_cache


def build_layout() -> DailyLayout:
    settings = get_settings()
    return DailyLayout(
        day_start_hour=settings.day_start_hour,
        lesson_minutes=settings.lesson_minutes,
        break_minutes=settings.break_minutes,
    )


def build_job_manager() -> GenerationJobManager:
    settings = get_settings()
    return GenerationJobManager(
        max_workers=settings.generation_workers,
        evaluation_workers=settings.evaluation_workers,
        timeout_seconds=settings.generation_timeout_seconds or None,
        max_retained_jobs=settings.max_retained_jobs,
        layout=build_layout(),
    )


def get_layout() -> DailyLayout:
    return build_layout()
