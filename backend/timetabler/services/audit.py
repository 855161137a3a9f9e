from __future__ import annotations

from sqlalchemy.orm import Session

from timetabler.models.activity_log import ActivityLog


def log_activity(
    db: Session,
    *,
    actor_id: int | None,
    action: str,
    school_id: int | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict | None = None,
) -> None:
    """Stage an audit row; it is committed together with the caller's transaction."""
    record = ActivityLog(
        actor_id=actor_id,
        school_id=school_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details or {},
    )
    db.add(record)
