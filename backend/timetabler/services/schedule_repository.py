from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from timetabler.core.exceptions import PersistenceError, RepositoryError, ResourceNotFoundError, SchedulerError
from timetabler.models.school import School
from timetabler.models.school_class import SchoolClass
from timetabler.models.teacher_assignment import TeacherClassSubject
from timetabler.models.timetable import TimetableEntry
from timetabler.services.scheduling_types import ClassInfo, ScheduleEntry, SchedulingSnapshot, TeacherAssignment
from timetabler.services.snapshot_cache import SnapshotCache

logger = logging.getLogger(__name__)


class TimetableRelation(str, Enum):
    school_class = "class"
    subject = "subject"
    teacher = "teacher"
    school = "school"


RELATION_ATTRIBUTES = {
    TimetableRelation.school_class: TimetableEntry.school_class,
    TimetableRelation.subject: TimetableEntry.subject,
    TimetableRelation.teacher: TimetableEntry.teacher,
    TimetableRelation.school: TimetableEntry.school,
}


def parse_include(raw: str | None) -> frozenset[TimetableRelation]:
    if not raw:
        return frozenset()
    relations: set[TimetableRelation] = set()
    for token in raw.split(","):
        name = token.strip().lower()
        if not name:
            continue
        try:
            relations.add(TimetableRelation(name))
        except ValueError as exc:
            allowed = ", ".join(item.value for item in TimetableRelation)
            raise SchedulerError(f"Unknown include relation '{name}'", details={"allowed": allowed}) from exc
    return frozenset(relations)


@dataclass(frozen=True)
class TimetableFilters:
    class_id: int | None = None
    teacher_id: int | None = None
    subject_id: int | None = None
    day: int | None = None
    period: int | None = None
    page: int = 1
    limit: int | None = 20


class ScheduleRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _require_school(self, school_id: int) -> School:
        school = self.db.get(School, school_id)
        if school is None or school.deleted_at is not None:
            raise ResourceNotFoundError("School", str(school_id))
        return school

    def fetch_snapshot(
        self,
        school_id: int,
        class_ids: Sequence[int] | None = None,
        *,
        cache: SnapshotCache | None = None,
    ) -> SchedulingSnapshot:
        scope_key = tuple(sorted(set(class_ids))) if class_ids else None
        if cache is not None:
            cached = cache.get(school_id, scope_key)
            if cached is not None:
                return cached

        try:
            self._require_school(school_id)

            class_stmt = select(SchoolClass).where(
                SchoolClass.school_id == school_id,
                SchoolClass.deleted_at.is_(None),
            )
            if scope_key is not None:
                class_stmt = class_stmt.where(SchoolClass.id.in_(scope_key))
            classes = self.db.execute(class_stmt.order_by(SchoolClass.id)).scalars().all()

            found_ids = {item.id for item in classes}
            if scope_key is not None:
                missing = sorted(set(scope_key) - found_ids)
                if missing:
                    raise SchedulerError(
                        "Unknown class id(s) for school",
                        details={"school_id": school_id, "missing_class_ids": missing},
                    )
            if not classes:
                raise SchedulerError("School has no classes to schedule", details={"school_id": school_id})

            assignment_rows = (
                self.db.execute(
                    select(TeacherClassSubject)
                    .where(
                        TeacherClassSubject.school_id == school_id,
                        TeacherClassSubject.is_active.is_(True),
                        TeacherClassSubject.deleted_at.is_(None),
                        TeacherClassSubject.class_id.in_(found_ids),
                    )
                    .order_by(TeacherClassSubject.id)
                )
                .scalars()
                .all()
            )

            # Entries of the classes being regenerated are about to be replaced,
            # so only other classes' lessons constrain this run.
            existing_rows = (
                self.db.execute(
                    select(TimetableEntry).where(
                        TimetableEntry.school_id == school_id,
                        TimetableEntry.deleted_at.is_(None),
                        TimetableEntry.class_id.not_in(found_ids),
                    )
                )
                .scalars()
                .all()
            )
        except SQLAlchemyError as exc:
            logger.exception("Failed to load scheduling snapshot for school %s", school_id)
            raise RepositoryError("Failed to fetch timetable data", details={"school_id": school_id}) from exc

        snapshot = SchedulingSnapshot(
            school_id=school_id,
            classes=tuple(
                ClassInfo(class_id=item.id, name=item.name, max_periods_per_day=item.max_periods_per_day)
                for item in classes
            ),
            assignments=tuple(
                TeacherAssignment(
                    teacher_id=row.teacher_id,
                    class_id=row.class_id,
                    subject_id=row.subject_id,
                    school_id=row.school_id,
                    credit_hours=row.subject.credit_hours if row.subject is not None else 1,
                )
                for row in assignment_rows
            ),
            existing=tuple(
                ScheduleEntry(
                    day=row.day,
                    period=row.period,
                    class_id=row.class_id,
                    subject_id=row.subject_id,
                    teacher_id=row.teacher_id,
                    school_id=row.school_id,
                    start_time=row.start_time,
                    end_time=row.end_time,
                    room_number=row.room_number,
                )
                for row in existing_rows
            ),
        )
        if cache is not None:
            cache.put(snapshot, scope_key)
        return snapshot

    def replace_schedule(
        self,
        entries: Iterable[ScheduleEntry],
        school_id: int,
        actor_id: int | None,
        *,
        cache: SnapshotCache | None = None,
    ) -> int:
        """Swap the stored schedule of every class in ``entries`` for ``entries``.

        Prior rows are soft-deleted and the new rows inserted in one
        transaction; on failure nothing changes.
        """
        entries = list(entries)
        if not entries:
            return 0
        class_ids = sorted({entry.class_id for entry in entries})
        now = datetime.now(timezone.utc)

        try:
            self.db.execute(
                update(TimetableEntry)
                .where(
                    TimetableEntry.school_id == school_id,
                    TimetableEntry.class_id.in_(class_ids),
                    TimetableEntry.deleted_at.is_(None),
                )
                .values(deleted_at=now, updated_by=actor_id)
                .execution_options(synchronize_session=False)
            )
            self.db.add_all(
                [
                    TimetableEntry(
                        school_id=school_id,
                        class_id=entry.class_id,
                        subject_id=entry.subject_id,
                        teacher_id=entry.teacher_id,
                        day=entry.day,
                        period=entry.period,
                        start_time=entry.start_time,
                        end_time=entry.end_time,
                        room_number=entry.room_number,
                        created_by=actor_id,
                        updated_by=actor_id,
                    )
                    for entry in entries
                ]
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Timetable replace failed for school %s classes %s", school_id, class_ids)
            raise PersistenceError(
                "Failed to save timetable; the previous schedule was kept",
                details={"school_id": school_id, "class_ids": class_ids},
            ) from exc

        if cache is not None:
            cache.invalidate(school_id)
        logger.info("Replaced timetable school_id=%s classes=%s entries=%s", school_id, class_ids, len(entries))
        return len(entries)

    def query(
        self,
        school_id: int,
        filters: TimetableFilters | None = None,
        include: Iterable[TimetableRelation] = (),
    ) -> list[TimetableEntry]:
        filters = filters or TimetableFilters()
        stmt = select(TimetableEntry).where(
            TimetableEntry.school_id == school_id,
            TimetableEntry.deleted_at.is_(None),
        )
        for column, value in (
            (TimetableEntry.class_id, filters.class_id),
            (TimetableEntry.teacher_id, filters.teacher_id),
            (TimetableEntry.subject_id, filters.subject_id),
            (TimetableEntry.day, filters.day),
            (TimetableEntry.period, filters.period),
        ):
            if value is not None:
                stmt = stmt.where(column == value)
        for relation in set(include):
            stmt = stmt.options(selectinload(RELATION_ATTRIBUTES[relation]))
        stmt = stmt.order_by(TimetableEntry.day, TimetableEntry.period, TimetableEntry.class_id, TimetableEntry.id)
        if filters.limit is not None:
            stmt = stmt.offset((max(1, filters.page) - 1) * filters.limit).limit(filters.limit)

        try:
            return list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            logger.exception("Timetable query failed for school %s", school_id)
            raise RepositoryError("Failed to fetch timetable", details={"school_id": school_id}) from exc
