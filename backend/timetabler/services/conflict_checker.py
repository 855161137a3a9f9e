from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from timetabler.services.scheduling_types import ScheduleEntry, SchedulingConstraints

DEFAULT_CONSTRAINTS = SchedulingConstraints()


@dataclass
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def hard_conflicts(self) -> int:
        return len(self.errors)


def _teacher_key(entry: ScheduleEntry) -> tuple[int, int, int]:
    return (entry.teacher_id, entry.day, entry.period)


def _room_key(entry: ScheduleEntry) -> tuple[str, int, int] | None:
    if not entry.room_number:
        return None
    return (entry.room_number, entry.day, entry.period)


def check_teacher_conflicts(entries: Sequence[ScheduleEntry], existing: Iterable[ScheduleEntry] = ()) -> list[str]:
    occupied = {_teacher_key(entry) for entry in existing}
    conflicts: list[str] = []
    for entry in entries:
        key = _teacher_key(entry)
        if key in occupied:
            conflicts.append(
                f"Teacher conflict: Teacher {entry.teacher_id} already assigned to period {entry.period} on day {entry.day}"
            )
        occupied.add(key)
    return conflicts


def check_room_conflicts(entries: Sequence[ScheduleEntry], existing: Iterable[ScheduleEntry] = ()) -> list[str]:
    occupied = {key for key in (_room_key(entry) for entry in existing) if key is not None}
    conflicts: list[str] = []
    for entry in entries:
        key = _room_key(entry)
        if key is None:
            continue
        if key in occupied:
            conflicts.append(
                f"Room conflict: Room {entry.room_number} already occupied in period {entry.period} on day {entry.day}"
            )
        occupied.add(key)
    return conflicts


def check_class_conflicts(entries: Sequence[ScheduleEntry], existing: Iterable[ScheduleEntry] = ()) -> list[str]:
    occupied = {entry.class_slot for entry in existing}
    conflicts: list[str] = []
    for entry in entries:
        if entry.class_slot in occupied:
            conflicts.append(
                f"Class conflict: Class {entry.class_id} already has a subject in period {entry.period} on day {entry.day}"
            )
        occupied.add(entry.class_slot)
    return conflicts


def check_slot_validity(
    entries: Sequence[ScheduleEntry],
    constraints: SchedulingConstraints,
    period_limits: Mapping[int, int],
) -> list[str]:
    errors: list[str] = []
    for entry in entries:
        limit = period_limits.get(entry.class_id, constraints.max_periods_per_day)
        if entry.period in constraints.break_periods:
            errors.append(f"Invalid slot: period {entry.period} is a break period (class {entry.class_id}, day {entry.day})")
        elif entry.period > limit:
            errors.append(
                f"Invalid slot: period {entry.period} exceeds {limit} periods per day for class {entry.class_id}"
            )
        if entry.day not in constraints.school_days:
            errors.append(f"Invalid slot: day {entry.day} is not a school day (class {entry.class_id})")
    return errors


def check_assignment_membership(
    entries: Sequence[ScheduleEntry],
    known_assignments: Collection[tuple[int, int, int]],
) -> list[str]:
    return [
        f"Unassigned lesson: Teacher {entry.teacher_id} is not assigned subject {entry.subject_id} for class {entry.class_id}"
        for entry in entries
        if entry.assignment_key not in known_assignments
    ]


def check_subject_distribution(entries: Sequence[ScheduleEntry], constraints: SchedulingConstraints) -> list[str]:
    warnings: list[str] = []
    subject_counts = Counter((entry.class_id, entry.day, entry.subject_id) for entry in entries)
    for (class_id, day, subject_id), count in subject_counts.items():
        if count > 1:
            warnings.append(f"Subject {subject_id} is taught {count} times on day {day} for class {class_id}")

    subjects_per_day: dict[tuple[int, int], set[int]] = defaultdict(set)
    for entry in entries:
        subjects_per_day[(entry.class_id, entry.day)].add(entry.subject_id)
    for (class_id, day), subjects in subjects_per_day.items():
        if len(subjects) > constraints.max_subjects_per_day:
            warnings.append(
                f"Class {class_id} has {len(subjects)} subjects on day {day} (max: {constraints.max_subjects_per_day})"
            )
    return warnings


def check_teacher_workload(entries: Sequence[ScheduleEntry], constraints: SchedulingConstraints) -> list[str]:
    teacher_periods = Counter((entry.teacher_id, entry.day) for entry in entries)
    limit = constraints.max_periods_per_day
    return [
        f"Teacher {teacher_id} has {count} periods on day {day} (max: {limit})"
        for (teacher_id, day), count in teacher_periods.items()
        if count > limit
    ]


def check_preferences(entries: Sequence[ScheduleEntry], constraints: SchedulingConstraints) -> list[str]:
    warnings: list[str] = []
    for entry in entries:
        if not constraints.teacher_available(entry.teacher_id, entry.period):
            warnings.append(
                f"Teacher {entry.teacher_id} is scheduled in period {entry.period} on day {entry.day} outside availability"
            )
        if constraints.subject_avoids(entry.subject_id, entry.period):
            warnings.append(
                f"Subject {entry.subject_id} is scheduled in avoided period {entry.period} on day {entry.day}"
            )
        if entry.room_number and entry.room_number in constraints.room_constraints:
            if entry.subject_id not in constraints.room_constraints[entry.room_number]:
                warnings.append(f"Room {entry.room_number} is not configured for subject {entry.subject_id}")
    return warnings


def validate_timetable(
    entries: Sequence[ScheduleEntry],
    constraints: SchedulingConstraints | None = None,
    existing: Sequence[ScheduleEntry] = (),
    *,
    period_limits: Mapping[int, int] | None = None,
    known_assignments: Collection[tuple[int, int, int]] | None = None,
) -> ValidationReport:
    """Collect hard conflicts (errors) and soft-constraint warnings for a candidate.

    Conflicts are checked against the union of the candidate and ``existing``;
    warnings only look at the candidate. Slot validity and assignment membership
    are only checked when the caller supplies the limits/assignments to check
    against.
    """
    constraints = constraints or DEFAULT_CONSTRAINTS
    report = ValidationReport()
    report.errors.extend(check_teacher_conflicts(entries, existing))
    report.errors.extend(check_room_conflicts(entries, existing))
    report.errors.extend(check_class_conflicts(entries, existing))
    if period_limits is not None:
        report.errors.extend(check_slot_validity(entries, constraints, period_limits))
    if known_assignments is not None:
        report.errors.extend(check_assignment_membership(entries, known_assignments))

    report.warnings.extend(check_subject_distribution(entries, constraints))
    report.warnings.extend(check_teacher_workload(entries, constraints))
    report.warnings.extend(check_preferences(entries, constraints))
    return report


def repair_candidate(
    entries: Sequence[ScheduleEntry],
    existing: Sequence[ScheduleEntry] = (),
) -> tuple[list[ScheduleEntry], int]:
    """Drop every entry that would double-book a teacher, room or class.

    Existing entries always win; among candidate entries the earlier one wins.
    """
    teachers = {_teacher_key(entry) for entry in existing}
    rooms = {key for key in (_room_key(entry) for entry in existing) if key is not None}
    classes = {entry.class_slot for entry in existing}

    kept: list[ScheduleEntry] = []
    dropped = 0
    for entry in entries:
        room_key = _room_key(entry)
        if (
            _teacher_key(entry) in teachers
            or entry.class_slot in classes
            or (room_key is not None and room_key in rooms)
        ):
            dropped += 1
            continue
        teachers.add(_teacher_key(entry))
        classes.add(entry.class_slot)
        if room_key is not None:
            rooms.add(room_key)
        kept.append(entry)
    return kept, dropped
