from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from time import monotonic
from typing import Literal

from timetabler.services.time_model import DEFAULT_LAYOUT, DailyLayout

AlgorithmName = Literal["genetic", "constraint-satisfaction", "heuristic"]
GapPolicy = Literal["accept", "warn", "fail"]

DEFAULT_SCHOOL_DAYS: tuple[int, ...] = (1, 2, 3, 4, 5)


@dataclass(frozen=True)
class TeacherAssignment:
    teacher_id: int
    class_id: int
    subject_id: int
    school_id: int
    credit_hours: int = 1

    @property
    def key(self) -> tuple[int, int, int]:
        return (self.teacher_id, self.class_id, self.subject_id)


@dataclass(frozen=True)
class ScheduleEntry:
    day: int
    period: int
    class_id: int
    subject_id: int
    teacher_id: int
    school_id: int
    start_time: str
    end_time: str
    room_number: str | None = None

    @classmethod
    def place(
        cls,
        assignment: TeacherAssignment,
        *,
        day: int,
        period: int,
        layout: DailyLayout = DEFAULT_LAYOUT,
        room_number: str | None = None,
    ) -> "ScheduleEntry":
        return cls(
            day=day,
            period=period,
            class_id=assignment.class_id,
            subject_id=assignment.subject_id,
            teacher_id=assignment.teacher_id,
            school_id=assignment.school_id,
            start_time=layout.start_time(period),
            end_time=layout.end_time(period),
            room_number=room_number,
        )

    def moved(self, *, day: int | None = None, period: int | None = None, layout: DailyLayout = DEFAULT_LAYOUT) -> "ScheduleEntry":
        new_period = self.period if period is None else period
        return replace(
            self,
            day=self.day if day is None else day,
            period=new_period,
            start_time=layout.start_time(new_period),
            end_time=layout.end_time(new_period),
        )

    @property
    def assignment_key(self) -> tuple[int, int, int]:
        return (self.teacher_id, self.class_id, self.subject_id)

    @property
    def class_slot(self) -> tuple[int, int, int]:
        return (self.class_id, self.day, self.period)


@dataclass(frozen=True)
class ClassInfo:
    class_id: int
    name: str = ""
    max_periods_per_day: int | None = None


@dataclass(frozen=True)
class SchedulingConstraints:
    max_periods_per_day: int = 8
    max_subjects_per_day: int = 6
    break_periods: frozenset[int] = frozenset({3, 6})
    preferred_time_slots: dict[int, frozenset[int]] = field(default_factory=dict)
    avoid_time_slots: dict[int, frozenset[int]] = field(default_factory=dict)
    teacher_availability: dict[int, frozenset[int]] = field(default_factory=dict)
    room_constraints: dict[str, frozenset[int]] = field(default_factory=dict)
    school_days: tuple[int, ...] = DEFAULT_SCHOOL_DAYS

    def period_limit(self, class_info: ClassInfo | None = None) -> int:
        if class_info is not None and class_info.max_periods_per_day:
            return class_info.max_periods_per_day
        return self.max_periods_per_day

    def teachable_periods(self, class_info: ClassInfo | None = None) -> tuple[int, ...]:
        limit = self.period_limit(class_info)
        return tuple(period for period in range(1, limit + 1) if period not in self.break_periods)

    def teacher_available(self, teacher_id: int, period: int) -> bool:
        periods = self.teacher_availability.get(teacher_id)
        return periods is None or period in periods

    def subject_avoids(self, subject_id: int, period: int) -> bool:
        return period in self.avoid_time_slots.get(subject_id, frozenset())

    def rooms_for_subject(self, subject_id: int) -> tuple[str, ...]:
        return tuple(sorted(room for room, subjects in self.room_constraints.items() if subject_id in subjects))


@dataclass(frozen=True)
class SchedulingSnapshot:
    """Point-in-time, read-only input of a generation run."""

    school_id: int
    classes: tuple[ClassInfo, ...]
    assignments: tuple[TeacherAssignment, ...]
    existing: tuple[ScheduleEntry, ...] = ()

    def class_info(self, class_id: int) -> ClassInfo | None:
        for item in self.classes:
            if item.class_id == class_id:
                return item
        return None

    def assignments_by_class(self) -> dict[int, list[TeacherAssignment]]:
        grouped: dict[int, list[TeacherAssignment]] = {}
        for assignment in self.assignments:
            grouped.setdefault(assignment.class_id, []).append(assignment)
        return grouped

    def period_limits(self, constraints: SchedulingConstraints) -> dict[int, int]:
        limits = {item.class_id: constraints.period_limit(item) for item in self.classes}
        for assignment in self.assignments:
            limits.setdefault(assignment.class_id, constraints.max_periods_per_day)
        return limits


@dataclass
class GenerationResult:
    timetable: list[ScheduleEntry]
    fitness: float
    algorithm: AlgorithmName
    iterations: int
    conflicts: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    unfilled_slots: int = 0
    cancelled: bool = False
    runtime_ms: int = 0


class RunControl:
    """Cancellation flag plus optional deadline shared between a run and its owner."""

    def __init__(self, *, timeout_seconds: float | None = None) -> None:
        self._cancelled = threading.Event()
        self.deadline = monotonic() + timeout_seconds if timeout_seconds else None

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancelled.is_set()

    def should_stop(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self.deadline is not None and monotonic() >= self.deadline
