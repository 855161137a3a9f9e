from __future__ import annotations

import logging
import random
from collections import defaultdict
from time import perf_counter

from timetabler.services.fitness import evaluate_fitness
from timetabler.services.scheduling_types import (
    AlgorithmName,
    GenerationResult,
    ScheduleEntry,
    SchedulingConstraints,
    SchedulingSnapshot,
    TeacherAssignment,
)
from timetabler.services.time_model import DEFAULT_LAYOUT, DailyLayout

logger = logging.getLogger(__name__)


class _Occupancy:
    """Teacher, room and class slots taken so far, seeded with committed entries."""

    def __init__(self, existing: tuple[ScheduleEntry, ...]) -> None:
        self.teachers: set[tuple[int, int, int]] = set()
        self.rooms: set[tuple[str, int, int]] = set()
        self.classes: set[tuple[int, int, int]] = set()
        for entry in existing:
            self.add(entry)

    def add(self, entry: ScheduleEntry) -> None:
        self.teachers.add((entry.teacher_id, entry.day, entry.period))
        self.classes.add(entry.class_slot)
        if entry.room_number:
            self.rooms.add((entry.room_number, entry.day, entry.period))

    def teacher_free(self, teacher_id: int, day: int, period: int) -> bool:
        return (teacher_id, day, period) not in self.teachers

    def class_free(self, class_id: int, day: int, period: int) -> bool:
        return (class_id, day, period) not in self.classes

    def first_free_room(self, rooms: tuple[str, ...], day: int, period: int) -> str | None:
        for room in rooms:
            if (room, day, period) not in self.rooms:
                return room
        return None


class ConstraintSatisfactionFiller:
    """Single greedy pass over every (class, day, period) slot.

    At each slot the class's assignments are tried in random order and the
    first one that double-books nobody is placed. Slots with no such
    assignment stay empty.
    """

    algorithm: AlgorithmName = "constraint-satisfaction"

    def __init__(
        self,
        *,
        snapshot: SchedulingSnapshot,
        constraints: SchedulingConstraints,
        rng: random.Random | None = None,
        layout: DailyLayout = DEFAULT_LAYOUT,
    ) -> None:
        self.snapshot = snapshot
        self.constraints = constraints
        self.random = rng or random.Random()
        self.layout = layout

    def _ordered_assignments(self) -> dict[int, list[TeacherAssignment]]:
        return self.snapshot.assignments_by_class()

    def _candidates(
        self,
        assignments: list[TeacherAssignment],
        *,
        class_id: int,
        day: int,
    ) -> list[TeacherAssignment]:
        shuffled = list(assignments)
        self.random.shuffle(shuffled)
        return shuffled

    def _record(self, assignment: TeacherAssignment, day: int) -> None:
        pass

    def _eligible(self, assignment: TeacherAssignment, day: int, period: int, occupancy: _Occupancy) -> bool:
        if not self.constraints.teacher_available(assignment.teacher_id, period):
            return False
        if self.constraints.subject_avoids(assignment.subject_id, period):
            return False
        return occupancy.teacher_free(assignment.teacher_id, day, period)

    def run(self) -> GenerationResult:
        start = perf_counter()
        occupancy = _Occupancy(self.snapshot.existing)
        placed: list[ScheduleEntry] = []
        unfilled = 0

        for class_id, assignments in self._ordered_assignments().items():
            periods = self.constraints.teachable_periods(self.snapshot.class_info(class_id))
            for day in self.constraints.school_days:
                for period in periods:
                    if not occupancy.class_free(class_id, day, period):
                        continue
                    entry = self._fill_slot(assignments, class_id=class_id, day=day, period=period, occupancy=occupancy)
                    if entry is None:
                        unfilled += 1
                        continue
                    occupancy.add(entry)
                    placed.append(entry)

        report = evaluate_fitness(placed, self.constraints, self.snapshot.existing)
        logger.info(
            "%s fill placed=%s unfilled=%s fitness=%.1f",
            self.algorithm,
            len(placed),
            unfilled,
            report.fitness,
        )
        return GenerationResult(
            timetable=placed,
            fitness=report.fitness,
            algorithm=self.algorithm,
            iterations=1,
            conflicts=list(report.validation.errors),
            warnings=list(report.validation.warnings),
            unfilled_slots=unfilled,
            runtime_ms=int((perf_counter() - start) * 1000),
        )

    def _fill_slot(
        self,
        assignments: list[TeacherAssignment],
        *,
        class_id: int,
        day: int,
        period: int,
        occupancy: _Occupancy,
    ) -> ScheduleEntry | None:
        for assignment in self._candidates(assignments, class_id=class_id, day=day):
            if not self._eligible(assignment, day, period, occupancy):
                continue
            rooms = self.constraints.rooms_for_subject(assignment.subject_id)
            room = occupancy.first_free_room(rooms, day, period) if rooms else None
            if rooms and room is None:
                continue
            self._record(assignment, day)
            return ScheduleEntry.place(assignment, day=day, period=period, layout=self.layout, room_number=room)
        return None


class HeuristicFiller(ConstraintSatisfactionFiller):
    """Greedy fill that serves subjects with the most weekly hours first.

    ``credit_hours`` is the weekly lesson quota of an assignment. At each slot
    candidates are ranked by whether their subject already ran for the class
    that day, then by remaining quota, then by credit hours.
    """

    algorithm: AlgorithmName = "heuristic"

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._remaining: dict[tuple[int, int, int], int] = {}
        self._taught_today: dict[tuple[int, int], set[int]] = defaultdict(set)

    def _ordered_assignments(self) -> dict[int, list[TeacherAssignment]]:
        shuffled = list(self.snapshot.assignments)
        self.random.shuffle(shuffled)
        ranked = sorted(shuffled, key=lambda item: item.credit_hours, reverse=True)
        grouped: dict[int, list[TeacherAssignment]] = {}
        for assignment in ranked:
            grouped.setdefault(assignment.class_id, []).append(assignment)
            self._remaining[assignment.key] = assignment.credit_hours
        # Classes keep their snapshot order so runs stay comparable with the greedy filler.
        order = [item.class_id for item in self.snapshot.classes if item.class_id in grouped]
        order.extend(class_id for class_id in grouped if class_id not in order)
        return {class_id: grouped[class_id] for class_id in order}

    def _candidates(
        self,
        assignments: list[TeacherAssignment],
        *,
        class_id: int,
        day: int,
    ) -> list[TeacherAssignment]:
        taught = self._taught_today[(class_id, day)]
        ranked = sorted(
            enumerate(assignments),
            key=lambda item: (
                item[1].subject_id in taught,
                -self._remaining[item[1].key],
                item[0],
            ),
        )
        return [assignment for _, assignment in ranked]

    def _record(self, assignment: TeacherAssignment, day: int) -> None:
        self._remaining[assignment.key] -= 1
        self._taught_today[(assignment.class_id, day)].add(assignment.subject_id)
