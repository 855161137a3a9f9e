from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass

from timetabler.services.conflict_checker import DEFAULT_CONSTRAINTS, ValidationReport, validate_timetable
from timetabler.services.scheduling_types import ScheduleEntry, SchedulingConstraints

MAX_FITNESS = 100.0
HARD_CONFLICT_PENALTY = 10


@dataclass
class FitnessReport:
    fitness: float
    distribution_score: int
    workload_score: int
    preference_score: int
    validation: ValidationReport

    @property
    def hard_conflicts(self) -> int:
        return self.validation.hard_conflicts


def subject_distribution_score(entries: Sequence[ScheduleEntry]) -> int:
    subjects_per_day: dict[tuple[int, int], set[int]] = defaultdict(set)
    for entry in entries:
        subjects_per_day[(entry.class_id, entry.day)].add(entry.subject_id)

    score = 0
    for subjects in subjects_per_day.values():
        count = len(subjects)
        if 4 <= count <= 6:
            score += 5
        elif count < 3:
            score -= 3
        elif count > 7:
            score -= 2
    return score


def teacher_workload_score(entries: Sequence[ScheduleEntry]) -> int:
    score = 0
    for periods in Counter((entry.teacher_id, entry.day) for entry in entries).values():
        if 3 <= periods <= 6:
            score += 3
        elif periods > 7:
            score -= 5
        elif periods < 2:
            score -= 2
    return score


def preferred_slot_score(entries: Sequence[ScheduleEntry], preferred: Mapping[int, Collection[int]]) -> int:
    if not preferred:
        return 0
    return sum(2 for entry in entries if entry.period in preferred.get(entry.subject_id, ()))


def evaluate_fitness(
    entries: Sequence[ScheduleEntry],
    constraints: SchedulingConstraints | None = None,
    existing: Sequence[ScheduleEntry] = (),
    *,
    period_limits: Mapping[int, int] | None = None,
    known_assignments: Collection[tuple[int, int, int]] | None = None,
) -> FitnessReport:
    """Score a candidate on a 0-100 scale. Pure: equal inputs give equal reports."""
    constraints = constraints or DEFAULT_CONSTRAINTS
    validation = validate_timetable(
        entries,
        constraints,
        existing,
        period_limits=period_limits,
        known_assignments=known_assignments,
    )
    distribution = subject_distribution_score(entries)
    workload = teacher_workload_score(entries)
    preference = preferred_slot_score(entries, constraints.preferred_time_slots)

    raw = distribution + workload + preference - HARD_CONFLICT_PENALTY * validation.hard_conflicts
    return FitnessReport(
        fitness=float(max(0.0, min(MAX_FITNESS, raw))),
        distribution_score=distribution,
        workload_score=workload,
        preference_score=preference,
        validation=validation,
    )
