from __future__ import annotations

import logging
import random
from concurrent.futures import Executor
from dataclasses import dataclass
from time import perf_counter

from timetabler.services.conflict_checker import repair_candidate
from timetabler.services.fitness import evaluate_fitness
from timetabler.services.scheduling_types import (
    GenerationResult,
    RunControl,
    ScheduleEntry,
    SchedulingConstraints,
    SchedulingSnapshot,
    TeacherAssignment,
)
from timetabler.services.time_model import DEFAULT_LAYOUT, DailyLayout

logger = logging.getLogger(__name__)

Candidate = list[ScheduleEntry]


@dataclass(frozen=True)
class GeneticSettings:
    max_iterations: int = 1000
    population_size: int = 50
    mutation_rate: float = 0.1
    crossover_rate: float = 0.8
    elite_fraction: float = 0.1
    tournament_size: int = 3
    fill_probability: float = 0.7
    target_fitness: float = 95.0
    repair_conflicts: bool = True


class GeneticOptimizer:
    def __init__(
        self,
        *,
        snapshot: SchedulingSnapshot,
        constraints: SchedulingConstraints,
        settings: GeneticSettings | None = None,
        rng: random.Random | None = None,
        layout: DailyLayout = DEFAULT_LAYOUT,
        control: RunControl | None = None,
        executor: Executor | None = None,
    ) -> None:
        self.snapshot = snapshot
        self.constraints = constraints
        self.settings = settings or GeneticSettings()
        self.random = rng or random.Random()
        self.layout = layout
        self.control = control
        self.executor = executor

        self.assignments_by_class = snapshot.assignments_by_class()
        self.periods_by_class: dict[int, tuple[int, ...]] = {
            class_id: constraints.teachable_periods(snapshot.class_info(class_id))
            for class_id in self.assignments_by_class
        }
        self.rooms_by_subject: dict[int, tuple[str, ...]] = {}
        for assignment in snapshot.assignments:
            if assignment.subject_id not in self.rooms_by_subject:
                self.rooms_by_subject[assignment.subject_id] = constraints.rooms_for_subject(assignment.subject_id)

    def _place(self, assignment: TeacherAssignment, day: int, period: int) -> ScheduleEntry:
        rooms = self.rooms_by_subject.get(assignment.subject_id, ())
        room = self.random.choice(rooms) if rooms else None
        return ScheduleEntry.place(assignment, day=day, period=period, layout=self.layout, room_number=room)

    def _random_candidate(self) -> Candidate:
        candidate: Candidate = []
        for class_id, assignments in self.assignments_by_class.items():
            for day in self.constraints.school_days:
                for period in self.periods_by_class[class_id]:
                    # Leaving ~30% of slots empty keeps the initial population sparse and diverse.
                    if self.random.random() < self.settings.fill_probability:
                        candidate.append(self._place(self.random.choice(assignments), day, period))
        return candidate

    def _score(self, candidate: Candidate) -> float:
        return evaluate_fitness(candidate, self.constraints, self.snapshot.existing).fitness

    def _score_population(self, population: list[Candidate]) -> list[float]:
        if self.executor is None:
            return [self._score(candidate) for candidate in population]
        return list(self.executor.map(self._score, population))

    def _select(self, ranked: list[tuple[float, Candidate]]) -> Candidate:
        best: tuple[float, Candidate] | None = None
        for _ in range(self.settings.tournament_size):
            contender = ranked[self.random.randrange(len(ranked))]
            if best is None or contender[0] > best[0]:
                best = contender
        return best[1]

    def _crossover(self, parent_a: Candidate, parent_b: Candidate) -> Candidate:
        if self.random.random() >= self.settings.crossover_rate:
            return list(parent_a)
        shortest = min(len(parent_a), len(parent_b))
        point = self.random.randrange(shortest) if shortest else 0
        child = list(parent_a[:point])
        taken = {entry.class_slot for entry in child}
        for entry in parent_b[point:]:
            if entry.class_slot in taken:
                continue
            child.append(entry)
            taken.add(entry.class_slot)
        return child

    def _mutate(self, candidate: Candidate) -> Candidate:
        mutated = list(candidate)
        for index, entry in enumerate(mutated):
            if self.random.random() >= self.settings.mutation_rate:
                continue
            if self.random.random() < 0.5:
                periods = self.periods_by_class.get(entry.class_id) or (entry.period,)
                mutated[index] = entry.moved(period=self.random.choice(periods), layout=self.layout)
            else:
                mutated[index] = entry.moved(day=self.random.choice(self.constraints.school_days), layout=self.layout)
        return mutated

    def _next_generation(self, ranked: list[tuple[float, Candidate]]) -> list[Candidate]:
        elite_count = int(self.settings.population_size * self.settings.elite_fraction)
        population = [candidate for _, candidate in ranked[:elite_count]]
        while len(population) < self.settings.population_size:
            parent_a = self._select(ranked)
            parent_b = self._select(ranked)
            population.append(self._mutate(self._crossover(parent_a, parent_b)))
        return population

    def run(self) -> GenerationResult:
        start = perf_counter()
        settings = self.settings
        logger.info(
            "Genetic run school_id=%s classes=%s population=%s max_iterations=%s",
            self.snapshot.school_id,
            len(self.assignments_by_class),
            settings.population_size,
            settings.max_iterations,
        )

        population = [self._random_candidate() for _ in range(settings.population_size)]
        best: Candidate = []
        best_fitness = float("-inf")
        generations = 0
        cancelled = False

        for generation in range(settings.max_iterations):
            if generation > 0 and self.control is not None and self.control.should_stop():
                cancelled = True
                logger.info("Genetic run stopped early after %s generation(s)", generations)
                break

            scores = self._score_population(population)
            generations += 1
            ranked = sorted(zip(scores, population), key=lambda item: item[0], reverse=True)
            if ranked[0][0] > best_fitness:
                best_fitness, best = ranked[0]

            if best_fitness > settings.target_fitness:
                break
            if generation + 1 < settings.max_iterations:
                population = self._next_generation(ranked)

        warnings: list[str] = []
        timetable = list(best)
        if settings.repair_conflicts:
            timetable, dropped = repair_candidate(timetable, self.snapshot.existing)
            if dropped:
                warnings.append(f"Dropped {dropped} conflicting lesson(s) from the best candidate")
        if cancelled:
            warnings.append(f"Generation stopped after {generations} generation(s); returning best candidate so far")

        report = evaluate_fitness(timetable, self.constraints, self.snapshot.existing)
        logger.info(
            "Genetic run finished generations=%s fitness=%.1f hard_conflicts=%s",
            generations,
            report.fitness,
            report.hard_conflicts,
        )
        return GenerationResult(
            timetable=timetable,
            fitness=report.fitness,
            algorithm="genetic",
            iterations=generations,
            conflicts=list(report.validation.errors),
            warnings=warnings + report.validation.warnings,
            cancelled=cancelled,
            runtime_ms=int((perf_counter() - start) * 1000),
        )
