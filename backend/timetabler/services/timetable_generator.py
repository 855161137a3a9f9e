from __future__ import annotations

import logging
import random
from collections import Counter
from concurrent.futures import Executor

from timetabler.core.exceptions import IncompleteScheduleError, SchedulerError
from timetabler.schemas.timetable import GenerateTimetableRequest, GenerateTimetableResponse, ScheduleEntryPayload
from timetabler.services.genetic_optimizer import GeneticOptimizer, GeneticSettings
from timetabler.services.scheduling_types import (
    GenerationResult,
    RunControl,
    SchedulingConstraints,
    SchedulingSnapshot,
)
from timetabler.services.slot_filler import ConstraintSatisfactionFiller, HeuristicFiller
from timetabler.services.time_model import DEFAULT_LAYOUT, DailyLayout

logger = logging.getLogger(__name__)

FILLERS: dict[str, type[ConstraintSatisfactionFiller]] = {
    "constraint-satisfaction": ConstraintSatisfactionFiller,
    "heuristic": HeuristicFiller,
}


def count_unfilled_slots(result: GenerationResult, snapshot: SchedulingSnapshot, constraints: SchedulingConstraints) -> dict[int, int]:
    """Teachable slots per class that ended up without a lesson."""
    placed = Counter(entry.class_id for entry in result.timetable)
    gaps: dict[int, int] = {}
    for class_id in snapshot.assignments_by_class():
        capacity = len(constraints.teachable_periods(snapshot.class_info(class_id))) * len(constraints.school_days)
        missing = capacity - placed.get(class_id, 0)
        if missing > 0:
            gaps[class_id] = missing
    return gaps


def to_response(result: GenerationResult) -> GenerateTimetableResponse:
    return GenerateTimetableResponse(
        timetable=[ScheduleEntryPayload.model_validate(entry) for entry in result.timetable],
        fitness=result.fitness,
        algorithm=result.algorithm,
        iterations=result.iterations,
        conflicts=result.conflicts,
        warnings=result.warnings,
        unfilled_slots=result.unfilled_slots,
        cancelled=result.cancelled,
        runtime_ms=result.runtime_ms,
    )


class TimetableGenerator:
    def __init__(self, *, layout: DailyLayout = DEFAULT_LAYOUT, executor: Executor | None = None) -> None:
        self.layout = layout
        self.executor = executor

    def generate(
        self,
        request: GenerateTimetableRequest,
        snapshot: SchedulingSnapshot,
        *,
        control: RunControl | None = None,
    ) -> GenerationResult:
        if not snapshot.assignments:
            raise SchedulerError(
                "No active teacher assignments found for the requested classes",
                details={"school_id": request.school_id, "class_ids": request.class_ids},
            )

        options = request.optimization
        constraints = request.constraints.to_constraints()
        rng = random.Random(options.random_seed)
        logger.info(
            "Generating timetable school_id=%s algorithm=%s classes=%s assignments=%s existing=%s",
            snapshot.school_id,
            options.algorithm,
            len(snapshot.classes),
            len(snapshot.assignments),
            len(snapshot.existing),
        )

        if options.algorithm == "genetic":
            optimizer = GeneticOptimizer(
                snapshot=snapshot,
                constraints=constraints,
                settings=GeneticSettings(
                    max_iterations=options.max_iterations,
                    population_size=options.population_size,
                    mutation_rate=options.mutation_rate,
                    crossover_rate=options.crossover_rate,
                    repair_conflicts=options.repair_conflicts,
                ),
                rng=rng,
                layout=self.layout,
                control=control,
                executor=self.executor,
            )
            result = optimizer.run()
        else:
            filler_cls = FILLERS.get(options.algorithm)
            if filler_cls is None:
                raise SchedulerError(f"Unknown algorithm: {options.algorithm}")
            result = filler_cls(snapshot=snapshot, constraints=constraints, rng=rng, layout=self.layout).run()

        return self._apply_gap_policy(result, snapshot, constraints, options.gap_policy)

    def _apply_gap_policy(
        self,
        result: GenerationResult,
        snapshot: SchedulingSnapshot,
        constraints: SchedulingConstraints,
        gap_policy: str,
    ) -> GenerationResult:
        gaps = count_unfilled_slots(result, snapshot, constraints)
        result.unfilled_slots = sum(gaps.values())
        if not gaps or gap_policy == "accept":
            return result
        if gap_policy == "fail":
            raise IncompleteScheduleError(
                f"Generated timetable leaves {result.unfilled_slots} slot(s) unfilled",
                details={"unfilled_by_class": {str(class_id): count for class_id, count in gaps.items()}},
            )
        for class_id, count in sorted(gaps.items()):
            result.warnings.append(f"Class {class_id} has {count} unfilled slot(s)")
        return result
