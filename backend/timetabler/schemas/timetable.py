from __future__ import annotations

import re
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from timetabler.services.scheduling_types import (
    DEFAULT_SCHOOL_DAYS,
    ScheduleEntry,
    SchedulingConstraints,
)
from timetabler.services.time_model import DEFAULT_LAYOUT, DailyLayout

CLOCK_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d:[0-5]\d$")


def _frozen_period_map(value: dict) -> dict:
    return {key: frozenset(periods) for key, periods in value.items()}


class ConstraintsPayload(BaseModel):
    max_periods_per_day: int = Field(default=8, ge=1, le=16)
    max_subjects_per_day: int = Field(default=6, ge=1, le=16)
    break_periods: list[int] = Field(default_factory=lambda: [3, 6])
    preferred_time_slots: dict[int, list[int]] = Field(default_factory=dict)
    avoid_time_slots: dict[int, list[int]] = Field(default_factory=dict)
    teacher_availability: dict[int, list[int]] = Field(default_factory=dict)
    room_constraints: dict[str, list[int]] = Field(default_factory=dict)
    school_days: list[int] = Field(default_factory=lambda: list(DEFAULT_SCHOOL_DAYS), min_length=1)

    @field_validator("break_periods")
    @classmethod
    def validate_break_periods(cls, value: list[int]) -> list[int]:
        if any(period < 1 for period in value):
            raise ValueError("break_periods must be positive period numbers")
        return sorted(set(value))

    @field_validator("school_days")
    @classmethod
    def validate_school_days(cls, value: list[int]) -> list[int]:
        if any(day < 1 or day > 7 for day in value):
            raise ValueError("school_days must be between 1 and 7")
        return sorted(set(value))

    @field_validator("preferred_time_slots", "avoid_time_slots", "teacher_availability")
    @classmethod
    def validate_period_lists(cls, value: dict[int, list[int]]) -> dict[int, list[int]]:
        for periods in value.values():
            if any(period < 1 for period in periods):
                raise ValueError("Period numbers must be positive")
        return value

    @model_validator(mode="after")
    def validate_teachable_periods(self) -> "ConstraintsPayload":
        teachable = [p for p in range(1, self.max_periods_per_day + 1) if p not in self.break_periods]
        if not teachable:
            raise ValueError("break_periods leave no teachable period within max_periods_per_day")
        return self

    def to_constraints(self) -> SchedulingConstraints:
        return SchedulingConstraints(
            max_periods_per_day=self.max_periods_per_day,
            max_subjects_per_day=self.max_subjects_per_day,
            break_periods=frozenset(self.break_periods),
            preferred_time_slots=_frozen_period_map(self.preferred_time_slots),
            avoid_time_slots=_frozen_period_map(self.avoid_time_slots),
            teacher_availability=_frozen_period_map(self.teacher_availability),
            room_constraints=_frozen_period_map(self.room_constraints),
            school_days=tuple(self.school_days),
        )


GenerationAlgorithm = Literal["genetic", "constraint-satisfaction", "heuristic"]


class OptimizationPayload(BaseModel):
    algorithm: GenerationAlgorithm = "genetic"
    max_iterations: int = Field(default=1000, ge=1, le=10_000)
    population_size: int = Field(default=50, ge=1, le=2000)
    mutation_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    crossover_rate: float = Field(default=0.8, ge=0.0, le=1.0)
    random_seed: int | None = Field(default=None, ge=0, le=2_000_000_000)
    repair_conflicts: bool = True
    gap_policy: Literal["accept", "warn", "fail"] = "accept"


class GenerateTimetableRequest(BaseModel):
    school_id: int = Field(ge=1)
    class_ids: list[int] | None = None
    constraints: ConstraintsPayload = Field(default_factory=ConstraintsPayload)
    optimization: OptimizationPayload = Field(default_factory=OptimizationPayload)

    @field_validator("class_ids")
    @classmethod
    def normalize_class_ids(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return None
        if not value:
            raise ValueError("class_ids cannot be empty when provided")
        if any(item < 1 for item in value):
            raise ValueError("class_ids must be positive")
        return sorted(set(value))


class ScheduleEntryPayload(BaseModel):
    day: int = Field(ge=1, le=7)
    period: int = Field(ge=1, le=24)
    class_id: int = Field(ge=1)
    subject_id: int = Field(ge=1)
    teacher_id: int = Field(ge=1)
    school_id: int = Field(ge=1)
    start_time: str
    end_time: str
    room_number: str | None = Field(default=None, min_length=1, max_length=50)

    model_config = {"from_attributes": True}

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_clock(cls, value: str) -> str:
        if not CLOCK_PATTERN.match(value):
            raise ValueError("Time must be in HH:MM:SS 24-hour format")
        return value

    def to_entry(self) -> ScheduleEntry:
        return ScheduleEntry(**self.model_dump())


class GenerateTimetableResponse(BaseModel):
    timetable: list[ScheduleEntryPayload]
    fitness: float
    algorithm: GenerationAlgorithm
    iterations: int
    conflicts: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    unfilled_slots: int = 0
    cancelled: bool = False
    runtime_ms: int = 0

    model_config = {"from_attributes": True}


JobStatus = Literal["queued", "running", "completed", "failed", "cancelled"]


class GenerationJobOut(BaseModel):
    id: str
    status: JobStatus
    algorithm: GenerationAlgorithm
    school_id: int
    submitted_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    result: GenerateTimetableResponse | None = None
    error: str | None = None
    error_details: dict = Field(default_factory=dict)


class _EntryListPayload(BaseModel):
    school_id: int = Field(ge=1)
    timetable: list[ScheduleEntryPayload] = Field(min_length=1)

    @model_validator(mode="after")
    def validate_school_scope(self) -> "_EntryListPayload":
        foreign = sorted({entry.school_id for entry in self.timetable if entry.school_id != self.school_id})
        if foreign:
            raise ValueError(f"timetable contains entries for other school(s): {', '.join(map(str, foreign))}")
        return self

    def entries(self, layout: DailyLayout = DEFAULT_LAYOUT) -> list[ScheduleEntry]:
        # Wall-clock times are derived from the period, never taken from the client.
        return [item.to_entry().moved(layout=layout) for item in self.timetable]


class SaveTimetableRequest(_EntryListPayload):
    fitness: float | None = Field(default=None, ge=0.0, le=100.0)
    algorithm: GenerationAlgorithm | None = None
    constraints: ConstraintsPayload = Field(default_factory=ConstraintsPayload)


class SaveTimetableResponse(BaseModel):
    count: int
    message: str


class ValidateTimetableRequest(_EntryListPayload):
    constraints: ConstraintsPayload = Field(default_factory=ConstraintsPayload)


class ValidateTimetableResponse(BaseModel):
    errors: list[str]
    warnings: list[str]
    hard_conflicts: int
    fitness: float


class ClassSummary(BaseModel):
    id: int
    name: str

    model_config = {"from_attributes": True}


class SubjectSummary(BaseModel):
    id: int
    name: str
    code: str
    credit_hours: int

    model_config = {"from_attributes": True}


class TeacherSummary(BaseModel):
    id: int
    first_name: str
    last_name: str

    model_config = {"from_attributes": True}


class SchoolSummary(BaseModel):
    id: int
    name: str
    code: str

    model_config = {"from_attributes": True}


class TimetableEntryOut(ScheduleEntryPayload):
    id: int
    created_by: int | None = None
    updated_by: int | None = None
    created_at: datetime | None = None
    school_class: ClassSummary | None = None
    subject: SubjectSummary | None = None
    teacher: TeacherSummary | None = None
    school: SchoolSummary | None = None
