import pytest
from pydantic import ValidationError

from timetabler.schemas.timetable import (
    ConstraintsPayload,
    GenerateTimetableRequest,
    SaveTimetableRequest,
    ScheduleEntryPayload,
)
from timetabler.services.time_model import DailyLayout


def entry(**overrides):
    payload = {
        "day": 1,
        "period": 1,
        "class_id": 1,
        "subject_id": 1,
        "teacher_id": 1,
        "school_id": 1,
        "start_time": "08:00:00",
        "end_time": "08:45:00",
    }
    payload.update(overrides)
    return payload


def test_constraint_defaults():
    constraints = ConstraintsPayload().to_constraints()

    assert constraints.max_periods_per_day == 8
    assert constraints.max_subjects_per_day == 6
    assert constraints.break_periods == frozenset({3, 6})
    assert constraints.school_days == (1, 2, 3, 4, 5)


def test_breaks_must_leave_a_teachable_period():
    with pytest.raises(ValidationError):
        ConstraintsPayload(max_periods_per_day=2, break_periods=[1, 2])


def test_school_days_are_weekdays_one_to_seven():
    with pytest.raises(ValidationError):
        ConstraintsPayload(school_days=[0, 1])


def test_optimization_defaults():
    request = GenerateTimetableRequest(school_id=1)

    assert request.optimization.algorithm == "genetic"
    assert request.optimization.max_iterations == 1000
    assert request.optimization.population_size == 50
    assert request.optimization.mutation_rate == 0.1
    assert request.optimization.crossover_rate == 0.8
    assert request.optimization.gap_policy == "accept"


def test_unknown_algorithm_is_rejected():
    with pytest.raises(ValidationError):
        GenerateTimetableRequest(school_id=1, optimization={"algorithm": "simulated-annealing"})


def test_class_ids_are_deduplicated_and_sorted():
    assert GenerateTimetableRequest(school_id=1, class_ids=[3, 1, 3]).class_ids == [1, 3]
    with pytest.raises(ValidationError):
        GenerateTimetableRequest(school_id=1, class_ids=[])


def test_entry_times_must_be_clock_strings():
    with pytest.raises(ValidationError):
        ScheduleEntryPayload(**entry(start_time="8:00"))


def test_save_rejects_entries_for_another_school():
    with pytest.raises(ValidationError):
        SaveTimetableRequest(school_id=1, timetable=[entry(school_id=2)])


def test_entries_take_their_times_from_the_layout():
    request = SaveTimetableRequest(
        school_id=1,
        timetable=[entry(period=5, start_time="23:00:00", end_time="23:45:00")],
    )

    assert [(item.start_time, item.end_time) for item in request.entries()] == [("12:00:00", "12:45:00")]

    late_start = DailyLayout(day_start_hour=9, lesson_minutes=40, break_minutes=10)
    assert [(item.start_time, item.end_time) for item in request.entries(late_start)] == [("12:20:00", "13:00:00")]
