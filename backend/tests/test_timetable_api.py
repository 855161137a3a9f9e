import csv
import io
import json
from concurrent.futures import Future

from sqlalchemy import select

from timetabler.models.activity_log import ActivityLog
from timetabler.services.generation_jobs import GenerationJob
from timetabler.services.schedule_repository import ScheduleRepository
from timetabler.services.scheduling_types import RunControl, ScheduleEntry, TeacherAssignment


def generate(client, seeded, **optimization):
    options = {"algorithm": "constraint-satisfaction", "random_seed": 4}
    options.update(optimization)
    return client.post(
        "/api/timetable/generate",
        json={"school_id": seeded["school_id"], "optimization": options},
    )


def lesson(seeded, teacher, class_key, subject, day, period):
    return {
        "day": day,
        "period": period,
        "class_id": seeded[class_key],
        "subject_id": seeded[subject],
        "teacher_id": seeded[teacher],
        "school_id": seeded["school_id"],
        "start_time": "08:00:00",
        "end_time": "08:45:00",
    }


def test_generate_fills_both_classes_without_conflicts(client, seeded):
    response = generate(client, seeded)

    assert response.status_code == 200
    body = response.json()
    assert body["algorithm"] == "constraint-satisfaction"
    assert body["iterations"] == 1
    assert body["conflicts"] == []
    assert {entry["class_id"] for entry in body["timetable"]} == {seeded["class_a"], seeded["class_b"]}
    assert all(entry["period"] not in (3, 6) for entry in body["timetable"])
    assert all(entry["period"] <= 6 for entry in body["timetable"] if entry["class_id"] == seeded["class_b"])


def test_generate_genetic_with_repair(client, seeded):
    response = generate(client, seeded, algorithm="genetic", max_iterations=3, population_size=6)

    assert response.status_code == 200
    body = response.json()
    assert body["algorithm"] == "genetic"
    assert body["conflicts"] == []
    assert 1 <= body["iterations"] <= 3
    assert 0 <= body["fitness"] <= 100


def test_generate_for_a_class_subset(client, seeded):
    response = client.post(
        "/api/timetable/generate",
        json={
            "school_id": seeded["school_id"],
            "class_ids": [seeded["class_b"]],
            "optimization": {"algorithm": "heuristic", "random_seed": 1},
        },
    )

    assert response.status_code == 200
    assert {entry["class_id"] for entry in response.json()["timetable"]} == {seeded["class_b"]}


def test_generate_error_responses(client, seeded):
    missing_school = client.post("/api/timetable/generate", json={"school_id": 999})
    assert missing_school.status_code == 404
    assert missing_school.json()["message"] == "School with id 999 not found"

    unknown_class = client.post(
        "/api/timetable/generate",
        json={"school_id": seeded["school_id"], "class_ids": [4242]},
    )
    assert unknown_class.status_code == 400
    assert unknown_class.json()["details"]["missing_class_ids"] == [4242]

    bad_constraints = client.post(
        "/api/timetable/generate",
        json={"school_id": seeded["school_id"], "constraints": {"max_periods_per_day": 2, "break_periods": [1, 2]}},
    )
    assert bad_constraints.status_code == 422


def test_generate_with_fail_gap_policy(client, seeded):
    response = client.post(
        "/api/timetable/generate",
        json={
            "school_id": seeded["school_id"],
            "class_ids": [seeded["class_a"]],
            "constraints": {"teacher_availability": {str(seeded["ada"]): [1], str(seeded["ben"]): [1]}},
            "optimization": {"algorithm": "constraint-satisfaction", "gap_policy": "fail"},
        },
    )

    assert response.status_code == 422
    assert response.json()["details"]["unfilled_by_class"] == {str(seeded["class_a"]): 25}


def test_save_then_list_round_trip(client, seeded, db_session):
    generated = generate(client, seeded).json()

    saved = client.post(
        "/api/timetable/save",
        json={
            "school_id": seeded["school_id"],
            "timetable": generated["timetable"],
            "fitness": generated["fitness"],
            "algorithm": generated["algorithm"],
        },
        headers={"X-Actor-Id": "5"},
    )

    assert saved.status_code == 200
    assert saved.json()["count"] == len(generated["timetable"])

    listed = client.get("/api/timetable", params={"school_id": seeded["school_id"], "limit": 500})
    assert listed.status_code == 200
    rows = listed.json()
    assert len(rows) == len(generated["timetable"])
    assert {row["created_by"] for row in rows} == {5}
    assert all(row["teacher"] is None for row in rows)

    logs = db_session.execute(select(ActivityLog)).scalars().all()
    assert [(log.action, log.actor_id) for log in logs] == [("timetable.replace", 5)]


def test_second_save_replaces_the_first(client, seeded):
    first = [lesson(seeded, "ada", "class_a", "maths", 1, 1), lesson(seeded, "ben", "class_a", "english", 1, 2)]
    second = [lesson(seeded, "ben", "class_a", "english", 2, 4)]

    for timetable in (first, second):
        response = client.post(
            "/api/timetable/save",
            json={"school_id": seeded["school_id"], "timetable": timetable},
        )
        assert response.status_code == 200

    rows = client.get("/api/timetable", params={"school_id": seeded["school_id"]}).json()
    assert [(row["day"], row["period"], row["subject_id"]) for row in rows] == [(2, 4, seeded["english"])]


def test_save_refuses_hard_conflicts(client, seeded):
    timetable = [
        lesson(seeded, "ada", "class_a", "maths", 1, 1),
        lesson(seeded, "ada", "class_b", "maths", 1, 1),
    ]

    response = client.post("/api/timetable/save", json={"school_id": seeded["school_id"], "timetable": timetable})

    assert response.status_code == 400
    assert response.json()["message"] == "Timetable has hard conflicts and was not saved"
    assert client.get("/api/timetable", params={"school_id": seeded["school_id"]}).json() == []


def test_save_refuses_clash_with_stored_class(client, seeded):
    stored = client.post(
        "/api/timetable/save",
        json={"school_id": seeded["school_id"], "timetable": [lesson(seeded, "ada", "class_b", "maths", 1, 1)]},
    )
    assert stored.status_code == 200

    response = client.post(
        "/api/timetable/save",
        json={"school_id": seeded["school_id"], "timetable": [lesson(seeded, "ada", "class_a", "maths", 1, 1)]},
    )

    assert response.status_code == 400
    assert response.json()["details"]["errors"] == [
        f"Teacher conflict: Teacher {seeded['ada']} already assigned to period 1 on day 1"
    ]


def test_validate_reports_errors_and_fitness(client, seeded):
    timetable = [
        lesson(seeded, "ada", "class_a", "maths", 1, 1),
        lesson(seeded, "ada", "class_b", "maths", 1, 1),
        lesson(seeded, "cy", "class_a", "science", 1, 2),
    ]

    response = client.post("/api/timetable/validate", json={"school_id": seeded["school_id"], "timetable": timetable})

    assert response.status_code == 200
    body = response.json()
    assert body["hard_conflicts"] == 2
    assert any(error.startswith("Teacher conflict") for error in body["errors"])
    assert any(error.startswith("Unassigned lesson") for error in body["errors"])
    assert 0 <= body["fitness"] <= 100


def test_list_with_includes_and_filters(client, seeded):
    timetable = [lesson(seeded, "ada", "class_a", "maths", 1, 1), lesson(seeded, "ben", "class_a", "english", 2, 1)]
    client.post("/api/timetable/save", json={"school_id": seeded["school_id"], "timetable": timetable})

    response = client.get(
        "/api/timetable",
        params={"school_id": seeded["school_id"], "day": 2, "include": "class,teacher,subject,school"},
    )

    assert response.status_code == 200
    (row,) = response.json()
    assert row["school_class"]["name"] == "7A"
    assert row["teacher"]["first_name"] == "Ben"
    assert row["subject"]["code"] == "ENG"
    assert row["school"]["code"] == "GFP"

    bad = client.get("/api/timetable", params={"school_id": seeded["school_id"], "include": "room"})
    assert bad.status_code == 400


def test_export_formats(client, seeded):
    timetable = [lesson(seeded, "ada", "class_a", "maths", 1, 1)]
    client.post("/api/timetable/save", json={"school_id": seeded["school_id"], "timetable": timetable})

    as_csv = client.get("/api/timetable/export", params={"school_id": seeded["school_id"], "format": "csv"})
    assert as_csv.status_code == 200
    assert as_csv.headers["content-type"].startswith("text/csv")
    rows = list(csv.reader(io.StringIO(as_csv.text)))
    assert rows[0] == ["Day", "Period", "Class", "Subject", "Teacher", "Start Time", "End Time", "Room"]
    assert rows[1][:5] == ["Monday", "1", "7A", "Mathematics", "Ada Lovelace"]

    as_json = client.get("/api/timetable/export", params={"school_id": seeded["school_id"], "format": "json"})
    assert as_json.status_code == 200
    assert json.loads(as_json.text)[0]["teacher"]["last_name"] == "Lovelace"

    as_pdf = client.get("/api/timetable/export", params={"school_id": seeded["school_id"], "format": "pdf"})
    assert as_pdf.status_code == 400


def test_generation_job_lifecycle(client, seeded):
    submitted = client.post(
        "/api/timetable/generation-jobs",
        json={"school_id": seeded["school_id"], "optimization": {"algorithm": "heuristic", "random_seed": 2}},
    )
    assert submitted.status_code == 202
    job_id = submitted.json()["id"]

    manager = client.app.state.job_manager
    manager.wait(manager.get(job_id), timeout=10)

    polled = client.get(f"/api/timetable/generation-jobs/{job_id}")
    assert polled.status_code == 200
    body = polled.json()
    assert body["status"] == "completed"
    assert body["result"]["algorithm"] == "heuristic"

    cancelled = client.post(f"/api/timetable/generation-jobs/{job_id}/cancel")
    assert cancelled.status_code == 200

    assert client.get("/api/timetable/generation-jobs/unknown").status_code == 404
    assert client.post("/api/timetable/generation-jobs/unknown/cancel").status_code == 404


def test_generate_returns_409_when_the_job_future_was_dropped(client, seeded, monkeypatch):
    manager = client.app.state.job_manager

    def dropped_submit(payload, snapshot):
        future = Future()
        future.cancel()
        return GenerationJob(
            id="dropped",
            school_id=payload.school_id,
            algorithm=payload.optimization.algorithm,
            control=RunControl(),
            future=future,
        )

    monkeypatch.setattr(manager, "submit", dropped_submit)

    response = generate(client, seeded)

    assert response.status_code == 409
    assert response.json()["details"] == {"job_id": "dropped"}


def test_save_rechecks_rows_committed_by_another_writer(client, seeded, session_factory):
    candidate = [lesson(seeded, "ada", "class_b", "maths", 1, 1)]
    validated = client.post("/api/timetable/validate", json={"school_id": seeded["school_id"], "timetable": candidate})
    assert validated.json()["hard_conflicts"] == 0

    other_writer = session_factory()
    try:
        stored = ScheduleEntry.place(
            TeacherAssignment(
                teacher_id=seeded["ada"],
                class_id=seeded["class_a"],
                subject_id=seeded["maths"],
                school_id=seeded["school_id"],
            ),
            day=1,
            period=1,
        )
        ScheduleRepository(other_writer).replace_schedule([stored], seeded["school_id"], None)
    finally:
        other_writer.close()

    response = client.post("/api/timetable/save", json={"school_id": seeded["school_id"], "timetable": candidate})

    assert response.status_code == 400
    rows = client.get(
        "/api/timetable",
        params={"school_id": seeded["school_id"], "teacher_id": seeded["ada"]},
    ).json()
    assert [(row["class_id"], row["day"], row["period"]) for row in rows] == [(seeded["class_a"], 1, 1)]


def test_save_stores_times_derived_from_the_period(client, seeded):
    entry = lesson(seeded, "ada", "class_a", "maths", 2, 5)
    entry.update(start_time="23:00:00", end_time="23:45:00")

    saved = client.post("/api/timetable/save", json={"school_id": seeded["school_id"], "timetable": [entry]})
    assert saved.status_code == 200

    rows = client.get("/api/timetable", params={"school_id": seeded["school_id"]}).json()
    assert [(row["period"], row["start_time"], row["end_time"]) for row in rows] == [(5, "12:00:00", "12:45:00")]


def test_validate_fitness_penalises_unassigned_lessons(client, seeded):
    week = [
        lesson(seeded, teacher, "class_a", subject, day, period)
        for day in range(1, 6)
        for teacher, subject, period in (
            ("ada", "maths", 1),
            ("ada", "maths", 2),
            ("ben", "english", 4),
            ("ben", "english", 5),
        )
    ]
    constraints = {"preferred_time_slots": {str(seeded["maths"]): [1, 2], str(seeded["english"]): [4, 5]}}
    unassigned = lesson(seeded, "cy", "class_a", "science", 1, 7)

    clean = client.post(
        "/api/timetable/validate",
        json={"school_id": seeded["school_id"], "timetable": week, "constraints": constraints},
    ).json()
    flagged = client.post(
        "/api/timetable/validate",
        json={"school_id": seeded["school_id"], "timetable": week + [unassigned], "constraints": constraints},
    ).json()

    # 40 preferred-slot points, five thin days at -3 each
    assert (clean["hard_conflicts"], clean["fitness"]) == (0, 25.0)
    # day 1 stops being thin (+3), Cy teaches once (-2), the unassigned lesson costs 10
    assert (flagged["hard_conflicts"], flagged["fitness"]) == (1, 16.0)
