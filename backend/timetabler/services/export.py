from __future__ import annotations

import csv
import io
import json
from collections.abc import Sequence

from timetabler.models.timetable import TimetableEntry

CSV_HEADERS = ["Day", "Period", "Class", "Subject", "Teacher", "Start Time", "End Time", "Room"]

DAY_NAMES = {
    1: "Monday",
    2: "Tuesday",
    3: "Wednesday",
    4: "Thursday",
    5: "Friday",
    6: "Saturday",
    7: "Sunday",
}


def day_name(day: int) -> str:
    return DAY_NAMES.get(day, f"Day {day}")


def export_csv(entries: Sequence[TimetableEntry]) -> str:
    """Render entries as CSV; class, subject and teacher must be eagerly loaded."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for entry in entries:
        writer.writerow(
            [
                day_name(entry.day),
                entry.period,
                entry.school_class.name if entry.school_class is not None else "",
                entry.subject.name if entry.subject is not None else "",
                entry.teacher.full_name if entry.teacher is not None else "",
                entry.start_time,
                entry.end_time,
                entry.room_number or "",
            ]
        )
    return buffer.getvalue()


def export_json(rows: Sequence[dict]) -> str:
    return json.dumps(list(rows), indent=2, default=str)
