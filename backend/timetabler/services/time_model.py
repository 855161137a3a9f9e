from __future__ import annotations

from dataclasses import dataclass


def minutes_to_clock(value: int) -> str:
    hours = value // 60
    minutes = value % 60
    return f"{hours:02d}:{minutes:02d}:00"


@dataclass(frozen=True)
class DailyLayout:
    """Fixed shape of a school day: one start hour, equal lessons, equal breaks."""

    day_start_hour: int = 8
    lesson_minutes: int = 45
    break_minutes: int = 15

    def start_minutes(self, period: int) -> int:
        if period < 1:
            raise ValueError(f"Period must be >= 1, got {period}")
        return self.day_start_hour * 60 + (period - 1) * (self.lesson_minutes + self.break_minutes)

    def end_minutes(self, period: int) -> int:
        return self.start_minutes(period) + self.lesson_minutes

    def start_time(self, period: int) -> str:
        return minutes_to_clock(self.start_minutes(period))

    def end_time(self, period: int) -> str:
        return minutes_to_clock(self.end_minutes(period))


DEFAULT_LAYOUT = DailyLayout()


def period_start_time(period: int, layout: DailyLayout = DEFAULT_LAYOUT) -> str:
    return layout.start_time(period)


def period_end_time(period: int, layout: DailyLayout = DEFAULT_LAYOUT) -> str:
    return layout.end_time(period)
