from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, time

from hrms.models import AttendanceStatus, HalfDayPortion, LeaveSession

STANDARD_DAY_MINUTES = 510
HALF_DAY_THRESHOLD_MINUTES = 240
AFTERNOON_BOUNDARY = "13:30:00"
LATE_WINDOW_START = "09:00:00"
LATE_WINDOW_END = "09:10:00"
LATE_ARRIVAL_THRESHOLD = 3
WEEKLY_OFF_WEEKDAY = 6  # Sunday


@dataclass(frozen=True)
class DayDerivation:
    status: AttendanceStatus
    half_day: HalfDayPortion | None = None
    time_in: str | None = None
    time_out: str | None = None
    overtime_minutes: int = 0


def is_weekly_off(day: date) -> bool:
    return day.weekday() == WEEKLY_OFF_WEEKDAY


def parse_clock(value: str) -> time:
    return datetime.strptime(value, "%H:%M:%S").time()


def minutes_between(start: str, end: str) -> int:
    start_t = parse_clock(start)
    end_t = parse_clock(end)
    start_seconds = start_t.hour * 3600 + start_t.minute * 60 + start_t.second
    end_seconds = end_t.hour * 3600 + end_t.minute * 60 + end_t.second
    return max(0, (end_seconds - start_seconds) // 60)


def in_late_window(clock: str | None) -> bool:
    return clock is not None and LATE_WINDOW_START <= clock <= LATE_WINDOW_END


def absent() -> DayDerivation:
    return DayDerivation(status=AttendanceStatus.ABSENT)


def _derive_half_day_leave(
    punches: list[str],
    *,
    session: LeaveSession,
    elapsed: bool,
) -> DayDerivation | None:
    if session == LeaveSession.FORENOON:
        afternoon = [clock for clock in punches if clock >= AFTERNOON_BOUNDARY]
        if not afternoon:
            return absent() if elapsed else None
        return DayDerivation(
            status=AttendanceStatus.HALF_DAY,
            half_day=HalfDayPortion.SECOND_HALF,
            time_in=afternoon[0],
            time_out=punches[-1] if elapsed else None,
        )

    morning = [clock for clock in punches if clock <= AFTERNOON_BOUNDARY]
    if not morning:
        return absent() if elapsed else None
    if len(punches) < 2:
        return absent() if elapsed else None
    return DayDerivation(
        status=AttendanceStatus.HALF_DAY,
        half_day=HalfDayPortion.FIRST_HALF,
        time_in=morning[0],
        time_out=punches[-1] if elapsed else None,
    )


def derive_day(
    punches: list[str],
    *,
    day: date,
    elapsed: bool,
    half_day_leave: LeaveSession | None = None,
) -> DayDerivation | None:
    """Turn one employee-day of punch clock times into an attendance outcome.

    ``punches`` are ``HH:MM:SS`` strings. ``elapsed`` is False for the local
    current day, in which case the shift is treated as still open. ``None``
    means the day cannot be decided yet and its punches should stay
    unprocessed.
    """
    ordered = sorted(set(punches))
    if not ordered:
        return absent()

    if half_day_leave is not None:
        return _derive_half_day_leave(ordered, session=half_day_leave, elapsed=elapsed)

    time_in = ordered[0]
    if not elapsed:
        return DayDerivation(status=AttendanceStatus.PRESENT, time_in=time_in)

    time_out = ordered[-1]
    if len(ordered) == 1:
        return DayDerivation(
            status=AttendanceStatus.HALF_DAY,
            half_day=HalfDayPortion.FIRST_HALF,
            time_in=time_in,
            time_out=time_out,
        )

    duration = minutes_between(time_in, time_out)
    if is_weekly_off(day):
        overtime = duration
    else:
        overtime = max(0, duration - STANDARD_DAY_MINUTES)

    if duration < HALF_DAY_THRESHOLD_MINUTES:
        return DayDerivation(
            status=AttendanceStatus.HALF_DAY,
            half_day=HalfDayPortion.FIRST_HALF,
            time_in=time_in,
            time_out=time_out,
            overtime_minutes=overtime if is_weekly_off(day) else 0,
        )

    return DayDerivation(
        status=AttendanceStatus.PRESENT,
        time_in=time_in,
        time_out=time_out,
        overtime_minutes=overtime,
    )


def apply_late_penalty(derivation: DayDerivation, punches: list[str], *, elapsed: bool) -> DayDerivation:
    """Downgrade a late-arrival day to a first-half day, or Absent once no afternoon punch can follow."""
    ordered = sorted(set(punches))
    if elapsed and not any(clock >= AFTERNOON_BOUNDARY for clock in ordered):
        return replace(absent(), time_in=ordered[0] if ordered else derivation.time_in)
    return replace(
        derivation,
        status=AttendanceStatus.HALF_DAY,
        half_day=HalfDayPortion.FIRST_HALF,
        time_in=ordered[0] if ordered else derivation.time_in,
        overtime_minutes=0,
    )
