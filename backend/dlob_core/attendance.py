from __future__ import annotations

import calendar
import datetime as dt
import math
from typing import Any, Dict, Iterable, List, Set

from .match import Match

PERIOD_MONTH = "month"
PERIOD_TRAILING_3_MONTHS = "trailing_3_months"
PERIODS = (PERIOD_MONTH, PERIOD_TRAILING_3_MONTHS)


def period_start(as_of: dt.date, period: str = PERIOD_MONTH) -> dt.date:
    if period == PERIOD_TRAILING_3_MONTHS:
        year, month = as_of.year, as_of.month - 3
        if month < 1:
            year, month = year - 1, month + 12
        day = min(as_of.day, calendar.monthrange(year, month)[1])
        return dt.date(year, month, day)
    return as_of.replace(day=1)


def saturdays_between(start: dt.date, end: dt.date) -> List[dt.date]:
    days: List[dt.date] = []
    current = start + dt.timedelta(days=(calendar.SATURDAY - start.weekday()) % 7)
    while current <= end:
        days.append(current)
        current += dt.timedelta(days=7)
    return days


def _parse_date(value: str) -> dt.date | None:
    try:
        return dt.date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def attendance_summary(
    member_id: str,
    matches: Iterable[Match],
    as_of: dt.date,
    period: str = PERIOD_MONTH,
    checkin_dates: Iterable[str] = (),
) -> Dict[str, Any]:
    """Attendance of one member over the period ending at ``as_of``.

    Attended days are match days (plus manual check-ins). Expected days are
    the period's Saturdays together with every attended day, so a match held
    off-schedule counts as a session instead of being dropped.
    """

    start = period_start(as_of, period)

    attended: Set[dt.date] = set()
    match_days = 0
    for match in matches:
        if match.participant(member_id) is None:
            continue
        day = _parse_date(match.date)
        if day is None or not (start <= day <= as_of):
            continue
        if day not in attended:
            match_days += 1
        attended.add(day)

    for value in checkin_dates:
        day = _parse_date(value)
        if day is not None and start <= day <= as_of:
            attended.add(day)

    expected = set(saturdays_between(start, as_of)) | attended
    total = max(1, len(expected))
    rate = len(attended) / total * 100

    return {
        "memberId": member_id,
        "attendanceRate": math.floor(rate + 0.5),
        "attendedSessions": len(attended),
        "totalSessions": len(expected),
        "matchDays": match_days,
        "period": {
            "policy": period,
            "startDate": start.isoformat(),
            "endDate": as_of.isoformat(),
        },
    }


def attendance_rate(
    member_id: str,
    matches: Iterable[Match],
    as_of: dt.date,
    period: str = PERIOD_MONTH,
) -> int:
    return attendance_summary(member_id, matches, as_of, period)["attendanceRate"]
