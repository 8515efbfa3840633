from __future__ import annotations

import datetime as dt

from dlob_core import Match, Participant
from dlob_core.attendance import (
    PERIOD_TRAILING_3_MONTHS,
    attendance_rate,
    attendance_summary,
    period_start,
    saturdays_between,
)


def _played(match_id: str, date: str, member_id: str = "m1") -> Match:
    return Match(id=match_id, date=date, participants=[Participant(match_id, member_id, "team1")])


AS_OF = dt.date(2026, 10, 19)


def test_saturdays_between() -> None:
    days = saturdays_between(dt.date(2026, 10, 1), AS_OF)
    assert days == [dt.date(2026, 10, 3), dt.date(2026, 10, 10), dt.date(2026, 10, 17)]


def test_period_start() -> None:
    assert period_start(AS_OF) == dt.date(2026, 10, 1)
    assert period_start(AS_OF, PERIOD_TRAILING_3_MONTHS) == dt.date(2026, 7, 19)
    assert period_start(dt.date(2026, 5, 31), PERIOD_TRAILING_3_MONTHS) == dt.date(2026, 2, 28)


def test_off_schedule_match_day_joins_the_denominator() -> None:
    matches = [
        _played("1", "2026-10-10"),
        _played("2", "2026-10-10"),
        _played("3", "2026-10-14"),
        _played("4", "2026-09-26"),
        _played("5", "2026-10-17", member_id="other"),
    ]

    summary = attendance_summary("m1", matches, AS_OF)

    assert summary["attendedSessions"] == 2
    assert summary["totalSessions"] == 4
    assert summary["matchDays"] == 2
    assert summary["attendanceRate"] == 50
    assert summary["period"] == {"policy": "month", "startDate": "2026-10-01", "endDate": "2026-10-19"}


def test_checkins_count_as_attendance() -> None:
    summary = attendance_summary("m1", [_played("1", "2026-10-10")], AS_OF, checkin_dates=["2026-10-17"])
    assert summary["attendedSessions"] == 2
    assert summary["attendanceRate"] == 67


def test_rate_rounds_half_up() -> None:
    # Five of eight expected days is 62.5%.
    matches = [
        _played("1", "2026-10-03"),
        _played("2", "2026-10-05"),
        _played("3", "2026-10-06"),
        _played("4", "2026-10-07"),
        _played("5", "2026-10-10"),
    ]
    assert attendance_rate("m1", matches, dt.date(2026, 10, 31)) == 63


def test_empty_period_has_zero_rate() -> None:
    summary = attendance_summary("m1", [], dt.date(2026, 10, 1))
    assert summary["totalSessions"] == 0
    assert summary["attendanceRate"] == 0


def test_single_session_attended_is_full_rate() -> None:
    summary = attendance_summary("m1", [_played("1", "2026-10-03"), _played("2", "2026-10-03")], dt.date(2026, 10, 3))
    assert summary["totalSessions"] == 1
    assert summary["attendedSessions"] == 1
    assert summary["attendanceRate"] == 100
