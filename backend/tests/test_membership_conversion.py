from __future__ import annotations

import datetime as dt
from typing import Any

import pytest

from dlob_core import Payment, classify, convert_membership_to_daily, convert_session_to_membership
from dlob_core.errors import Forbidden, InvalidState, ValidationError
from dlob_core.membership import (
    format_rupiah,
    has_membership_in_month,
    membership_fee_for,
    membership_status,
    monthly_fee_quote,
    plan_duplicate_cleanup,
    saturday_count,
    saturday_sessions,
)
from dlob_core.payment import MEMBERSHIP, SESSION, can_convert_to_daily, can_convert_to_membership


def _session(**overrides: Any) -> Payment:
    values = {
        "id": "p1",
        "member_id": "m1",
        "amount": 18000,
        "type": "daily",
        "status": "pending",
        "due_date": "2026-08-08",
        "notes": "📅 Daily Session Fee (2026-08-08)",
        "created_at": "2026-08-08T12:00:00Z",
    }
    values.update(overrides)
    return Payment(**values)


def test_saturday_count_and_fee_tiers() -> None:
    assert saturday_count(2026, 2) == 4
    assert saturday_count(2026, 8) == 5
    assert membership_fee_for(dt.date(2026, 2, 10)) == 40000
    assert membership_fee_for(dt.date(2026, 8, 10)) == 45000


def test_format_rupiah_uses_dot_grouping() -> None:
    assert format_rupiah(45000) == "Rp45.000"
    assert format_rupiah(1250000) == "Rp1.250.000"


def test_convert_session_in_five_saturday_month() -> None:
    payment = _session()

    result = convert_session_to_membership(payment, "m1", today=dt.date(2026, 8, 10))

    assert result.payment.id == "p1"
    assert result.payment.due_date == "2026-08-08"
    assert result.payment.type == "monthly"
    assert result.payment.amount == 45000
    assert result.saturday_count == 5
    assert result.month_name == "August 2026"
    assert result.original_amount == 18000
    assert "August 2026 (5 weeks)" in result.payment.notes
    assert classify(result.payment) == MEMBERSHIP
    # Source row is untouched until the store applies the changes.
    assert payment.type == "daily"


def test_convert_session_in_four_saturday_month() -> None:
    result = convert_session_to_membership(_session(due_date="2026-02-07"), today=dt.date(2026, 2, 9))
    assert result.new_amount == 40000
    assert result.saturday_count == 4


def test_round_trip_restores_session_fee() -> None:
    forward = convert_session_to_membership(_session(), "m1", today=dt.date(2026, 8, 10))
    back = convert_membership_to_daily(forward.payment, "m1")

    assert back.payment.type == "daily"
    assert back.payment.amount == 18000
    assert back.payment.due_date == "2026-08-08"
    assert "(was Rp45.000)" in back.payment.notes
    assert classify(back.payment) == SESSION


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"type": "monthly", "amount": 45000}, "payment already monthly"),
        ({"status": "paid"}, "payment not pending (status is paid)"),
        ({"amount": 3000, "notes": ""}, "payment is not a session fee"),
    ],
)
def test_convert_session_rejects_invalid_state(overrides, message) -> None:
    with pytest.raises(InvalidState, match=message):
        convert_session_to_membership(_session(**overrides), today=dt.date(2026, 8, 10))


def test_convert_session_rejects_low_amount_with_session_marker() -> None:
    with pytest.raises(InvalidState, match="below Rp18.000"):
        convert_session_to_membership(_session(amount=15000), today=dt.date(2026, 8, 10))


def test_conversion_checks_ownership() -> None:
    with pytest.raises(Forbidden):
        convert_session_to_membership(_session(), "someone-else", today=dt.date(2026, 8, 10))
    with pytest.raises(Forbidden):
        convert_membership_to_daily(_session(type="monthly", amount=45000), "someone-else")


def test_convert_to_daily_rejects_daily_and_paid() -> None:
    with pytest.raises(InvalidState, match="payment already daily"):
        convert_membership_to_daily(_session())
    with pytest.raises(InvalidState, match="not pending"):
        convert_membership_to_daily(_session(type="monthly", amount=45000, status="paid"))


def test_duplicate_plan_keeps_earliest_session_and_latest_membership() -> None:
    payments = [
        _session(id="s1", created_at="2026-08-08T10:00:00Z"),
        _session(id="s2", created_at="2026-08-08T11:00:00Z"),
        _session(id="s3", due_date="2026-08-15", created_at="2026-08-15T10:00:00Z"),
        _session(id="paid", status="paid", created_at="2026-08-08T09:00:00Z"),
    ]

    plan = plan_duplicate_cleanup("m1", payments, dt.date(2026, 8, 1))

    assert plan.payment_ids == ["s2"]
    assert "2026-08-08" in plan.actions[0].reason


def test_duplicate_plan_membership_supersedes_sessions() -> None:
    membership = {"type": "monthly", "amount": 45000, "notes": "💳 Monthly Membership - August 2026"}
    payments = [
        _session(id="s1", created_at="2026-08-08T10:00:00Z"),
        _session(id="m-old", created_at="2026-08-09T10:00:00Z", **membership),
        _session(id="m-new", created_at="2026-08-10T10:00:00Z", **membership),
        _session(id="july", due_date="2026-07-25", created_at="2026-07-25T10:00:00Z"),
    ]

    plan = plan_duplicate_cleanup("m1", payments, dt.date(2026, 8, 20))

    assert plan.payment_ids == ["m-old", "s1"]
    assert plan.actions[1].reason == "session payment superseded by membership"


def test_has_membership_in_month() -> None:
    payments = [_session(type="monthly", amount=45000, due_date="2026-08-01")]
    assert has_membership_in_month(payments, "m1", dt.date(2026, 8, 29))
    assert not has_membership_in_month(payments, "m1", dt.date(2026, 9, 5))
    assert not has_membership_in_month(payments, "m2", dt.date(2026, 8, 29))


ELIGIBILITY_CASES = [
    {},
    {"status": "paid"},
    {"amount": 3000, "notes": ""},
    {"type": "monthly", "amount": 45000, "notes": "💳 Monthly Membership - August 2026"},
    {"type": "monthly", "amount": 45000, "status": "overdue"},
    {"type": "monthly", "amount": 18000, "notes": "📅 Daily Session Fee"},
    {"type": "daily", "amount": 45000, "notes": "💳 Monthly Membership - October 2026"},
    {"type": "daily", "amount": 40000, "notes": ""},
]


@pytest.mark.parametrize("overrides", ELIGIBILITY_CASES)
def test_eligibility_flags_agree_with_conversions(overrides) -> None:
    payment = _session(**overrides)

    for predicate, convert in (
        (can_convert_to_membership, lambda item: convert_session_to_membership(item, today=dt.date(2026, 8, 10))),
        (can_convert_to_daily, convert_membership_to_daily),
    ):
        try:
            convert(payment)
        except InvalidState:
            converted = False
        else:
            converted = True
        assert predicate(payment) is converted


def test_daily_row_with_membership_note_is_not_convertible_to_daily() -> None:
    payment = _session(type="daily", amount=45000, notes="💳 Monthly Membership - October 2026")

    assert classify(payment) == MEMBERSHIP
    assert not can_convert_to_daily(payment)
    with pytest.raises(InvalidState, match="already daily"):
        convert_membership_to_daily(payment)


def test_saturday_sessions_lists_dates() -> None:
    assert saturday_sessions(2026, 2) == [
        dt.date(2026, 2, 7),
        dt.date(2026, 2, 14),
        dt.date(2026, 2, 21),
        dt.date(2026, 2, 28),
    ]
    assert len(saturday_sessions(2026, 8)) == 5


def test_monthly_fee_quote() -> None:
    quote = monthly_fee_quote(2026, 2)
    assert quote["amount"] == 40000
    assert quote["saturdayCount"] == 4
    assert quote["saturdays"][0] == "2026-02-07"
    assert quote["dueDate"] == "2026-02-01"
    assert quote["expiryDate"] == "2026-02-28"
    assert quote["monthName"] == "February 2026"
    assert "(4 weeks)" in quote["description"]

    assert monthly_fee_quote(2026, 8)["amount"] == 45000
    with pytest.raises(ValidationError):
        monthly_fee_quote(2026, 13)
    with pytest.raises(ValidationError):
        monthly_fee_quote(1999, 5)


def test_membership_status_prefers_paid_membership() -> None:
    payments = [
        _session(id="s1"),
        _session(id="old", type="monthly", amount=45000, due_date="2026-07-01", status="paid"),
        _session(id="cur", type="monthly", amount=45000, due_date="2026-08-01", status="paid"),
    ]

    status = membership_status("m1", payments, dt.date(2026, 8, 15))

    assert status["hasMembership"] is True
    assert status["pendingMembership"] is False
    assert status["paymentId"] == "cur"
    assert status["saturdayCount"] == 5
    assert status["expiryDate"] == "2026-08-31"

    empty = membership_status("m1", payments, dt.date(2026, 9, 1))
    assert empty["hasMembership"] is False
    assert empty["paymentId"] is None
    assert empty["amount"] == 0
