from __future__ import annotations

from typing import Any

from dlob_core import Payment, can_convert_to_daily, can_convert_to_membership, classify, group_key, group_payments
from dlob_core.payment import MEMBERSHIP, OTHER, SESSION, SHUTTLECOCK, payment_stats


def _payment(**overrides: Any) -> Payment:
    values = {
        "id": "p1",
        "member_id": "m1",
        "amount": 18000,
        "type": "daily",
        "status": "pending",
        "due_date": "2026-10-17",
        "notes": "",
    }
    values.update(overrides)
    return Payment(**values)


def test_markers_take_precedence_over_amount() -> None:
    assert classify(_payment(amount=18000, notes="🏸 Shuttlecock Fee - Match (2026-10-17)")) == SHUTTLECOCK
    assert classify(_payment(amount=3000, notes="📅 Daily Session Fee (2026-10-17)")) == SESSION
    assert classify(_payment(amount=3000, notes="💳 Monthly Membership - October 2026")) == MEMBERSHIP


def test_membership_marker_wins_regardless_of_amount() -> None:
    for amount in (0, 3000, 20000, 45000, 100000):
        assert classify(_payment(amount=amount, notes="Membership for October")) == MEMBERSHIP


def test_session_note_mentioning_membership_stays_session() -> None:
    notes = "📅 Daily Session Fee (2026-10-17) - Can convert to monthly membership (Rp45.000) for 5 weeks"
    assert classify(_payment(notes=notes)) == SESSION


def test_markers_are_case_sensitive() -> None:
    assert classify(_payment(amount=30000, notes="shuttlecock and membership")) == OTHER


def test_amount_ranges_without_markers() -> None:
    assert classify(_payment(amount=3000)) == SHUTTLECOCK
    assert classify(_payment(amount=5000)) == SHUTTLECOCK
    assert classify(_payment(amount=5001)) == OTHER
    assert classify(_payment(amount=18000)) == SESSION
    assert classify(_payment(amount=25000)) == SESSION
    assert classify(_payment(amount=25001)) == OTHER
    assert classify(_payment(amount=0)) == OTHER


def test_monthly_type_only_decides_outside_amount_ranges() -> None:
    assert classify(_payment(type="monthly", amount=45000)) == MEMBERSHIP
    assert classify(_payment(type="monthly", amount=20000)) == SESSION


def test_conversion_eligibility() -> None:
    assert can_convert_to_membership(_payment())
    assert not can_convert_to_membership(_payment(status="paid"))
    assert not can_convert_to_membership(_payment(amount=3000))
    assert can_convert_to_daily(_payment(type="monthly", amount=45000, notes="💳 Monthly Membership"))
    assert not can_convert_to_daily(_payment(type="monthly", amount=45000, status="paid"))
    assert not can_convert_to_daily(_payment())


def test_group_key_uses_member_name_and_falls_back_to_id() -> None:
    directory = {"m1": "Andi"}
    assert group_key(_payment(member_id="m1"), directory) == "Andi_2026-10-17"
    assert group_key(_payment(member_id="m9"), directory) == "m9_2026-10-17"


def test_group_payments_merges_duplicate_member_rows() -> None:
    directory = {"m1": "Andi", "m2": "Andi", "m3": "Budi"}
    payments = [
        _payment(id="s1", member_id="m1", amount=6000, notes="🏸 Shuttlecock Fee - Match (2026-10-17)"),
        _payment(id="f1", member_id="m2", notes="📅 Daily Session Fee (2026-10-17)"),
        _payment(id="f2", member_id="m1", notes="📅 Daily Session Fee (2026-10-17)"),
        _payment(id="s2", member_id="m3", amount=3000, due_date="2026-10-10"),
    ]

    buckets = group_payments(payments, directory)

    assert [bucket.key for bucket in buckets] == ["Budi_2026-10-10", "Andi_2026-10-17"]
    andi = buckets[1]
    assert andi.member_ids == ["m1", "m2"]
    assert andi.session_payment is not None and andi.session_payment.id == "f1"
    assert andi.membership_payment is None
    assert [item.id for item in andi.other_payments] == ["f2"]
    assert andi.shuttlecock_total == 6000


def test_payment_stats_counts_stale_pending_as_overdue() -> None:
    payments = [
        _payment(id="a", status="pending", due_date="2026-10-01"),
        _payment(id="b", status="pending", due_date="2026-10-17"),
        _payment(id="c", status="paid", amount=3000),
        _payment(id="d", status="overdue", amount=45000),
    ]

    stats = payment_stats(payments, "2026-10-19")

    assert stats["total"] == 4
    assert stats["pending"] == 2
    assert stats["paid"] == 1
    assert stats["overdue"] == 2
    assert stats["totalAmount"] == 18000 + 18000 + 3000 + 45000
    assert stats["totalPaid"] == 3000
    assert stats["totalPending"] == 36000
