from __future__ import annotations

import datetime as dt
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

SHUTTLECOCK = "shuttlecock"
SESSION = "session"
MEMBERSHIP = "membership"
OTHER = "other"

PAYMENT_STATUSES = ("pending", "paid", "partial", "overdue")
PAYMENT_TYPES = ("daily", "monthly", "shuttlecock", "match", "tournament", "penalty")

# Paid is final.
STATUS_TRANSITIONS = {
    "pending": ("paid", "partial", "overdue"),
    "partial": ("paid", "overdue"),
    "overdue": ("paid", "partial"),
    "paid": (),
}

SHUTTLECOCK_MARKERS = ("Shuttlecock",)
SESSION_MARKERS = ("Session Fee", "Daily Session")
MEMBERSHIP_MARKERS = ("Membership",)

SHUTTLECOCK_MAX_AMOUNT = 5000
SESSION_MIN_AMOUNT = 18000
SESSION_MAX_AMOUNT = 25000


@dataclass
class Payment:
    """A single fee owed by a member.

    ``amount`` is in rupiah (the smallest unit used by the club). ``notes`` is
    free text, but the system writes recognisable markers into it so legacy
    rows can be classified; see :func:`classify`.
    """

    id: str
    member_id: str
    amount: int
    type: str
    status: str = "pending"
    due_date: str = ""
    notes: str = ""
    match_id: Optional[str] = None
    created_at: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Payment":
        return cls(
            id=str(row.get("id") or ""),
            member_id=str(row.get("member_id") or ""),
            amount=_coerce_amount(row.get("amount")),
            type=str(row.get("type") or ""),
            status=str(row.get("status") or "pending"),
            due_date=str(row.get("due_date") or "")[:10],
            notes=str(row.get("notes") or ""),
            match_id=str(row["match_id"]) if row.get("match_id") else None,
            created_at=str(row.get("created_at") or ""),
        )

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


def _coerce_amount(value: Any) -> int:
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return 0


def _has_marker(notes: str, markers: Iterable[str]) -> bool:
    return any(marker in notes for marker in markers)


def classify(payment: Payment) -> str:
    """Return the category a payment is for.

    Marker text in ``notes`` is checked first (shuttlecock, session,
    membership); only when no marker is present do the amount ranges and the
    ``monthly`` type decide, in the same order.
    """

    notes = payment.notes or ""
    if _has_marker(notes, SHUTTLECOCK_MARKERS):
        return SHUTTLECOCK
    if _has_marker(notes, SESSION_MARKERS):
        return SESSION
    if _has_marker(notes, MEMBERSHIP_MARKERS):
        return MEMBERSHIP

    amount = payment.amount or 0
    if 0 < amount <= SHUTTLECOCK_MAX_AMOUNT:
        return SHUTTLECOCK
    if SESSION_MIN_AMOUNT <= amount <= SESSION_MAX_AMOUNT:
        return SESSION
    if payment.type == "monthly":
        return MEMBERSHIP
    return OTHER


def can_convert_to_membership(payment: Payment) -> bool:
    return (
        payment.type != "monthly"
        and classify(payment) == SESSION
        and payment.status == "pending"
        and payment.amount >= SESSION_MIN_AMOUNT
    )


def can_convert_to_daily(payment: Payment) -> bool:
    # Mirrors the preconditions of convert_membership_to_daily.
    return payment.status == "pending" and payment.type == "monthly"


def can_change_status(current: str, new: str) -> bool:
    return new == current or new in STATUS_TRANSITIONS.get(current, ())


# ----------------------------------------------------------------------
# Session buckets


def member_name(member_id: str, member_directory: Mapping[str, str]) -> str:
    name = (member_directory.get(member_id) or "").strip()
    return name or member_id


def group_key(payment: Payment, member_directory: Mapping[str, str]) -> str:
    # Keyed by name, not id: duplicate member rows for one person share a bucket.
    return f"{member_name(payment.member_id, member_directory)}_{payment.due_date}"


@dataclass
class SessionBucket:
    key: str
    member_name: str
    due_date: str
    member_ids: List[str] = field(default_factory=list)
    shuttlecock_payments: List[Payment] = field(default_factory=list)
    fee_payment: Optional[Payment] = None
    other_payments: List[Payment] = field(default_factory=list)

    @property
    def session_payment(self) -> Optional[Payment]:
        if self.fee_payment and classify(self.fee_payment) == SESSION:
            return self.fee_payment
        return None

    @property
    def membership_payment(self) -> Optional[Payment]:
        if self.fee_payment and classify(self.fee_payment) == MEMBERSHIP:
            return self.fee_payment
        return None

    @property
    def shuttlecock_total(self) -> int:
        return sum(item.amount for item in self.shuttlecock_payments)

    def add(self, payment: Payment) -> None:
        if payment.member_id not in self.member_ids:
            self.member_ids.append(payment.member_id)

        category = classify(payment)
        if category == SHUTTLECOCK:
            self.shuttlecock_payments.append(payment)
        elif category in (SESSION, MEMBERSHIP) and self.fee_payment is None:
            self.fee_payment = payment
        else:
            self.other_payments.append(payment)


def group_payments(
    payments: Iterable[Payment],
    member_directory: Mapping[str, str],
) -> List[SessionBucket]:
    buckets: Dict[str, SessionBucket] = {}
    for payment in payments:
        key = group_key(payment, member_directory)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = SessionBucket(
                key=key,
                member_name=member_name(payment.member_id, member_directory),
                due_date=payment.due_date,
            )
            buckets[key] = bucket
        bucket.add(payment)

    return sorted(buckets.values(), key=lambda item: (item.due_date, item.member_name.lower()))


def payment_stats(payments: Iterable[Payment], today: str, overdue_after_days: int = 7) -> Dict[str, int]:
    """Summary counters for a list of payments.

    A pending payment counts as overdue once its due date is more than
    ``overdue_after_days`` days before ``today`` (ISO date string).
    """

    today_date = dt.date.fromisoformat(today)
    stats = {
        "total": 0,
        "pending": 0,
        "paid": 0,
        "partial": 0,
        "overdue": 0,
        "totalAmount": 0,
        "totalPaid": 0,
        "totalPending": 0,
    }
    for payment in payments:
        stats["total"] += 1
        stats["totalAmount"] += payment.amount
        if payment.status in ("pending", "paid", "partial"):
            stats[payment.status] += 1
        if payment.status == "paid":
            stats["totalPaid"] += payment.amount
        if payment.status == "overdue":
            stats["overdue"] += 1
        if payment.status == "pending":
            stats["totalPending"] += payment.amount
            try:
                due = dt.date.fromisoformat(payment.due_date)
            except ValueError:
                continue
            if (today_date - due).days > overdue_after_days:
                stats["overdue"] += 1
    return stats
