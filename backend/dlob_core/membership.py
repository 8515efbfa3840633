from __future__ import annotations

import calendar
import datetime as dt
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional

from .errors import Forbidden, InvalidState, ValidationError
from .payment import MEMBERSHIP, SESSION, SESSION_MIN_AMOUNT, Payment, classify

SESSION_FEE = 18000
SHUTTLECOCK_PRICE = 3000
MEMBERSHIP_FEE_FOUR_WEEKS = 40000
MEMBERSHIP_FEE_FIVE_WEEKS = 45000


def format_rupiah(amount: int) -> str:
    return "Rp" + f"{amount:,}".replace(",", ".")


def month_bounds(day: dt.date) -> tuple[dt.date, dt.date]:
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def month_label(day: dt.date) -> str:
    return f"{calendar.month_name[day.month]} {day.year}"


def saturday_count(year: int, month: int) -> int:
    """Number of Saturdays in the given month."""

    return len(saturday_sessions(year, month))


def membership_fee(saturdays: int) -> int:
    # Two fixed tiers, not a per-Saturday rate.
    return MEMBERSHIP_FEE_FOUR_WEEKS if saturdays == 4 else MEMBERSHIP_FEE_FIVE_WEEKS


def membership_fee_for(day: dt.date) -> int:
    return membership_fee(saturday_count(day.year, day.month))


@dataclass
class ConversionResult:
    payment: Payment
    changes: Dict[str, Any]
    original_amount: int
    new_amount: int
    saturday_count: Optional[int] = None
    month_name: Optional[str] = None
    message: str = ""


def _check_owner(payment: Payment, member_id: Optional[str]) -> None:
    if member_id and member_id != payment.member_id:
        raise Forbidden(f"Payment {payment.id} does not belong to member {member_id}")


def convert_session_to_membership(
    payment: Payment,
    member_id: Optional[str] = None,
    today: Optional[dt.date] = None,
) -> ConversionResult:
    """Turn a pending session fee into this month's membership fee.

    The returned payment keeps ``id`` and ``due_date``; only ``type``,
    ``amount`` and ``notes`` change.
    """

    _check_owner(payment, member_id)
    if payment.type == "monthly":
        raise InvalidState(f"Payment {payment.id}: payment already monthly")
    if payment.status != "pending":
        raise InvalidState(f"Payment {payment.id}: payment not pending (status is {payment.status})")
    if classify(payment) != SESSION:
        raise InvalidState(f"Payment {payment.id}: payment is not a session fee")
    if payment.amount < SESSION_MIN_AMOUNT:
        raise InvalidState(
            f"Payment {payment.id}: session fee below {format_rupiah(SESSION_MIN_AMOUNT)}"
        )

    today = today or dt.date.today()
    saturdays = saturday_count(today.year, today.month)
    fee = membership_fee(saturdays)
    label = month_label(today)

    changes = {
        "type": "monthly",
        "amount": fee,
        "notes": f"💳 Monthly Membership - {label} ({saturdays} weeks) - Converted from session payment",
    }
    return ConversionResult(
        payment=replace(payment, **changes),
        changes=changes,
        original_amount=payment.amount,
        new_amount=fee,
        saturday_count=saturdays,
        month_name=label,
        message=(
            "Session payment converted to monthly membership. "
            "Member will only pay shuttlecock fees for future matches this month."
        ),
    )


def convert_membership_to_daily(payment: Payment, member_id: Optional[str] = None) -> ConversionResult:
    _check_owner(payment, member_id)
    if payment.type != "monthly":
        raise InvalidState(f"Payment {payment.id}: payment already daily")
    if payment.status != "pending":
        raise InvalidState(f"Payment {payment.id}: payment not pending (status is {payment.status})")

    changes = {
        "type": "daily",
        "amount": SESSION_FEE,
        "notes": (
            "📅 Daily Session Fee - Converted from monthly membership "
            f"(was {format_rupiah(payment.amount)})"
        ),
    }
    return ConversionResult(
        payment=replace(payment, **changes),
        changes=changes,
        original_amount=payment.amount,
        new_amount=SESSION_FEE,
        message="Membership converted back to daily session fee.",
    )


# ----------------------------------------------------------------------
# Duplicate detection


@dataclass
class DuplicateAction:
    payment_id: str
    reason: str


@dataclass
class DuplicatePlan:
    member_id: str
    actions: List[DuplicateAction] = field(default_factory=list)

    @property
    def payment_ids(self) -> List[str]:
        return [action.payment_id for action in self.actions]


def plan_duplicate_cleanup(member_id: str, payments: Iterable[Payment], month: dt.date) -> DuplicatePlan:
    """Decide which of a member's pending fees in ``month`` are duplicates.

    Session fees repeated on one date keep the earliest row; repeated
    memberships keep the latest; a membership supersedes any session fee of
    the same month.
    """

    first, last = month_bounds(month)
    start, end = first.isoformat(), last.isoformat()
    candidates = [
        payment
        for payment in payments
        if payment.member_id == member_id
        and payment.status == "pending"
        and start <= payment.due_date <= end
    ]
    candidates.sort(key=lambda item: item.created_at)

    plan = DuplicatePlan(member_id=member_id)
    removed: set[str] = set()

    sessions = [item for item in candidates if item.type != "monthly" and classify(item) == SESSION]
    memberships = [item for item in candidates if item.type == "monthly" or classify(item) == MEMBERSHIP]

    by_date: Dict[str, List[Payment]] = {}
    for item in sessions:
        by_date.setdefault(item.due_date, []).append(item)
    for date_value, items in by_date.items():
        for duplicate in items[1:]:
            plan.actions.append(DuplicateAction(duplicate.id, f"duplicate session payment on {date_value}"))
            removed.add(duplicate.id)

    for duplicate in memberships[:-1]:
        plan.actions.append(DuplicateAction(duplicate.id, "duplicate membership payment"))
        removed.add(duplicate.id)

    if memberships:
        for item in sessions:
            if item.id in removed:
                continue
            plan.actions.append(DuplicateAction(item.id, "session payment superseded by membership"))
            removed.add(item.id)

    return plan


def has_membership_in_month(payments: Iterable[Payment], member_id: str, day: dt.date) -> bool:
    first, last = month_bounds(day)
    start, end = first.isoformat(), last.isoformat()
    return any(
        payment.member_id == member_id
        and payment.type == "monthly"
        and payment.status in ("pending", "paid")
        and start <= payment.due_date <= end
        for payment in payments
    )


# ----------------------------------------------------------------------
# Monthly membership quotes and status


def saturday_sessions(year: int, month: int) -> List[dt.date]:
    first, last = month_bounds(dt.date(year, month, 1))
    days: List[dt.date] = []
    current = first
    while current <= last:
        if current.weekday() == calendar.SATURDAY:
            days.append(current)
        current += dt.timedelta(days=1)
    return days


def monthly_fee_quote(year: int, month: int) -> Dict[str, Any]:
    """Membership fee for a calendar month, with the Saturdays it covers."""

    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month {month}")
    if not 2000 <= year <= 2100:
        raise ValidationError(f"Invalid year {year}")

    first, last = month_bounds(dt.date(year, month, 1))
    sessions = saturday_sessions(year, month)
    label = month_label(first)
    return {
        "year": year,
        "month": month,
        "monthName": label,
        "saturdayCount": len(sessions),
        "saturdays": [day.isoformat() for day in sessions],
        "amount": membership_fee(len(sessions)),
        "dueDate": first.isoformat(),
        "expiryDate": last.isoformat(),
        "description": f"💳 Monthly Membership - {label} ({len(sessions)} weeks)",
    }


def membership_status(member_id: str, payments: Iterable[Payment], day: dt.date) -> Dict[str, Any]:
    """Membership of one member for the month containing ``day``.

    Only a paid membership counts as active; a pending one is reported so the
    member is not billed twice for the same month.
    """

    first, last = month_bounds(day)
    start, end = first.isoformat(), last.isoformat()
    in_month = [
        payment
        for payment in payments
        if payment.member_id == member_id
        and payment.type == "monthly"
        and payment.status in ("pending", "paid")
        and start <= payment.due_date <= end
    ]
    paid = [payment for payment in in_month if payment.status == "paid"]
    current = (paid or in_month or [None])[-1]

    return {
        "memberId": member_id,
        "year": day.year,
        "month": day.month,
        "monthName": month_label(day),
        "hasMembership": bool(paid),
        "pendingMembership": bool(in_month) and not paid,
        "paymentId": current.id if current else None,
        "amount": current.amount if current else 0,
        "saturdayCount": saturday_count(day.year, day.month),
        "expiryDate": end,
    }
