from __future__ import annotations

import datetime as dt
import json
import logging
import os
import re
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .attendance import PERIOD_MONTH, PERIODS, attendance_summary
from .errors import DlobError, InvalidState, NotFound, UpstreamUnavailable, ValidationError
from .match import TEAMS, Match, performance_summary, plan_match_payments, winner_from_scores
from .membership import (
    ConversionResult,
    convert_membership_to_daily,
    convert_session_to_membership,
    has_membership_in_month,
    membership_status,
    month_bounds,
    monthly_fee_quote,
    plan_duplicate_cleanup,
)
from .payment import (
    PAYMENT_STATUSES,
    PAYMENT_TYPES,
    Payment,
    SessionBucket,
    can_change_status,
    group_payments,
    payment_stats,
)

logger = logging.getLogger(__name__)

MEMBER_ROLES = ("admin", "member")
CHECKIN_METHODS = ("qr", "gps", "manual")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class DataStore:
    """Reads and writes club data through Supabase, or local JSON files.

    When ``SUPABASE_URL`` and a key are configured every call goes to the
    PostgREST API; otherwise rows live in ``<data_dir>/<table>_local.json``.
    Business rules live in the pure modules; this class only fetches,
    validates and persists.
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        self.data_dir = data_dir or (Path(__file__).parent.parent / "data")

        self.supabase_url = os.getenv("SUPABASE_URL", "")
        self.supabase_key = (
            os.getenv("SUPABASE_SERVICE_ROLE_KEY")
            or os.getenv("SUPABASE_SERVICE_KEY")
            or os.getenv("SUPABASE_ANON_KEY")
            or ""
        )
        self.supabase_schema = os.getenv("SUPABASE_SCHEMA", "public")
        self.members_table = os.getenv("SUPABASE_MEMBERS_TABLE", "members")
        self.matches_table = os.getenv("SUPABASE_MATCHES_TABLE", "matches")
        self.participants_table = os.getenv("SUPABASE_PARTICIPANTS_TABLE", "match_participants")
        self.results_table = os.getenv("SUPABASE_RESULTS_TABLE", "match_results")
        self.payments_table = os.getenv("SUPABASE_PAYMENTS_TABLE", "payments")
        self.attendance_table = os.getenv("SUPABASE_ATTENDANCE_TABLE", "attendance")
        self.ai_interactions_table = os.getenv("SUPABASE_AI_INTERACTIONS_TABLE", "ai_interactions")
        self.memberships_table = os.getenv("SUPABASE_MEMBERSHIPS_TABLE", "member_memberships")

        period = os.getenv("DLOB_ATTENDANCE_PERIOD", PERIOD_MONTH)
        if period not in PERIODS:
            logger.warning("Unknown DLOB_ATTENDANCE_PERIOD '%s'; using '%s'", period, PERIOD_MONTH)
            period = PERIOD_MONTH
        self.attendance_period = period

        self._local_lock = threading.Lock()

    def supabase_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    # ------------------------------------------------------------------
    # Members

    def list_members(self, active_only: bool = False) -> List[Dict[str, Any]]:
        filters = {"is_active": True} if active_only else None
        rows = self._select(self.members_table, filters, order="name.asc")
        members = [self._normalise_member_row(row) for row in rows]
        members.sort(key=lambda item: item["name"].lower())
        return members

    def member_directory(self) -> Dict[str, str]:
        return {member["id"]: member["name"] for member in self.list_members()}

    def fetch_member(self, member_id: str) -> Dict[str, Any]:
        rows = self._select(self.members_table, {"id": member_id})
        if not rows:
            raise NotFound(f"Member {member_id} not found")
        return self._normalise_member_row(rows[0])

    def find_member_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        email = (email or "").strip().lower()
        if not email:
            return None

        if self.supabase_enabled():
            pattern = email.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            rows = self._request("get", self.members_table, params={"select": "*", "email": f"ilike.{pattern}"})
            rows = rows if isinstance(rows, list) else []
        else:
            rows = self._load_local(self.members_table)

        # Legacy rows may carry mixed-case emails.
        matches = [
            row
            for row in rows
            if isinstance(row, dict) and str(row.get("email") or "").strip().lower() == email
        ]
        return self._normalise_member_row(matches[0]) if matches else None

    def create_member(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        name = str(payload.get("name") or "").strip()
        email = str(payload.get("email") or "").strip().lower()
        role = str(payload.get("role") or "member").strip().lower()
        if not name:
            raise ValidationError("Member name is required")
        if not email or "@" not in email:
            raise ValidationError("A valid email is required")
        if role not in MEMBER_ROLES:
            raise ValidationError(f"Unknown role '{role}'")

        # Email is unique per member.
        if self.find_member_by_email(email):
            raise ValidationError(f"A member with email {email} already exists")

        now = self._utc_now_iso()
        record = {
            "name": name,
            "email": email,
            "phone": str(payload.get("phone") or "").strip() or None,
            "role": role,
            "membership_type": str(payload.get("membershipType") or payload.get("membership_type") or "regular"),
            "is_active": bool(payload.get("isActive", payload.get("is_active", True))),
            "join_date": dt.date.today().isoformat(),
            "created_at": now,
            "updated_at": now,
        }
        rows = self._insert(self.members_table, [record])
        return self._normalise_member_row(rows[0])

    # ------------------------------------------------------------------
    # Matches

    def list_matches(
        self,
        date_from: str | None = None,
        date_to: str | None = None,
        member_id: str | None = None,
    ) -> List[Match]:
        match_rows = self._select(self.matches_table, order="date.desc,time.desc")
        participant_rows = self._select(self.participants_table)
        result_rows = self._select(self.results_table)

        participants_by_match: Dict[str, List[Dict[str, Any]]] = {}
        for row in participant_rows:
            participants_by_match.setdefault(str(row.get("match_id")), []).append(row)
        results_by_match = {str(row.get("match_id")): row for row in result_rows}

        matches: List[Match] = []
        for row in match_rows:
            match_id = str(row.get("id"))
            match = Match.from_row(
                {
                    **row,
                    "participants": participants_by_match.get(match_id, []),
                    "result": results_by_match.get(match_id),
                }
            )
            if date_from and match.date < date_from:
                continue
            if date_to and match.date > date_to:
                continue
            if member_id and match.participant(member_id) is None:
                continue
            matches.append(match)
        return matches

    def record_match(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Store a played match with its result and the fees it creates."""

        date_value = self._require_date(payload.get("date"), "date")
        time_value = str(payload.get("time") or "").strip()
        if not time_value:
            raise ValidationError("Match time is required")

        try:
            shuttlecock_count = int(payload.get("shuttlecockCount") or payload.get("shuttlecock_count") or 1)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Shuttlecock count must be a number") from exc
        if shuttlecock_count < 1:
            raise ValidationError("Shuttlecock count must be at least 1")

        participants = self._validate_participants(payload.get("participants"))
        team1_score = self._optional_score(payload.get("team1Score", payload.get("team1_score")), "team1")
        team2_score = self._optional_score(payload.get("team2Score", payload.get("team2_score")), "team2")

        directory = self.member_directory()
        for item in participants:
            if item["member_id"] not in directory:
                raise NotFound(f"Member {item['member_id']} not found")

        now = self._utc_now_iso()
        match_row = self._insert(
            self.matches_table,
            [
                {
                    "date": date_value,
                    "time": time_value,
                    "field_number": payload.get("fieldNumber") or payload.get("field_number") or 1,
                    "shuttlecock_count": shuttlecock_count,
                    "type": "doubles",
                    "status": "completed",
                    "created_at": now,
                }
            ],
        )[0]
        match_id = str(match_row["id"])

        try:
            participant_rows = self._insert(
                self.participants_table,
                [{**item, "match_id": match_id} for item in participants],
            )

            result_row = None
            if team1_score is not None and team2_score is not None:
                result_row = self._insert(
                    self.results_table,
                    [
                        {
                            "match_id": match_id,
                            "team1_score": team1_score,
                            "team2_score": team2_score,
                            "winner_team": winner_from_scores(team1_score, team2_score),
                            "completed_at": now,
                        }
                    ],
                )[0]

            match = Match.from_row({**match_row, "participants": participant_rows, "result": result_row})

            existing: List[Payment] = []
            for item in participants:
                existing.extend(self.list_payments(member_id=item["member_id"]))
            payment_rows = plan_match_payments(match, existing)
            for row in payment_rows:
                row["created_at"] = now
                row["updated_at"] = now
            # All fees go in one insert, so either every player is billed or none is.
            created = [Payment.from_row(row) for row in self._insert(self.payments_table, payment_rows)]
        except DlobError:
            logger.warning("Recording match %s failed; removing its partial rows", match_id)
            self._discard_match(match_id)
            raise

        logger.info("Recorded match %s on %s with %d payments", match_id, date_value, len(created))
        return {"match": match, "payments": created}

    def _discard_match(self, match_id: str) -> None:
        # Children first; the original error is what the caller sees.
        try:
            self._delete(self.results_table, [match_id], column="match_id")
            self._delete(self.participants_table, [match_id], column="match_id")
            self._delete(self.matches_table, [match_id])
        except DlobError as exc:
            logger.error("Could not remove partial rows of match %s: %s", match_id, exc)

    def _validate_participants(self, raw: Any) -> List[Dict[str, Any]]:
        if not isinstance(raw, list) or len(raw) != 4:
            raise ValidationError("A doubles match needs exactly 4 participants")

        participants: List[Dict[str, Any]] = []
        seen: set[str] = set()
        for item in raw:
            if not isinstance(item, dict):
                raise ValidationError("Participants must be objects")
            member_id = str(item.get("memberId") or item.get("member_id") or "").strip()
            team = str(item.get("team") or "").strip()
            if not member_id:
                raise ValidationError("Participant member id is required")
            if team not in TEAMS:
                raise ValidationError(f"Unknown team '{team}'")
            if member_id in seen:
                raise ValidationError(f"Member {member_id} appears twice in the match")
            seen.add(member_id)
            participants.append(
                {"member_id": member_id, "team": team, "position": item.get("position") or None}
            )

        for team in TEAMS:
            if sum(1 for item in participants if item["team"] == team) != 2:
                raise ValidationError("Each team needs exactly 2 players")
        return participants

    @staticmethod
    def _optional_score(value: Any, label: str) -> Optional[int]:
        if value is None or value == "":
            return None
        try:
            score = int(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid {label} score '{value}'") from exc
        if score < 0:
            raise ValidationError(f"Invalid {label} score '{value}'")
        return score

    # ------------------------------------------------------------------
    # Payments

    def list_payments(
        self,
        member_id: str | None = None,
        status: str | None = None,
        payment_type: str | None = None,
    ) -> List[Payment]:
        filters: Dict[str, Any] = {}
        if member_id:
            filters["member_id"] = member_id
        if status and status != "all":
            filters["status"] = status
        if payment_type:
            filters["type"] = payment_type
        rows = self._select(self.payments_table, filters or None, order="created_at.desc")
        return [Payment.from_row(row) for row in rows]

    def fetch_payment(self, payment_id: str) -> Payment:
        rows = self._select(self.payments_table, {"id": payment_id})
        if not rows:
            raise NotFound(f"Payment {payment_id} not found")
        return Payment.from_row(rows[0])

    def create_payment(self, payload: Dict[str, Any]) -> Payment:
        member_id = str(payload.get("memberId") or payload.get("member_id") or "").strip()
        if not member_id:
            raise ValidationError("Member id is required")
        self.fetch_member(member_id)

        try:
            amount = int(payload.get("amount"))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid amount '{payload.get('amount')}'") from exc
        if amount <= 0:
            raise ValidationError("Amount must be positive")

        payment_type = str(payload.get("type") or "").strip()
        if payment_type not in PAYMENT_TYPES:
            raise ValidationError(f"Unknown payment type '{payment_type}'")

        now = self._utc_now_iso()
        record = {
            "member_id": member_id,
            "amount": amount,
            "type": payment_type,
            "status": "pending",
            "due_date": self._require_date(payload.get("dueDate") or payload.get("due_date"), "due date"),
            "notes": str(payload.get("notes") or ""),
            "match_id": payload.get("matchId") or payload.get("match_id") or None,
            "created_at": now,
            "updated_at": now,
        }
        return Payment.from_row(self._insert(self.payments_table, [record])[0])

    def update_payment(self, payment_id: str, payload: Dict[str, Any]) -> Payment:
        current = self.fetch_payment(payment_id)

        fields: Dict[str, Any] = {}
        status = payload.get("status")
        if status is not None:
            if status not in PAYMENT_STATUSES:
                raise ValidationError(f"Invalid payment status '{status}'")
            if not can_change_status(current.status, status):
                raise InvalidState(f"Payment {payment_id}: cannot change status from {current.status} to {status}")
            fields["status"] = status
            if status == "paid":
                fields["paid_date"] = payload.get("paidDate") or dt.date.today().isoformat()
        if payload.get("notes") is not None:
            fields["notes"] = str(payload["notes"])
        if payload.get("paymentMethod"):
            fields["payment_method"] = str(payload["paymentMethod"])
        if not fields:
            return current

        fields["updated_at"] = self._utc_now_iso()
        rows = self._update(self.payments_table, {"id": payment_id}, fields)
        if not rows:
            raise NotFound(f"Payment {payment_id} not found")
        return Payment.from_row(rows[0])

    def convert_to_membership(
        self,
        payment_id: str,
        member_id: str | None = None,
        today: dt.date | None = None,
    ) -> ConversionResult:
        payment = self.fetch_payment(payment_id)
        result = convert_session_to_membership(payment, member_id, today)
        result.payment = self._apply_conversion(payment, result)
        first, last = month_bounds(today or dt.date.today())
        self._record_membership_status(result.payment.member_id, first, last, result.payment.id)
        logger.info(
            "Converted payment %s to membership (%s, %d Saturdays, fee %d)",
            payment_id,
            result.month_name,
            result.saturday_count,
            result.new_amount,
        )
        return result

    def convert_to_daily(self, payment_id: str, member_id: str | None = None) -> ConversionResult:
        payment = self.fetch_payment(payment_id)
        result = convert_membership_to_daily(payment, member_id)
        result.payment = self._apply_conversion(payment, result)
        logger.info("Converted payment %s back to a daily session fee", payment_id)
        return result

    def _apply_conversion(self, payment: Payment, result: ConversionResult) -> Payment:
        # One conditional update: it only matches while the row is still in the
        # state the conversion was computed from.
        guard = {"id": payment.id, "status": "pending", "type": payment.type}
        fields = {**result.changes, "updated_at": self._utc_now_iso()}
        rows = self._update(self.payments_table, guard, fields)
        if not rows:
            raise InvalidState(f"Payment {payment.id}: payment changed while converting, try again")
        return Payment.from_row(rows[0])

    # ------------------------------------------------------------------
    # Monthly memberships

    def membership_status_for(self, member_id: str, day: dt.date | None = None) -> Dict[str, Any]:
        self.fetch_member(member_id)
        return membership_status(member_id, self.list_payments(member_id=member_id), day or dt.date.today())

    def create_membership_payment(self, member_id: str, year: int, month: int) -> Dict[str, Any]:
        """Bill a member for a calendar month of membership.

        Refuses when the member already has a pending or paid membership
        for that month.
        """

        self.fetch_member(member_id)
        quote = monthly_fee_quote(year, month)
        first = dt.date(year, month, 1)
        if has_membership_in_month(self.list_payments(member_id=member_id), member_id, first):
            raise InvalidState(f"Member {member_id} already has a membership for {quote['monthName']}")

        now = self._utc_now_iso()
        record = {
            "member_id": member_id,
            "amount": quote["amount"],
            "type": "monthly",
            "status": "pending",
            "due_date": quote["dueDate"],
            "notes": quote["description"],
            "match_id": None,
            "created_at": now,
            "updated_at": now,
        }
        payment = Payment.from_row(self._insert(self.payments_table, [record])[0])
        _, last = month_bounds(first)
        self._record_membership_status(member_id, first, last, payment.id)
        logger.info("Created membership payment %s for %s (%s)", payment.id, member_id, quote["monthName"])
        return {"payment": payment, "quote": quote}

    def _record_membership_status(self, member_id: str, first: dt.date, last: dt.date, payment_id: str) -> None:
        # The payment row is authoritative; the status row is advisory.
        now = self._utc_now_iso()
        try:
            self._insert(
                self.memberships_table,
                [
                    {
                        "member_id": member_id,
                        "membership_type": "monthly",
                        "start_date": first.isoformat(),
                        "end_date": last.isoformat(),
                        "payment_id": payment_id,
                        "status": "active",
                        "created_at": now,
                        "updated_at": now,
                    }
                ],
            )
        except DlobError as exc:
            logger.warning("Could not record membership status for %s: %s", member_id, exc)

    def payment_groups(self, member_id: str | None = None) -> List[SessionBucket]:
        return group_payments(self.list_payments(member_id=member_id), self.member_directory())

    def payment_summary(self, payments: Iterable[Payment]) -> Dict[str, int]:
        return payment_stats(payments, dt.date.today().isoformat())

    def cleanup_duplicates(
        self,
        member_id: str | None = None,
        dry_run: bool = True,
        month: dt.date | None = None,
    ) -> Dict[str, Any]:
        month = month or dt.date.today()
        members = [self.fetch_member(member_id)] if member_id else self.list_members()

        results: List[Dict[str, Any]] = []
        removed = 0
        for member in members:
            payments = self.list_payments(member_id=member["id"])
            plan = plan_duplicate_cleanup(member["id"], payments, month)
            if not plan.actions:
                continue
            if not dry_run:
                self._delete(self.payments_table, plan.payment_ids)
                removed += len(plan.actions)
                for action in plan.actions:
                    logger.info("Removed payment %s: %s", action.payment_id, action.reason)
            results.append(
                {
                    "memberId": member["id"],
                    "memberName": member["name"],
                    "actions": [
                        {"paymentId": action.payment_id, "reason": action.reason} for action in plan.actions
                    ],
                }
            )

        return {
            "dryRun": dry_run,
            "month": month.strftime("%Y-%m"),
            "totalMembers": len(members),
            "membersWithDuplicates": len(results),
            "removed": removed,
            "results": results,
        }

    # ------------------------------------------------------------------
    # Attendance and performance

    def check_in(self, member_id: str, day: str | None = None, method: str = "manual") -> Dict[str, Any]:
        self.fetch_member(member_id)
        date_value = self._require_date(day or dt.date.today().isoformat(), "date")
        if method not in CHECKIN_METHODS:
            raise ValidationError(f"Unknown check-in method '{method}'")

        existing = self._select(self.attendance_table, {"member_id": member_id, "date": date_value})
        if existing:
            raise InvalidState(f"Member {member_id} already checked in on {date_value}")

        now = self._utc_now_iso()
        return self._insert(
            self.attendance_table,
            [
                {
                    "member_id": member_id,
                    "date": date_value,
                    "check_in_time": now,
                    "check_in_method": method,
                    "created_at": now,
                }
            ],
        )[0]

    def attendance_for(
        self,
        member_id: str,
        as_of: dt.date | None = None,
        period: str | None = None,
    ) -> Dict[str, Any]:
        self.fetch_member(member_id)
        period = period or self.attendance_period
        if period not in PERIODS:
            raise ValidationError(f"Unknown attendance period '{period}'")
        checkins = [str(row.get("date")) for row in self._select(self.attendance_table, {"member_id": member_id})]
        matches = self.list_matches(member_id=member_id)
        return attendance_summary(member_id, matches, as_of or dt.date.today(), period, checkins)

    def performance_for(self, member_id: str) -> Dict[str, Any]:
        self.fetch_member(member_id)
        return performance_summary(member_id, self.list_matches(member_id=member_id))

    def log_ai_interaction(
        self,
        member_id: str | None,
        interaction_type: str,
        input_data: Dict[str, Any],
        response: Dict[str, Any],
    ) -> None:
        """Best-effort audit row; failures are logged and swallowed."""

        try:
            self._insert(
                self.ai_interactions_table,
                [
                    {
                        "member_id": member_id,
                        "type": interaction_type,
                        "input_data": input_data,
                        "ai_response": response,
                        "created_at": self._utc_now_iso(),
                    }
                ],
            )
        except Exception:
            logger.exception("Failed to log AI interaction")

    # ---- row helpers -----------------------------------------------------------

    @staticmethod
    def _normalise_member_row(row: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": str(row.get("id") or ""),
            "name": str(row.get("name") or "").strip(),
            "email": str(row.get("email") or "").strip(),
            "phone": row.get("phone") or None,
            "role": str(row.get("role") or "member"),
            "membershipType": row.get("membership_type") or None,
            "isActive": bool(row.get("is_active", True)),
        }

    @staticmethod
    def _require_date(value: Any, label: str) -> str:
        text = str(value or "").strip()[:10]
        if not _DATE_RE.match(text):
            raise ValidationError(f"Invalid {label} '{value}'")
        try:
            dt.date.fromisoformat(text)
        except ValueError as exc:
            raise ValidationError(f"Invalid {label} '{value}'") from exc
        return text

    @staticmethod
    def _utc_now_iso() -> str:
        return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")

    # ---- storage backends ------------------------------------------------------

    def _select(
        self,
        table: str,
        filters: Dict[str, Any] | None = None,
        order: str | None = None,
    ) -> List[Dict[str, Any]]:
        if not self.supabase_enabled():
            rows = self._load_local(table)
            return [row for row in rows if self._row_matches(row, filters)]

        params: Dict[str, Any] = {"select": "*"}
        params.update(self._eq_params(filters))
        if order:
            params["order"] = order
        rows = self._request("get", table, params=params)
        return [row for row in rows if isinstance(row, dict)] if isinstance(rows, list) else []

    def _insert(self, table: str, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not records:
            return []
        if not self.supabase_enabled():
            with self._local_lock:
                rows = self._load_local(table)
                created = [{"id": str(uuid.uuid4()), **record} for record in records]
                rows.extend(created)
                self._save_local(table, rows)
            return created

        rows = self._request(
            "post",
            table,
            params={"select": "*"},
            json=records,
            prefer="return=representation",
        )
        if not isinstance(rows, list) or len(rows) != len(records):
            raise UpstreamUnavailable(f"Unexpected response when inserting into {table}")
        return rows

    def _update(self, table: str, filters: Dict[str, Any], fields: Dict[str, Any]) -> List[Dict[str, Any]]:
        if not self.supabase_enabled():
            with self._local_lock:
                rows = self._load_local(table)
                updated = []
                for row in rows:
                    if self._row_matches(row, filters):
                        row.update(fields)
                        updated.append(dict(row))
                if updated:
                    self._save_local(table, rows)
            return updated

        params = {"select": "*", **self._eq_params(filters)}
        rows = self._request("patch", table, params=params, json=fields, prefer="return=representation")
        return [row for row in rows if isinstance(row, dict)] if isinstance(rows, list) else []

    def _delete(self, table: str, ids: List[str], column: str = "id") -> None:
        if not ids:
            return
        if not self.supabase_enabled():
            with self._local_lock:
                rows = [row for row in self._load_local(table) if str(row.get(column)) not in ids]
                self._save_local(table, rows)
            return

        self._request("delete", table, params={column: f"in.({','.join(ids)})"})

    @staticmethod
    def _eq_params(filters: Dict[str, Any] | None) -> Dict[str, str]:
        params: Dict[str, str] = {}
        for column, value in (filters or {}).items():
            if isinstance(value, bool):
                value = "true" if value else "false"
            params[column] = f"eq.{value}"
        return params

    @staticmethod
    def _row_matches(row: Dict[str, Any], filters: Dict[str, Any] | None) -> bool:
        for column, value in (filters or {}).items():
            current = row.get(column)
            if isinstance(value, bool):
                if bool(current) != value:
                    return False
            elif str(current) != str(value):
                return False
        return True

    def _request(
        self,
        method: str,
        table: str,
        params: Dict[str, Any] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        endpoint = self._supabase_endpoint(table)
        headers = self._supabase_headers(prefer)
        kwargs: Dict[str, Any] = {"params": params or {}, "headers": headers}
        if json is not None:
            headers["Content-Type"] = "application/json"
            kwargs["json"] = json

        try:
            with httpx.Client(timeout=10.0) as client:
                response = getattr(client, method)(endpoint, **kwargs)
                response.raise_for_status()
                if method == "delete" or not response.content:
                    return []
                return response.json()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            detail = self._extract_supabase_detail(exc.response)
            if status_code is not None and 400 <= status_code < 500:
                raise ValidationError(detail or f"Supabase rejected {method} on {table} ({status_code})") from exc
            raise UpstreamUnavailable(f"Supabase {method} on {table} failed: {exc}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Supabase {method} on {table} failed: {exc}") from exc

    def _supabase_endpoint(self, table: str) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1/{table}"

    def _supabase_headers(self, prefer: str | None = None) -> Dict[str, str]:
        headers = {
            "apikey": self.supabase_key,
            "Authorization": f"Bearer {self.supabase_key}",
            "Accept": "application/json",
        }
        if self.supabase_schema and self.supabase_schema != "public":
            headers["Accept-Profile"] = self.supabase_schema
            headers["Content-Profile"] = self.supabase_schema
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _extract_supabase_detail(self, response: httpx.Response | None) -> str | None:
        if response is None:
            return None
        try:
            payload = response.json()
        except ValueError:
            text = (response.text or "").strip()
            return text or None

        if isinstance(payload, list) and payload:
            payload = payload[0]
        if isinstance(payload, dict):
            for key in ("message", "detail", "error", "hint", "code"):
                value = payload.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        return None

    def _local_path(self, table: str) -> Path:
        return self.data_dir / f"{table}_local.json"

    def _load_local(self, table: str) -> List[Dict[str, Any]]:
        data = self._read_json_file(self._local_path(table), [])
        return [row for row in data if isinstance(row, dict)] if isinstance(data, list) else []

    def _save_local(self, table: str, rows: List[Dict[str, Any]]) -> None:
        self._write_json_file(self._local_path(table), rows)

    def _read_json_file(self, path: Path, default: Any) -> Any:
        try:
            if not path.exists():
                return default
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Falling back to default for %s due to read error: %s", path, exc)
            return default

    def _write_json_file(self, path: Path, data: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True, ensure_ascii=False)
        except OSError as exc:
            raise UpstreamUnavailable(f"Failed to write local data store {path}") from exc
