from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .membership import (
    SESSION_FEE,
    SHUTTLECOCK_PRICE,
    format_rupiah,
    has_membership_in_month,
    membership_fee,
    saturday_count,
)
from .payment import MEMBERSHIP, SESSION, Payment, classify

TEAMS = ("team1", "team2")


@dataclass
class Participant:
    match_id: str
    member_id: str
    team: str
    position: Optional[str] = None


@dataclass
class MatchResult:
    match_id: str
    team1_score: Optional[int] = None
    team2_score: Optional[int] = None
    winner_team: Optional[str] = None

    def score_for(self, team: str) -> Optional[int]:
        return self.team1_score if team == "team1" else self.team2_score


@dataclass
class Match:
    id: str
    date: str
    time: str = ""
    shuttlecock_count: int = 1
    status: str = "completed"
    participants: List[Participant] = field(default_factory=list)
    result: Optional[MatchResult] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Match":
        match_id = str(row.get("id") or "")
        participants = [
            Participant(
                match_id=match_id,
                member_id=str(item.get("member_id") or ""),
                team=str(item.get("team") or ""),
                position=item.get("position"),
            )
            for item in row.get("participants") or []
            if isinstance(item, dict)
        ]

        result_raw = row.get("result")
        result = None
        if isinstance(result_raw, dict):
            result = MatchResult(
                match_id=match_id,
                team1_score=_optional_int(result_raw.get("team1_score")),
                team2_score=_optional_int(result_raw.get("team2_score")),
                winner_team=result_raw.get("winner_team") or None,
            )

        return cls(
            id=match_id,
            date=str(row.get("date") or "")[:10],
            time=str(row.get("time") or ""),
            shuttlecock_count=_optional_int(row.get("shuttlecock_count")) or 1,
            status=str(row.get("status") or "completed"),
            participants=participants,
            result=result,
        )

    def participant(self, member_id: str) -> Optional[Participant]:
        for item in self.participants:
            if item.member_id == member_id:
                return item
        return None


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def winner_from_scores(team1_score: int, team2_score: int) -> Optional[str]:
    if team1_score > team2_score:
        return "team1"
    if team2_score > team1_score:
        return "team2"
    return None


def did_win(participant: Participant, result: Optional[MatchResult]) -> Optional[bool]:
    """Whether the participant's team won.

    Scores decide whenever both are recorded; the stored ``winner_team`` is
    only consulted when they are not. ``None`` means the match has no result.
    """

    if result is None:
        return None

    if result.team1_score is not None and result.team2_score is not None:
        own = result.score_for(participant.team)
        opponent = result.score_for("team2" if participant.team == "team1" else "team1")
        # A tie is not a win.
        return own > opponent

    return result.winner_team == participant.team


def performance_summary(member_id: str, matches: Iterable[Match]) -> Dict[str, Any]:
    outcomes: List[bool] = []
    played = 0
    undecided = 0
    for match in sorted(matches, key=lambda item: (item.date, item.time)):
        participant = match.participant(member_id)
        if participant is None:
            continue
        played += 1
        outcome = did_win(participant, match.result)
        if outcome is None:
            undecided += 1
            continue
        outcomes.append(outcome)

    wins = sum(1 for outcome in outcomes if outcome)
    losses = len(outcomes) - wins
    win_rate = round(wins / len(outcomes) * 100, 1) if outcomes else 0.0

    return {
        "memberId": member_id,
        "matchesPlayed": played,
        "wins": wins,
        "losses": losses,
        "undecided": undecided,
        "winRate": win_rate,
        "recentForm": _recent_form(outcomes[-5:]),
    }


def _recent_form(recent: List[bool]) -> str:
    if len(recent) < 3:
        return "stable"
    half = len(recent) // 2
    first, second = recent[:half], recent[half:]
    first_rate = sum(first) / len(first)
    second_rate = sum(second) / len(second)
    if second_rate > first_rate + 0.2:
        return "improving"
    if second_rate < first_rate - 0.2:
        return "declining"
    return "stable"


# ----------------------------------------------------------------------
# Fee planning for a recorded match


def plan_match_payments(
    match: Match,
    existing_payments: Iterable[Payment],
) -> List[Dict[str, Any]]:
    """Payment rows to create after ``match`` was recorded.

    Every participant owes the shuttlecock fee. The session fee is added only
    for participants without a membership in the match month and without a
    session or membership fee already due on the match date.
    """

    existing = list(existing_payments)
    match_day = dt.date.fromisoformat(match.date)
    weeks = saturday_count(match_day.year, match_day.month)
    fee_option = membership_fee(weeks)
    shuttlecock_fee = match.shuttlecock_count * SHUTTLECOCK_PRICE

    rows: List[Dict[str, Any]] = []
    for participant in match.participants:
        member_id = participant.member_id
        rows.append(
            {
                "member_id": member_id,
                "amount": shuttlecock_fee,
                "type": "daily",
                "status": "pending",
                "due_date": match.date,
                "match_id": match.id,
                "notes": (
                    f"🏸 Shuttlecock Fee - Match ({match.date}) - {match.shuttlecock_count} "
                    f"shuttlecock(s) @ Rp3,000 each"
                ),
            }
        )

        if has_membership_in_month(existing, member_id, match_day):
            continue
        already_due = any(
            payment.member_id == member_id
            and payment.due_date == match.date
            and classify(payment) in (SESSION, MEMBERSHIP)
            for payment in existing
        )
        if already_due:
            continue

        rows.append(
            {
                "member_id": member_id,
                "amount": SESSION_FEE,
                "type": "daily",
                "status": "pending",
                "due_date": match.date,
                "match_id": match.id,
                "notes": (
                    f"📅 Daily Session Fee ({match.date}) - Can convert to monthly membership "
                    f"({format_rupiah(fee_option)}) for {weeks} weeks"
                ),
            }
        )

    return rows
