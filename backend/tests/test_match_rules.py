from __future__ import annotations

from typing import List, Optional

from dlob_core import Match, MatchResult, Participant, Payment, classify, did_win
from dlob_core.match import performance_summary, plan_match_payments, winner_from_scores
from dlob_core.payment import SESSION, SHUTTLECOCK


def _match(
    match_id: str,
    date: str,
    team1_score: Optional[int] = None,
    team2_score: Optional[int] = None,
    winner_team: Optional[str] = None,
    with_result: bool = True,
) -> Match:
    players = [("a", "team1"), ("b", "team1"), ("c", "team2"), ("d", "team2")]
    result = None
    if with_result:
        result = MatchResult(match_id, team1_score, team2_score, winner_team)
    return Match(
        id=match_id,
        date=date,
        time="19:00",
        shuttlecock_count=2,
        participants=[Participant(match_id, member_id, team) for member_id, team in players],
        result=result,
    )


def test_winner_from_scores() -> None:
    assert winner_from_scores(21, 15) == "team1"
    assert winner_from_scores(18, 21) == "team2"
    assert winner_from_scores(20, 20) is None


def test_scores_take_precedence_over_stored_winner() -> None:
    result = MatchResult("m1", team1_score=21, team2_score=15, winner_team="team2")
    assert did_win(Participant("m1", "a", "team1"), result) is True
    assert did_win(Participant("m1", "c", "team2"), result) is False


def test_stored_winner_used_without_scores() -> None:
    result = MatchResult("m1", winner_team="team2")
    assert did_win(Participant("m1", "c", "team2"), result) is True
    assert did_win(Participant("m1", "a", "team1"), result) is False


def test_tie_is_not_a_win_and_missing_result_is_undecided() -> None:
    tie = MatchResult("m1", team1_score=20, team2_score=20)
    assert did_win(Participant("m1", "a", "team1"), tie) is False
    assert did_win(Participant("m1", "c", "team2"), tie) is False
    assert did_win(Participant("m1", "a", "team1"), None) is None


def test_match_from_joined_row() -> None:
    match = Match.from_row(
        {
            "id": 7,
            "date": "2026-10-17T00:00:00",
            "time": "19:00",
            "shuttlecock_count": "3",
            "participants": [{"member_id": "a", "team": "team1"}],
            "result": {"team1_score": "21", "team2_score": 19, "winner_team": "team1"},
        }
    )
    assert match.id == "7"
    assert match.date == "2026-10-17"
    assert match.shuttlecock_count == 3
    assert match.participant("a") is not None
    assert match.participant("z") is None
    assert match.result is not None and match.result.team1_score == 21


def test_performance_summary_counts_and_form() -> None:
    matches: List[Match] = [
        _match("1", "2026-09-05", 10, 21),
        _match("2", "2026-09-12", 15, 21),
        _match("3", "2026-09-19", 21, 10),
        _match("4", "2026-09-26", 21, 12),
        _match("5", "2026-10-03", 21, 19),
        _match("6", "2026-10-10", with_result=False),
    ]

    summary = performance_summary("a", matches)

    assert summary["matchesPlayed"] == 6
    assert summary["wins"] == 3
    assert summary["losses"] == 2
    assert summary["undecided"] == 1
    assert summary["winRate"] == 60.0
    assert summary["recentForm"] == "improving"


def test_performance_summary_for_member_without_matches() -> None:
    summary = performance_summary("zz", [_match("1", "2026-09-05", 21, 10)])
    assert summary["matchesPlayed"] == 0
    assert summary["winRate"] == 0.0
    assert summary["recentForm"] == "stable"


def test_match_fee_plan_skips_members_and_already_billed() -> None:
    match = _match("m1", "2026-10-17", 21, 15)
    existing = [
        Payment("x1", "a", 45000, "monthly", due_date="2026-10-03", notes="💳 Monthly Membership - October 2026"),
        Payment("x2", "b", 18000, "daily", due_date="2026-10-17", notes="📅 Daily Session Fee (2026-10-17)"),
        Payment("x3", "c", 18000, "daily", status="paid", due_date="2026-10-10"),
    ]

    rows = plan_match_payments(match, existing)

    shuttlecock_rows = [row for row in rows if "Shuttlecock" in row["notes"]]
    session_rows = [row for row in rows if "Session Fee" in row["notes"]]
    assert [row["member_id"] for row in shuttlecock_rows] == ["a", "b", "c", "d"]
    assert all(row["amount"] == 6000 for row in shuttlecock_rows)
    assert [row["member_id"] for row in session_rows] == ["c", "d"]
    assert all(row["amount"] == 18000 and row["match_id"] == "m1" for row in session_rows)
    assert "Rp45.000" in session_rows[0]["notes"]
    assert "5 weeks" in session_rows[0]["notes"]

    planned = [Payment.from_row({"id": str(index), **row}) for index, row in enumerate(rows)]
    assert {classify(item) for item in planned if "Shuttlecock" in item.notes} == {SHUTTLECOCK}
    assert {classify(item) for item in planned if "Session Fee" in item.notes} == {SESSION}
