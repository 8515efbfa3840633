"""Club domain models and rules reused by the API."""

from .assistant import ChatAssistant
from .loader import DataStore
from .match import Match, MatchResult, Participant, did_win
from .membership import ConversionResult, convert_membership_to_daily, convert_session_to_membership
from .payment import (
    Payment,
    SessionBucket,
    can_convert_to_daily,
    can_convert_to_membership,
    classify,
    group_key,
    group_payments,
)

__all__ = [
    "ChatAssistant",
    "ConversionResult",
    "DataStore",
    "Match",
    "MatchResult",
    "Participant",
    "Payment",
    "SessionBucket",
    "can_convert_to_daily",
    "can_convert_to_membership",
    "classify",
    "convert_membership_to_daily",
    "convert_session_to_membership",
    "did_win",
    "group_key",
    "group_payments",
]
