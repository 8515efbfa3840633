from __future__ import annotations

import datetime as dt
import logging
import os
from functools import lru_cache
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from dlob_core import (
    ChatAssistant,
    ConversionResult,
    DataStore,
    Match,
    Payment,
    SessionBucket,
    can_convert_to_daily,
    can_convert_to_membership,
    classify,
)
from dlob_core.errors import DlobError, Forbidden, InvalidState, NotFound, UpstreamUnavailable, ValidationError
from dlob_core.membership import monthly_fee_quote

app = FastAPI(title="DLOB Badminton Club API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = logging.getLogger(__name__)

_ERROR_STATUS = (
    (ValidationError, 400),
    (Forbidden, 403),
    (NotFound, 404),
    (InvalidState, 409),
    (UpstreamUnavailable, 502),
)


class MemberModel(BaseModel):
    id: str
    name: str
    email: str
    phone: Optional[str] = None
    role: str = "member"
    membership_type: Optional[str] = Field(default=None, alias="membershipType")
    is_active: bool = Field(default=True, alias="isActive")

    model_config = ConfigDict(populate_by_name=True)


class MemberCreate(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None
    role: str = "member"
    membership_type: Optional[str] = Field(default=None, alias="membershipType")

    model_config = ConfigDict(populate_by_name=True)


class MemberListResponse(BaseModel):
    members: List[MemberModel]


class ParticipantModel(BaseModel):
    member_id: str = Field(alias="memberId")
    team: str
    position: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class MatchResultModel(BaseModel):
    team1_score: Optional[int] = Field(default=None, alias="team1Score")
    team2_score: Optional[int] = Field(default=None, alias="team2Score")
    winner_team: Optional[str] = Field(default=None, alias="winnerTeam")

    model_config = ConfigDict(populate_by_name=True)


class MatchModel(BaseModel):
    id: str
    date: str
    time: str
    shuttlecock_count: int = Field(alias="shuttlecockCount")
    status: str
    participants: List[ParticipantModel]
    result: Optional[MatchResultModel] = None

    model_config = ConfigDict(populate_by_name=True)


class MatchCreate(BaseModel):
    date: dt.date
    time: str
    field_number: Optional[int] = Field(default=None, alias="fieldNumber")
    shuttlecock_count: int = Field(default=1, alias="shuttlecockCount", ge=1)
    participants: List[ParticipantModel]
    team1_score: Optional[int] = Field(default=None, alias="team1Score", ge=0)
    team2_score: Optional[int] = Field(default=None, alias="team2Score", ge=0)

    model_config = ConfigDict(populate_by_name=True)


class PaymentModel(BaseModel):
    id: str
    member_id: str = Field(alias="memberId")
    amount: int
    type: str
    status: str
    due_date: str = Field(alias="dueDate")
    notes: str = ""
    match_id: Optional[str] = Field(default=None, alias="matchId")
    category: str
    can_convert_to_membership: bool = Field(alias="canConvertToMembership")
    can_convert_to_daily: bool = Field(alias="canConvertToDaily")

    model_config = ConfigDict(populate_by_name=True)


class PaymentStatsModel(BaseModel):
    total: int
    pending: int
    paid: int
    partial: int
    overdue: int
    total_amount: int = Field(alias="totalAmount")
    total_paid: int = Field(alias="totalPaid")
    total_pending: int = Field(alias="totalPending")

    model_config = ConfigDict(populate_by_name=True)


class PaymentListResponse(BaseModel):
    payments: List[PaymentModel]
    stats: PaymentStatsModel


class PaymentCreate(BaseModel):
    member_id: str = Field(alias="memberId")
    amount: int = Field(gt=0)
    type: str
    due_date: dt.date = Field(alias="dueDate")
    notes: Optional[str] = None
    match_id: Optional[str] = Field(default=None, alias="matchId")

    model_config = ConfigDict(populate_by_name=True)


class PaymentUpdate(BaseModel):
    status: Optional[str] = None
    paid_date: Optional[dt.date] = Field(default=None, alias="paidDate")
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")
    notes: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class SessionBucketModel(BaseModel):
    key: str
    member_name: str = Field(alias="memberName")
    due_date: str = Field(alias="dueDate")
    member_ids: List[str] = Field(alias="memberIds")
    session_payment: Optional[PaymentModel] = Field(default=None, alias="sessionPayment")
    membership_payment: Optional[PaymentModel] = Field(default=None, alias="membershipPayment")
    shuttlecock_payments: List[PaymentModel] = Field(alias="shuttlecockPayments")
    other_payments: List[PaymentModel] = Field(alias="otherPayments")
    shuttlecock_total: int = Field(alias="shuttlecockTotal")

    model_config = ConfigDict(populate_by_name=True)


class SessionGroupsResponse(BaseModel):
    groups: List[SessionBucketModel]


class ConversionResponse(BaseModel):
    success: bool = True
    payment: PaymentModel
    original_amount: int = Field(alias="originalAmount")
    new_amount: int = Field(alias="newAmount")
    saturday_count: Optional[int] = Field(default=None, alias="saturdayCount")
    month_name: Optional[str] = Field(default=None, alias="monthName")
    message: str

    model_config = ConfigDict(populate_by_name=True)


class CleanupRequest(BaseModel):
    member_id: Optional[str] = Field(default=None, alias="memberId")
    dry_run: bool = Field(default=True, alias="dryRun")
    month: Optional[dt.date] = None

    model_config = ConfigDict(populate_by_name=True)


class CheckinRequest(BaseModel):
    member_id: Optional[str] = Field(default=None, alias="memberId")
    date: Optional[dt.date] = None
    method: str = "manual"

    model_config = ConfigDict(populate_by_name=True)


class MembershipQuoteModel(BaseModel):
    year: int
    month: int
    month_name: str = Field(alias="monthName")
    saturday_count: int = Field(alias="saturdayCount")
    saturdays: List[str]
    amount: int
    due_date: str = Field(alias="dueDate")
    expiry_date: str = Field(alias="expiryDate")
    description: str

    model_config = ConfigDict(populate_by_name=True)


class MembershipRequest(BaseModel):
    member_id: Optional[str] = Field(default=None, alias="memberId")
    year: int
    month: int

    model_config = ConfigDict(populate_by_name=True)


class MembershipCreated(BaseModel):
    payment: PaymentModel
    quote: MembershipQuoteModel


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    context: Optional[Dict[str, Any]] = None


class ChatResponse(BaseModel):
    response: str
    source: str


@lru_cache(maxsize=1)
def store() -> DataStore:
    return DataStore()


@lru_cache(maxsize=1)
def assistant() -> ChatAssistant:
    return ChatAssistant()


def _http_error(exc: DlobError) -> HTTPException:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def require_user(authorization: str = Header(default="")) -> Dict[str, Any]:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Authorization token is required")

    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Authorization token is required")

    supabase_url = os.getenv("SUPABASE_URL", "").rstrip("/")
    supabase_anon_key = os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_SERVICE_KEY")
    if not supabase_url or not supabase_anon_key:
        raise HTTPException(status_code=500, detail="Supabase configuration is incomplete")

    try:
        with httpx.Client(timeout=10.0) as client:
            response = client.get(
                f"{supabase_url}/auth/v1/user",
                headers={"Authorization": f"Bearer {token}", "apikey": supabase_anon_key},
            )
            response.raise_for_status()
            payload = response.json()
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code if exc.response is not None else 502
        if status in (401, 403):
            raise HTTPException(status_code=401, detail="Invalid authentication token") from exc
        raise HTTPException(status_code=502, detail="Failed to verify authentication token") from exc
    except httpx.HTTPError as exc:
        raise HTTPException(status_code=502, detail="Failed to verify authentication token") from exc

    user_id = str(payload.get("id") or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid authentication token")

    payload["id"] = user_id
    return payload


def current_member(user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    try:
        member = store().find_member_by_email(str(user.get("email") or ""))
    except DlobError as exc:
        raise _http_error(exc) from exc
    if member is None:
        raise HTTPException(status_code=403, detail="No member profile for this account")
    return member


def require_admin(member: Dict[str, Any] = Depends(current_member)) -> Dict[str, Any]:
    if member.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return member


def _is_admin(member: Dict[str, Any]) -> bool:
    return member.get("role") == "admin"


def _payment_model(payment: Payment) -> PaymentModel:
    return PaymentModel(
        id=payment.id,
        memberId=payment.member_id,
        amount=payment.amount,
        type=payment.type,
        status=payment.status,
        dueDate=payment.due_date,
        notes=payment.notes,
        matchId=payment.match_id,
        category=classify(payment),
        canConvertToMembership=can_convert_to_membership(payment),
        canConvertToDaily=can_convert_to_daily(payment),
    )


def _match_model(match: Match) -> MatchModel:
    result = None
    if match.result is not None:
        result = MatchResultModel(
            team1Score=match.result.team1_score,
            team2Score=match.result.team2_score,
            winnerTeam=match.result.winner_team,
        )
    return MatchModel(
        id=match.id,
        date=match.date,
        time=match.time,
        shuttlecockCount=match.shuttlecock_count,
        status=match.status,
        participants=[
            ParticipantModel(memberId=item.member_id, team=item.team, position=item.position)
            for item in match.participants
        ],
        result=result,
    )


def _bucket_model(bucket: SessionBucket) -> SessionBucketModel:
    return SessionBucketModel(
        key=bucket.key,
        memberName=bucket.member_name,
        dueDate=bucket.due_date,
        memberIds=bucket.member_ids,
        sessionPayment=_payment_model(bucket.session_payment) if bucket.session_payment else None,
        membershipPayment=_payment_model(bucket.membership_payment) if bucket.membership_payment else None,
        shuttlecockPayments=[_payment_model(item) for item in bucket.shuttlecock_payments],
        otherPayments=[_payment_model(item) for item in bucket.other_payments],
        shuttlecockTotal=bucket.shuttlecock_total,
    )


def _check_self_or_admin(member: Dict[str, Any], member_id: str) -> None:
    if member_id != member["id"] and not _is_admin(member):
        raise HTTPException(status_code=403, detail="Members can only view their own records")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/auth/me", response_model=MemberModel)
def auth_me(member: Dict[str, Any] = Depends(current_member)) -> MemberModel:
    return MemberModel(**member)


@app.get("/members", response_model=MemberListResponse)
def list_members(
    active_only: bool = Query(default=False, alias="activeOnly"),
    _: Dict[str, Any] = Depends(current_member),
) -> MemberListResponse:
    try:
        members = store().list_members(active_only=active_only)
    except DlobError as exc:
        raise _http_error(exc) from exc
    return MemberListResponse(members=[MemberModel(**member) for member in members])


@app.post("/members", response_model=MemberModel, status_code=201)
def create_member(payload: MemberCreate, _: Dict[str, Any] = Depends(require_admin)) -> MemberModel:
    try:
        member = store().create_member(payload.model_dump(by_alias=True))
    except DlobError as exc:
        raise _http_error(exc) from exc
    return MemberModel(**member)


@app.get("/matches", response_model=List[MatchModel])
def list_matches(
    date_from: Optional[dt.date] = Query(default=None, alias="from"),
    date_to: Optional[dt.date] = Query(default=None, alias="to"),
    member_id: Optional[str] = Query(default=None, alias="memberId"),
    _: Dict[str, Any] = Depends(current_member),
) -> List[MatchModel]:
    try:
        matches = store().list_matches(
            date_from=date_from.isoformat() if date_from else None,
            date_to=date_to.isoformat() if date_to else None,
            member_id=member_id,
        )
    except DlobError as exc:
        raise _http_error(exc) from exc
    return [_match_model(match) for match in matches]


@app.post("/matches", status_code=201)
def record_match(payload: MatchCreate, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    body = payload.model_dump(by_alias=True)
    body["date"] = payload.date.isoformat()
    try:
        recorded = store().record_match(body)
    except DlobError as exc:
        raise _http_error(exc) from exc
    return {
        "match": _match_model(recorded["match"]).model_dump(by_alias=True),
        "payments": [_payment_model(item).model_dump(by_alias=True) for item in recorded["payments"]],
    }


@app.get("/payments", response_model=PaymentListResponse)
def list_payments(
    member_id: Optional[str] = Query(default=None, alias="memberId"),
    status: Optional[str] = Query(default=None),
    payment_type: Optional[str] = Query(default=None, alias="type"),
    member: Dict[str, Any] = Depends(current_member),
) -> PaymentListResponse:
    if not _is_admin(member):
        member_id = member["id"]
    try:
        payments = store().list_payments(member_id=member_id, status=status, payment_type=payment_type)
        stats = store().payment_summary(payments)
    except DlobError as exc:
        raise _http_error(exc) from exc
    return PaymentListResponse(
        payments=[_payment_model(item) for item in payments],
        stats=PaymentStatsModel(**stats),
    )


@app.post("/payments", response_model=PaymentModel, status_code=201)
def create_payment(payload: PaymentCreate, _: Dict[str, Any] = Depends(require_admin)) -> PaymentModel:
    body = payload.model_dump(by_alias=True)
    body["dueDate"] = payload.due_date.isoformat()
    try:
        payment = store().create_payment(body)
    except DlobError as exc:
        raise _http_error(exc) from exc
    return _payment_model(payment)


@app.get("/payments/groups", response_model=SessionGroupsResponse)
def payment_groups(
    member_id: Optional[str] = Query(default=None, alias="memberId"),
    member: Dict[str, Any] = Depends(current_member),
) -> SessionGroupsResponse:
    if not _is_admin(member):
        member_id = member["id"]
    try:
        buckets = store().payment_groups(member_id=member_id)
    except DlobError as exc:
        raise _http_error(exc) from exc
    return SessionGroupsResponse(groups=[_bucket_model(bucket) for bucket in buckets])


@app.post("/payments/cleanup-duplicates")
def cleanup_duplicates(payload: CleanupRequest, _: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    try:
        summary = store().cleanup_duplicates(member_id=payload.member_id, dry_run=payload.dry_run, month=payload.month)
    except DlobError as exc:
        raise _http_error(exc) from exc
    if not payload.dry_run:
        logger.info("Duplicate cleanup removed %d payments", summary["removed"])
    return summary


@app.patch("/payments/{payment_id}", response_model=PaymentModel)
def update_payment(
    payment_id: str,
    payload: PaymentUpdate,
    _: Dict[str, Any] = Depends(require_admin),
) -> PaymentModel:
    body = payload.model_dump(by_alias=True, exclude_none=True)
    if payload.paid_date:
        body["paidDate"] = payload.paid_date.isoformat()
    try:
        payment = store().update_payment(payment_id, body)
    except DlobError as exc:
        raise _http_error(exc) from exc
    return _payment_model(payment)


def _conversion_response(result: ConversionResult) -> ConversionResponse:
    return ConversionResponse(
        payment=_payment_model(result.payment),
        originalAmount=result.original_amount,
        newAmount=result.new_amount,
        saturdayCount=result.saturday_count,
        monthName=result.month_name,
        message=result.message,
    )


@app.post("/payments/{payment_id}/convert-to-membership", response_model=ConversionResponse)
def convert_to_membership(payment_id: str, member: Dict[str, Any] = Depends(current_member)) -> ConversionResponse:
    owner = None if _is_admin(member) else member["id"]
    try:
        result = store().convert_to_membership(payment_id, member_id=owner)
    except DlobError as exc:
        raise _http_error(exc) from exc
    return _conversion_response(result)


@app.post("/payments/{payment_id}/convert-to-daily", response_model=ConversionResponse)
def convert_to_daily(payment_id: str, member: Dict[str, Any] = Depends(current_member)) -> ConversionResponse:
    owner = None if _is_admin(member) else member["id"]
    try:
        result = store().convert_to_daily(payment_id, member_id=owner)
    except DlobError as exc:
        raise _http_error(exc) from exc
    return _conversion_response(result)


@app.get("/members/{member_id}/attendance")
def member_attendance(
    member_id: str,
    period: Optional[str] = Query(default=None),
    member: Dict[str, Any] = Depends(current_member),
) -> Dict[str, Any]:
    _check_self_or_admin(member, member_id)
    try:
        return store().attendance_for(member_id, period=period)
    except DlobError as exc:
        raise _http_error(exc) from exc


@app.get("/members/{member_id}/performance")
def member_performance(member_id: str, _: Dict[str, Any] = Depends(current_member)) -> Dict[str, Any]:
    try:
        return store().performance_for(member_id)
    except DlobError as exc:
        raise _http_error(exc) from exc


@app.post("/attendance/checkin", status_code=201)
def attendance_checkin(payload: CheckinRequest, member: Dict[str, Any] = Depends(current_member)) -> Dict[str, Any]:
    member_id = payload.member_id or member["id"]
    _check_self_or_admin(member, member_id)
    try:
        return store().check_in(
            member_id,
            day=payload.date.isoformat() if payload.date else None,
            method=payload.method,
        )
    except DlobError as exc:
        raise _http_error(exc) from exc


@app.post("/ai/chat", response_model=ChatResponse)
def ai_chat(payload: ChatRequest, member: Dict[str, Any] = Depends(current_member)) -> ChatResponse:
    reply = assistant().reply(payload.message, payload.context)
    store().log_ai_interaction(member["id"], "chat", {"message": payload.message}, reply)
    return ChatResponse(**reply)


@app.get("/membership/fee", response_model=MembershipQuoteModel)
def membership_fee(
    year: Optional[int] = Query(default=None),
    month: Optional[int] = Query(default=None),
    _: Dict[str, Any] = Depends(current_member),
) -> MembershipQuoteModel:
    today = dt.date.today()
    try:
        quote = monthly_fee_quote(year or today.year, month or today.month)
    except DlobError as exc:
        raise _http_error(exc) from exc
    return MembershipQuoteModel(**quote)


@app.get("/membership/status")
def membership_status(
    member_id: Optional[str] = Query(default=None, alias="memberId"),
    member: Dict[str, Any] = Depends(current_member),
) -> Dict[str, Any]:
    member_id = member_id or member["id"]
    _check_self_or_admin(member, member_id)
    try:
        return store().membership_status_for(member_id)
    except DlobError as exc:
        raise _http_error(exc) from exc


@app.post("/membership", response_model=MembershipCreated, status_code=201)
def create_membership(payload: MembershipRequest, member: Dict[str, Any] = Depends(current_member)) -> MembershipCreated:
    member_id = payload.member_id or member["id"]
    _check_self_or_admin(member, member_id)
    try:
        created = store().create_membership_payment(member_id, payload.year, payload.month)
    except DlobError as exc:
        raise _http_error(exc) from exc
    return MembershipCreated(payment=_payment_model(created["payment"]), quote=MembershipQuoteModel(**created["quote"]))
