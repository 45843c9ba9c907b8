"""
Bracket endpoints: schedule generation, result submission and read-side views.
Engine errors are translated to HTTP status codes here; the services never see HTTP.
"""
import random
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator, model_validator
from sqlmodel import Session

from bracket_service.database import get_session
from bracket_service.models.event import Event, EventStatus
from bracket_service.models.match import Match, MatchStage, MatchStatus
from bracket_service.routes.events import EntrantPayload
from bracket_service.services import advancement_service
from bracket_service.services.entrants import Entrant
from bracket_service.services.errors import (
    BracketError,
    BracketNotReady,
    ChampionAlreadyDeclared,
    EventNotFound,
    InsufficientEntrants,
    InvalidEntrants,
    InvalidScore,
    MatchAlreadyResolved,
    MatchNotFound,
)
from bracket_service.services.schedule_generator import approved_entrants, generate_schedule
from bracket_service.services.standings import get_standings

router = APIRouter()

_HTTP_STATUS = (
    (EventNotFound, 404),
    (MatchNotFound, 404),
    (MatchAlreadyResolved, 409),
    (ChampionAlreadyDeclared, 409),
    (BracketNotReady, 409),
    (InsufficientEntrants, 422),
    (InvalidEntrants, 422),
    (InvalidScore, 422),
)


def _http_error(exc: BracketError) -> HTTPException:
    for error_type, status_code in _HTTP_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


# ============================================================================
# Request / response models
# ============================================================================


class ScheduleRequest(BaseModel):
    # Defaults to the event's approved participants
    entrants: Optional[List[EntrantPayload]] = None
    seed: Optional[int] = None


class ResultSubmit(BaseModel):
    score_a: Optional[int] = None
    score_b: Optional[int] = None
    forfeiting_slot: Optional[str] = None

    @field_validator("forfeiting_slot")
    @classmethod
    def validate_forfeiting_slot(cls, v):
        if v is None:
            return v
        v = v.strip().lower()
        if v not in ("a", "b"):
            raise ValueError("forfeiting_slot must be 'a' or 'b'")
        return v

    @model_validator(mode="after")
    def validate_shape(self):
        has_score = self.score_a is not None or self.score_b is not None
        if self.forfeiting_slot is not None:
            if has_score:
                raise ValueError("Submit either scores or forfeiting_slot, not both")
            return self
        if self.score_a is None or self.score_b is None:
            raise ValueError("score_a and score_b are both required")
        if self.score_a < 0 or self.score_b < 0:
            raise ValueError("scores must be non-negative")
        return self


class AdvanceRequest(BaseModel):
    stage: MatchStage
    round_number: int

    @field_validator("round_number")
    @classmethod
    def validate_round_number(cls, v):
        if v < 1:
            raise ValueError("round_number must be >= 1")
        return v


class MatchResponse(BaseModel):
    id: int
    event_id: int
    stage: MatchStage
    round_number: int
    sequence_in_round: int
    slot_a: EntrantPayload
    slot_b: Optional[EntrantPayload] = None
    score_a: Optional[int] = None
    score_b: Optional[int] = None
    winner: Optional[EntrantPayload] = None
    status: MatchStatus
    is_bye: bool
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class BracketResponse(BaseModel):
    event_id: int
    status: EventStatus
    champion: Optional[EntrantPayload] = None
    matches: List[MatchResponse]


class AdvancementResponse(BaseModel):
    match: Optional[MatchResponse] = None
    created: List[MatchResponse] = []
    eliminated: List[EntrantPayload] = []
    champion: Optional[EntrantPayload] = None


class StandingResponse(BaseModel):
    rank: int
    entrant: EntrantPayload
    wins: int
    losses: int
    points_for: int
    points_against: int
    point_differential: int
    matches_played: int
    win_rate: float


def _entrant(e: Optional[Entrant]) -> Optional[EntrantPayload]:
    if e is None:
        return None
    return EntrantPayload(kind=e.kind, id=e.id)


def _match_to_response(m: Match) -> MatchResponse:
    return MatchResponse(
        id=m.id,
        event_id=m.event_id,
        stage=m.stage,
        round_number=m.round_number,
        sequence_in_round=m.sequence_in_round,
        slot_a=_entrant(m.slot_a),
        slot_b=_entrant(m.slot_b),
        score_a=m.score_a,
        score_b=m.score_b,
        winner=_entrant(m.winner),
        status=m.status,
        is_bye=m.is_bye,
        started_at=m.started_at,
        completed_at=m.completed_at,
    )


def _result_to_response(result: advancement_service.AdvancementResult) -> AdvancementResponse:
    return AdvancementResponse(
        match=_match_to_response(result.match) if result.match is not None else None,
        created=[_match_to_response(m) for m in result.created],
        eliminated=[_entrant(e) for e in result.eliminated],
        champion=_entrant(result.champion),
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/events/{event_id}/schedule", response_model=List[MatchResponse], status_code=201)
def create_schedule(event_id: int, payload: Optional[ScheduleRequest] = None, session: Session = Depends(get_session)):
    """(Re)generate winners round 1. Destroys any existing bracket for the event."""
    payload = payload or ScheduleRequest()
    if payload.entrants is not None:
        entrants = [Entrant(kind=e.kind, id=e.id) for e in payload.entrants]
    else:
        entrants = approved_entrants(session, event_id)

    rng = random.Random(payload.seed) if payload.seed is not None else None
    try:
        matches = generate_schedule(session, event_id, entrants, rng=rng)
    except BracketError as e:
        raise _http_error(e) from e
    return [_match_to_response(m) for m in matches]


@router.get("/events/{event_id}/bracket", response_model=BracketResponse)
def get_bracket(event_id: int, session: Session = Depends(get_session)):
    """All matches: winners, losers, grand final; each by round then sequence"""
    event = session.get(Event, event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")

    matches = advancement_service.list_bracket(session, event_id)
    return BracketResponse(
        event_id=event.id,
        status=event.status,
        champion=_entrant(event.champion),
        matches=[_match_to_response(m) for m in matches],
    )


@router.post("/matches/{match_id}/start", response_model=MatchResponse)
def start_match(match_id: int, session: Session = Depends(get_session)):
    """Mark a scheduled match as in progress"""
    try:
        match = advancement_service.start_match(session, match_id)
    except BracketError as e:
        raise _http_error(e) from e
    return _match_to_response(match)


@router.post("/matches/{match_id}/result", response_model=AdvancementResponse)
def submit_result(match_id: int, payload: ResultSubmit, session: Session = Depends(get_session)):
    """Record a score or forfeit; the bracket advances when the match's round is complete"""
    try:
        result = advancement_service.submit_result(
            session,
            match_id,
            score_a=payload.score_a,
            score_b=payload.score_b,
            forfeiting_slot=payload.forfeiting_slot,
        )
    except BracketError as e:
        raise _http_error(e) from e
    return _result_to_response(result)


@router.post("/events/{event_id}/bracket/advance", response_model=AdvancementResponse)
def advance_bracket(event_id: int, payload: AdvanceRequest, session: Session = Depends(get_session)):
    """Re-run next-round synthesis for a completed round (repair after a failed advancement)"""
    try:
        result = advancement_service.advance_round(session, event_id, payload.stage, payload.round_number)
    except BracketError as e:
        raise _http_error(e) from e
    return _result_to_response(result)


@router.get("/events/{event_id}/standings", response_model=List[StandingResponse])
def event_standings(event_id: int, session: Session = Depends(get_session)):
    """Wins/losses/points leaderboard; valid mid-tournament"""
    try:
        rows = get_standings(session, event_id)
    except BracketError as e:
        raise _http_error(e) from e
    return [
        StandingResponse(
            rank=r.rank,
            entrant=_entrant(r.entrant),
            wins=r.wins,
            losses=r.losses,
            points_for=r.points_for,
            points_against=r.points_against,
            point_differential=r.point_differential,
            matches_played=r.matches_played,
            win_rate=r.win_rate,
        )
        for r in rows
    ]
