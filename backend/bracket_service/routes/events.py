from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlmodel import Session, select

from bracket_service.database import get_session
from bracket_service.models.event import Event, EventStatus
from bracket_service.models.participant import EventParticipant, ParticipantStatus
from bracket_service.models.tournament import Tournament
from bracket_service.services.entrants import EntrantKind

router = APIRouter()


class EntrantPayload(BaseModel):
    kind: EntrantKind
    id: int

    @field_validator("id")
    @classmethod
    def validate_id(cls, v):
        if v < 1:
            raise ValueError("id must be a positive integer")
        return v


class EventCreate(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name cannot be empty")
        return v.strip()


class EventResponse(BaseModel):
    id: int
    tournament_id: int
    name: str
    status: EventStatus
    champion: Optional[EntrantPayload] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ParticipantCreate(BaseModel):
    entrant: EntrantPayload
    status: ParticipantStatus = ParticipantStatus.approved


class ParticipantResponse(BaseModel):
    id: int
    event_id: int
    entrant_kind: EntrantKind
    entrant_id: int
    status: ParticipantStatus

    class Config:
        from_attributes = True


def _event_to_response(event: Event) -> EventResponse:
    champion = event.champion
    return EventResponse(
        id=event.id,
        tournament_id=event.tournament_id,
        name=event.name,
        status=event.status,
        champion=EntrantPayload(kind=champion.kind, id=champion.id) if champion else None,
        completed_at=event.completed_at,
        created_at=event.created_at,
    )


@router.get("/tournaments/{tournament_id}/events", response_model=List[EventResponse])
def get_tournament_events(tournament_id: int, session: Session = Depends(get_session)):
    """Get all events for a tournament"""
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")

    events = session.exec(select(Event).where(Event.tournament_id == tournament_id).order_by(Event.id)).all()
    return [_event_to_response(e) for e in events]


@router.post("/tournaments/{tournament_id}/events", response_model=EventResponse, status_code=201)
def create_event(tournament_id: int, event_data: EventCreate, session: Session = Depends(get_session)):
    """Create a new event (one bracket) for a tournament"""
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")

    existing = session.exec(
        select(Event).where(Event.tournament_id == tournament_id, Event.name == event_data.name)
    ).first()
    if existing:
        raise HTTPException(status_code=409, detail=f"Event with name '{event_data.name}' already exists")

    event = Event(tournament_id=tournament_id, name=event_data.name, status=EventStatus.open.value)
    session.add(event)
    session.commit()
    session.refresh(event)
    return _event_to_response(event)


@router.get("/events/{event_id}", response_model=EventResponse)
def get_event(event_id: int, session: Session = Depends(get_session)):
    """Get an event, including its champion once the bracket has finished"""
    event = session.get(Event, event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return _event_to_response(event)


@router.get("/events/{event_id}/participants", response_model=List[ParticipantResponse])
def list_participants(event_id: int, session: Session = Depends(get_session)):
    """List registration rows for an event"""
    if not session.get(Event, event_id):
        raise HTTPException(status_code=404, detail="Event not found")
    return session.exec(
        select(EventParticipant).where(EventParticipant.event_id == event_id).order_by(EventParticipant.id)
    ).all()


@router.post("/events/{event_id}/participants", response_model=ParticipantResponse, status_code=201)
def add_participant(event_id: int, payload: ParticipantCreate, session: Session = Depends(get_session)):
    """Record an entrant's registration status for an event"""
    event = session.get(Event, event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")

    tournament = session.get(Tournament, event.tournament_id)
    if payload.entrant.kind != tournament.entrant_kind:
        raise HTTPException(
            status_code=422,
            detail=f"Tournament format '{tournament.tournament_format}' only accepts "
            f"'{tournament.entrant_kind.value}' entrants",
        )

    existing = session.exec(
        select(EventParticipant).where(
            EventParticipant.event_id == event_id,
            EventParticipant.entrant_kind == payload.entrant.kind.value,
            EventParticipant.entrant_id == payload.entrant.id,
        )
    ).first()
    if existing:
        raise HTTPException(status_code=409, detail="Entrant is already registered for this event")

    participant = EventParticipant(
        event_id=event_id,
        entrant_kind=payload.entrant.kind.value,
        entrant_id=payload.entrant.id,
        status=payload.status.value,
    )
    session.add(participant)
    session.commit()
    session.refresh(participant)
    return participant
