"""
Round-1 schedule generation for a double-elimination bracket.

Approved entrants are shuffled uniformly (no seeding) and paired consecutively
into winners-bracket round 1; an odd entrant count leaves the last entrant with
a bye, which is created already completed.

Generation is a destructive reset: every existing match of the event is
deleted, the champion is cleared, and eliminated participants are restored.
"""
import logging
import random
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlmodel import Session, select

from bracket_service.models.event import Event, EventStatus
from bracket_service.models.match import Match, MatchStage, MatchStatus
from bracket_service.models.participant import EventParticipant, ParticipantStatus
from bracket_service.models.tournament import Tournament
from bracket_service.services.bracket_locks import bracket_writer
from bracket_service.services.entrants import Entrant, validate_entrants
from bracket_service.services.errors import EventNotFound, InsufficientEntrants

logger = logging.getLogger(__name__)

MIN_ENTRANTS = 2


def pair_consecutive(entrants: Sequence[Entrant]) -> List[tuple]:
    """(e0, e1), (e2, e3), ...; the odd one out is paired with None (bye)."""
    pairs = []
    for i in range(0, len(entrants), 2):
        slot_b = entrants[i + 1] if i + 1 < len(entrants) else None
        pairs.append((entrants[i], slot_b))
    return pairs


def build_match(
    event_id: int,
    stage: MatchStage,
    round_number: int,
    sequence: int,
    slot_a: Entrant,
    slot_b: Optional[Entrant],
) -> Match:
    """Build (not persist) one match row. A bye is born completed with slot_a as winner."""
    match = Match(
        event_id=event_id,
        stage=stage.value,
        round_number=round_number,
        sequence_in_round=sequence,
        entrant_kind=slot_a.kind.value,
        slot_a_id=slot_a.id,
        slot_b_id=slot_b.id if slot_b is not None else None,
        status=MatchStatus.scheduled.value,
    )
    if slot_b is None:
        match.status = MatchStatus.completed.value
        match.winner_id = slot_a.id
        match.completed_at = datetime.now(timezone.utc)
    return match


def approved_entrants(session: Session, event_id: int) -> List[Entrant]:
    """Approved participants of an event, in registration order."""
    rows = session.exec(
        select(EventParticipant)
        .where(
            EventParticipant.event_id == event_id,
            EventParticipant.status == ParticipantStatus.approved.value,
        )
        .order_by(EventParticipant.id)
    ).all()
    return [row.entrant for row in rows]


def generate_schedule(
    session: Session,
    event_id: int,
    entrants: Sequence[Entrant],
    rng: Optional[random.Random] = None,
) -> List[Match]:
    """Replace the event's bracket with a freshly shuffled winners round 1.

    Returns the created matches in sequence order; exactly ceil(N/2) of them,
    all in round 1.

    Raises:
        EventNotFound: unknown event
        InsufficientEntrants: fewer than two entrants
        InvalidEntrants: duplicates or entrants of the wrong kind
    """
    event = session.get(Event, event_id)
    if not event:
        raise EventNotFound(f"Event {event_id} not found")

    if len(entrants) < MIN_ENTRANTS:
        raise InsufficientEntrants(
            f"Need at least {MIN_ENTRANTS} approved entrants to build a bracket, got {len(entrants)}"
        )

    tournament = session.get(Tournament, event.tournament_id)
    pool = validate_entrants(entrants, tournament.entrant_kind)

    (rng or random.Random()).shuffle(pool)

    with bracket_writer(event_id):
        try:
            existing = session.exec(select(Match).where(Match.event_id == event_id)).all()
            for old in existing:
                session.delete(old)
            # Deletes must hit the table before the new round-1 rows reuse their keys
            session.flush()
            deleted = len(existing)

            for participant in session.exec(
                select(EventParticipant).where(
                    EventParticipant.event_id == event_id,
                    EventParticipant.status == ParticipantStatus.eliminated.value,
                )
            ).all():
                participant.status = ParticipantStatus.approved.value
                session.add(participant)

            event.status = EventStatus.in_progress.value
            event.champion_kind = None
            event.champion_id = None
            event.completed_at = None
            session.add(event)

            matches: List[Match] = []
            for sequence, (slot_a, slot_b) in enumerate(pair_consecutive(pool), start=1):
                match = build_match(event_id, MatchStage.winners, 1, sequence, slot_a, slot_b)
                session.add(match)
                matches.append(match)

            session.commit()
        except Exception:
            session.rollback()
            raise

    for match in matches:
        session.refresh(match)

    logger.info(
        "Generated schedule for event %d: %d entrants, %d round-1 matches (%d previous matches deleted)",
        event_id,
        len(pool),
        len(matches),
        deleted,
    )
    return matches
