"""
Standings: a read-only projection over an event's resolved matches.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List

from sqlmodel import Session, select

from bracket_service.models.event import Event
from bracket_service.models.match import RESOLVED_STATUSES, Match, MatchStatus
from bracket_service.services.entrants import Entrant
from bracket_service.services.errors import EventNotFound


@dataclass
class StandingRow:
    entrant: Entrant
    rank: int = 0
    wins: int = 0
    losses: int = 0
    points_for: int = 0
    points_against: int = 0

    @property
    def point_differential(self) -> int:
        return self.points_for - self.points_against

    @property
    def matches_played(self) -> int:
        return self.wins + self.losses

    @property
    def win_rate(self) -> float:
        """Wins as a percentage of matches played, 2 decimals."""
        if not self.matches_played:
            return 0.0
        return round(self.wins * 100.0 / self.matches_played, 2)


def _row(rows: Dict[Entrant, StandingRow], entrant: Entrant) -> StandingRow:
    if entrant not in rows:
        rows[entrant] = StandingRow(entrant=entrant)
    return rows[entrant]


def compute_standings(matches: Iterable[Match]) -> List[StandingRow]:
    """Aggregate wins, losses and points per entrant.

    Scored matches count wins, losses and points; forfeits count the win and
    the loss only; byes list the entrant without contributing. Unresolved
    matches are ignored. Rows are ordered by wins, then point differential,
    then entrant (kind, id), so the result is deterministic.
    """
    rows: Dict[Entrant, StandingRow] = {}

    for match in matches:
        if match.status not in RESOLVED_STATUSES:
            continue

        if match.is_bye:
            _row(rows, match.slot_a)
            continue

        winner = _row(rows, match.winner)
        loser = _row(rows, match.loser)
        winner.wins += 1
        loser.losses += 1

        if match.status == MatchStatus.completed.value and match.score_a is not None:
            a = _row(rows, match.slot_a)
            b = _row(rows, match.slot_b)
            a.points_for += match.score_a
            a.points_against += match.score_b
            b.points_for += match.score_b
            b.points_against += match.score_a

    ordered = sorted(
        rows.values(),
        key=lambda r: (-r.wins, -r.point_differential, r.entrant.kind.value, r.entrant.id),
    )
    for position, row in enumerate(ordered, start=1):
        row.rank = position
    return ordered


def get_standings(session: Session, event_id: int) -> List[StandingRow]:
    """Standings for one event; safe at any bracket state."""
    if not session.get(Event, event_id):
        raise EventNotFound(f"Event {event_id} not found")

    matches = session.exec(
        select(Match)
        .where(Match.event_id == event_id, Match.status.in_(RESOLVED_STATUSES))
        .order_by(Match.id)
    ).all()
    return compute_standings(matches)
