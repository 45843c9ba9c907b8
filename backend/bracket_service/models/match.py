from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel

from bracket_service.services.entrants import Entrant

if TYPE_CHECKING:
    from bracket_service.models.event import Event


class MatchStage(str, Enum):
    winners = "winners"
    losers = "losers"
    grand_final = "grand_final"


class MatchStatus(str, Enum):
    scheduled = "scheduled"
    in_progress = "in_progress"
    completed = "completed"
    forfeited = "forfeited"


OPEN_STATUSES = (MatchStatus.scheduled.value, MatchStatus.in_progress.value)
RESOLVED_STATUSES = (MatchStatus.completed.value, MatchStatus.forfeited.value)

# Display order of stages within a bracket
STAGE_ORDER = {
    MatchStage.winners.value: 0,
    MatchStage.losers.value: 1,
    MatchStage.grand_final.value: 2,
}


class Match(SQLModel, table=True):
    __table_args__ = (
        # One row per (stage, round, sequence): next-round synthesis inserts exactly once
        SAUniqueConstraint(
            "event_id", "stage", "round_number", "sequence_in_round", name="uq_match_event_stage_round_seq"
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    event_id: int = Field(foreign_key="event.id", index=True)
    stage: MatchStage = Field(sa_column=Column(String, nullable=False))
    round_number: int
    sequence_in_round: int

    # Slots: entrant_kind is bracket-wide; slot_b_id empty means bye
    entrant_kind: str
    slot_a_id: int
    slot_b_id: Optional[int] = Field(default=None)

    score_a: Optional[int] = Field(default=None)
    score_b: Optional[int] = Field(default=None)
    winner_id: Optional[int] = Field(default=None)

    status: MatchStatus = Field(default=MatchStatus.scheduled, sa_column=Column(String, nullable=False))
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Relationships
    event: "Event" = Relationship(back_populates="matches")

    @property
    def slot_a(self) -> Entrant:
        return Entrant.of(self.entrant_kind, self.slot_a_id)

    @property
    def slot_b(self) -> Optional[Entrant]:
        return Entrant.of(self.entrant_kind, self.slot_b_id)

    @property
    def winner(self) -> Optional[Entrant]:
        return Entrant.of(self.entrant_kind, self.winner_id)

    @property
    def loser(self) -> Optional[Entrant]:
        """Non-winning side of a resolved two-sided match; byes have none."""
        if self.winner_id is None or self.slot_b_id is None:
            return None
        loser_id = self.slot_b_id if self.winner_id == self.slot_a_id else self.slot_a_id
        return Entrant.of(self.entrant_kind, loser_id)

    @property
    def is_bye(self) -> bool:
        return self.slot_b_id is None

    @property
    def is_resolved(self) -> bool:
        return _value(self.status) in RESOLVED_STATUSES

    def entrants(self) -> list:
        return [e for e in (self.slot_a, self.slot_b) if e is not None]


def _value(v) -> str:
    return v.value if isinstance(v, Enum) else str(v)
