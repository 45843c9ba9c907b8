from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String
from sqlmodel import Column, Field, Relationship, SQLModel

from bracket_service.services.entrants import Entrant

if TYPE_CHECKING:
    from bracket_service.models.match import Match
    from bracket_service.models.participant import EventParticipant
    from bracket_service.models.tournament import Tournament


class EventStatus(str, Enum):
    open = "open"
    in_progress = "in_progress"
    completed = "completed"


class Event(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    name: str
    status: EventStatus = Field(default=EventStatus.open, sa_column=Column(String, nullable=False))

    # Champion reference (set together, only once the bracket terminates)
    champion_kind: Optional[str] = Field(default=None)
    champion_id: Optional[int] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="events")
    matches: List["Match"] = Relationship(back_populates="event")
    participants: List["EventParticipant"] = Relationship(back_populates="event")

    @property
    def champion(self) -> Optional[Entrant]:
        return Entrant.of(self.champion_kind, self.champion_id)
