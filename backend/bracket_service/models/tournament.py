from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String
from sqlmodel import Column, Field, Relationship, SQLModel

from bracket_service.services.entrants import EntrantKind, TournamentFormat, entrant_kind_for_format

if TYPE_CHECKING:
    from bracket_service.models.event import Event


class Tournament(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    # team_vs_team pairs teams, free_for_all pairs individual users
    tournament_format: TournamentFormat = Field(
        default=TournamentFormat.team_vs_team, sa_column=Column(String, nullable=False)
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Relationships
    events: List["Event"] = Relationship(back_populates="tournament")

    @property
    def entrant_kind(self) -> EntrantKind:
        return entrant_kind_for_format(self.tournament_format)
