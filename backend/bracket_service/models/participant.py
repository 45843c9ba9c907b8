from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel

from bracket_service.services.entrants import Entrant

if TYPE_CHECKING:
    from bracket_service.models.event import Event


class ParticipantStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    eliminated = "eliminated"


class EventParticipant(SQLModel, table=True):
    """Registration row owned by the external approval workflow.

    The bracket engine only reads approved rows and flips them to eliminated.
    """

    __table_args__ = (
        SAUniqueConstraint("event_id", "entrant_kind", "entrant_id", name="uq_event_participant"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    event_id: int = Field(foreign_key="event.id", index=True)
    entrant_kind: str
    entrant_id: int
    status: ParticipantStatus = Field(
        default=ParticipantStatus.pending, sa_column=Column(String, nullable=False)
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Relationships
    event: "Event" = Relationship(back_populates="participants")

    @property
    def entrant(self) -> Entrant:
        return Entrant.of(self.entrant_kind, self.entrant_id)
