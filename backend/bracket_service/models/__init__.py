from bracket_service.models.event import Event, EventStatus
from bracket_service.models.match import Match, MatchStage, MatchStatus
from bracket_service.models.participant import EventParticipant, ParticipantStatus
from bracket_service.models.tournament import Tournament

__all__ = [
    "Tournament",
    "Event",
    "EventStatus",
    "EventParticipant",
    "ParticipantStatus",
    "Match",
    "MatchStage",
    "MatchStatus",
]
