# Force SQLModel table registration at test discovery time
from bracket_service.models.event import Event  # noqa: F401
from bracket_service.models.match import Match  # noqa: F401
from bracket_service.models.participant import EventParticipant  # noqa: F401
from bracket_service.models.tournament import Tournament  # noqa: F401
