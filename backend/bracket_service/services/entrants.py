"""
Entrant identity: a team or a user competing as one bracket unit.

Stored as a (kind, id) pair rather than two nullable foreign keys, so that
"exactly one of team/user is set" holds by construction.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from bracket_service.services.errors import InvalidEntrants


class EntrantKind(str, Enum):
    team = "team"
    user = "user"


class TournamentFormat(str, Enum):
    team_vs_team = "team_vs_team"
    free_for_all = "free_for_all"


_KIND_BY_FORMAT = {
    TournamentFormat.team_vs_team: EntrantKind.team,
    TournamentFormat.free_for_all: EntrantKind.user,
}


@dataclass(frozen=True, order=True)
class Entrant:
    kind: EntrantKind
    id: int

    @classmethod
    def of(cls, kind: str, entrant_id: Optional[int]) -> Optional["Entrant"]:
        """Build an Entrant from stored columns; None when the id is empty."""
        if entrant_id is None or kind is None:
            return None
        return cls(kind=EntrantKind(kind), id=int(entrant_id))

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


def entrant_kind_for_format(tournament_format: str) -> EntrantKind:
    return _KIND_BY_FORMAT[TournamentFormat(tournament_format)]


def validate_entrants(entrants: Iterable[Entrant], kind: EntrantKind) -> List[Entrant]:
    """Reject entrants of the wrong kind and duplicates. Returns a list copy."""
    out: List[Entrant] = []
    seen = set()
    for entrant in entrants:
        if entrant.kind != kind:
            raise InvalidEntrants(
                f"Entrant {entrant} does not match the tournament entrant kind '{kind.value}'"
            )
        if entrant in seen:
            raise InvalidEntrants(f"Entrant {entrant} is listed more than once")
        seen.add(entrant)
        out.append(entrant)
    return out
