import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from bracket_service.database import get_session, init_db
from bracket_service.main import app
from bracket_service.services.champion_notifier import clear_listeners
from bracket_service.services.entrants import Entrant, EntrantKind, TournamentFormat

TEST_DATABASE_URL = "sqlite:///:memory:"

# ============================================================================
# Test database: sqlite :memory: with StaticPool so every session (fixture,
# TestClient requests) shares one connection. Tables are created and dropped
# per test.
# ============================================================================
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def override_get_session():
    """Override session to use test engine"""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="session", scope="function")
def session_fixture():
    """Provide a test database session on freshly created tables"""
    init_db(test_engine)

    with Session(test_engine) as session:
        yield session

    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(name="client")
def client_fixture(session: Session):
    """Provide a test client with overridden database session

    The override is set before TestClient() so the app never touches its own engine.
    """
    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_champion_listeners():
    clear_listeners()
    yield
    clear_listeners()


@pytest.fixture
def make_event(session: Session):
    """Factory: a tournament + event with n approved participants.

    Returns (event, entrants); entrant ids are 1..n of the format's kind.
    """
    from bracket_service.models.event import Event
    from bracket_service.models.participant import EventParticipant
    from bracket_service.models.tournament import Tournament

    def _make(n: int, tournament_format: TournamentFormat = TournamentFormat.team_vs_team):
        tournament = Tournament(name=f"Cup {n}", tournament_format=tournament_format.value)
        session.add(tournament)
        session.commit()
        session.refresh(tournament)

        event = Event(tournament_id=tournament.id, name=f"Bracket of {n}")
        session.add(event)
        session.commit()
        session.refresh(event)

        kind = EntrantKind.team if tournament_format == TournamentFormat.team_vs_team else EntrantKind.user
        entrants = [Entrant(kind=kind, id=i) for i in range(1, n + 1)]
        for e in entrants:
            session.add(
                EventParticipant(event_id=event.id, entrant_kind=e.kind.value, entrant_id=e.id, status="approved")
            )
        session.commit()
        return event, entrants

    return _make
