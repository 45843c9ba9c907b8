"""
Engine and session wiring. Configuration comes from the environment (.env is
honoured): DATABASE_URL, SQL_ECHO.
"""
import logging
import os
from pathlib import Path
from typing import Generator, Optional

from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./brackets.db")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("true", "1", "yes")


def _sqlite_file(url: str) -> Optional[Path]:
    """Backing file of a sqlite URL; None for other backends and in-memory databases."""
    if not url.startswith("sqlite") or ":memory:" in url:
        return None
    return Path(url.split("///", 1)[-1])


def build_engine(url: str = DATABASE_URL, echo: bool = SQL_ECHO) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        # Requests run in FastAPI's threadpool
        connect_args["check_same_thread"] = False
        db_file = _sqlite_file(url)
        if db_file is not None:
            db_file.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, echo=echo, connect_args=connect_args)


engine: Engine = build_engine()


def get_session() -> Generator[Session, None, None]:
    """Get database session"""
    with Session(engine) as session:
        yield session


def init_db(bind: Optional[Engine] = None) -> None:
    """Create the bracket tables on bind (the app engine by default)"""
    # Models must be imported so their tables are registered on SQLModel.metadata
    from bracket_service.models.event import Event  # noqa: F401
    from bracket_service.models.match import Match  # noqa: F401
    from bracket_service.models.participant import EventParticipant  # noqa: F401
    from bracket_service.models.tournament import Tournament  # noqa: F401

    target = bind if bind is not None else engine
    SQLModel.metadata.create_all(target)
    logger.info("Database ready at %s", target.url.render_as_string(hide_password=True))
