"""Bracket advancement: round completion, losers-bracket insertion, grand final and full playthroughs."""
import gc
import random
import threading
from collections import Counter

import pytest
from sqlmodel import Session, create_engine, select

from bracket_service.database import init_db
from bracket_service.models.event import Event
from bracket_service.models.match import Match
from bracket_service.models.participant import EventParticipant
from bracket_service.models.tournament import Tournament
from bracket_service.services.advancement_service import (
    advance_round,
    expected_winners_rounds,
    interleave,
    list_bracket,
    losers_round_for,
    rotate_bye,
    round_status,
    submit_forfeit,
    submit_score,
)
from bracket_service.services.bracket_locks import _BRACKET_LOCKS, bracket_writer, lock_for
from bracket_service.services.entrants import Entrant, EntrantKind
from bracket_service.services.errors import BracketNotReady, EventNotFound
from bracket_service.services.schedule_generator import generate_schedule


def _round(session: Session, event_id: int, stage: str, round_number: int):
    return session.exec(
        select(Match)
        .where(Match.event_id == event_id, Match.stage == stage, Match.round_number == round_number)
        .order_by(Match.sequence_in_round)
    ).all()


def _all(session: Session, event_id: int):
    return session.exec(select(Match).where(Match.event_id == event_id)).all()


def _open(session: Session, event_id: int):
    return session.exec(
        select(Match)
        .where(Match.event_id == event_id, Match.status.in_(("scheduled", "in_progress")))
        .order_by(Match.id)
    ).all()


def _losses(matches) -> Counter:
    return Counter(m.loser for m in matches if m.loser is not None)


def _win_slot_a(session: Session, match: Match):
    return submit_score(session, match.id, 21, 15)


def _win_slot_b(session: Session, match: Match):
    return submit_score(session, match.id, 15, 21)


def _play_out(session: Session, event_id: int, rng: random.Random, forfeit_rate: float = 0.1):
    """Resolve open matches one at a time with random outcomes until the bracket stops producing work."""
    for _ in range(500):
        pending = _open(session, event_id)
        if not pending:
            return
        match = pending[0]
        roll = rng.random()
        if roll < forfeit_rate:
            submit_forfeit(session, match.id, rng.choice(["a", "b"]))
        elif roll < 0.5 + forfeit_rate / 2:
            _win_slot_a(session, match)
        else:
            _win_slot_b(session, match)
    raise AssertionError("bracket did not terminate")


# ============================================================================
# Arithmetic helpers
# ============================================================================


@pytest.mark.parametrize(
    "n,rounds", [(2, 1), (3, 2), (4, 2), (5, 3), (6, 3), (8, 3), (9, 4), (16, 4), (17, 5)]
)
def test_expected_winners_rounds(n, rounds):
    assert expected_winners_rounds(n) == rounds


def test_losers_round_follows_winners_round():
    assert [losers_round_for(n) for n in (1, 2, 3, 7)] == [1, 2, 3, 7]


def test_interleave_appends_remainder():
    s = [Entrant(EntrantKind.team, i) for i in (1, 2, 3)]
    d = [Entrant(EntrantKind.team, i) for i in (10,)]
    assert [e.id for e in interleave(s, d)] == [1, 10, 2, 3]
    assert [e.id for e in interleave(d, s)] == [10, 1, 2, 3]


def test_rotate_bye_skips_entrant_with_previous_bye():
    a, b, c, d, e = (Entrant(EntrantKind.team, i) for i in range(1, 6))
    assert rotate_bye([a, b, c], [c]) == [a, c, b]
    assert rotate_bye([a, b, c], [a]) == [a, b, c]
    assert rotate_bye([a, b, c, d], [d]) == [a, b, c, d]
    assert rotate_bye([a, b, c, d, e], [e]) == [a, b, c, e, d]
    assert rotate_bye([a], [a]) == [a]


# ============================================================================
# Round completion
# ============================================================================


def test_no_partial_advancement(session: Session, make_event):
    event, entrants = make_event(8)
    round_one = generate_schedule(session, event.id, entrants, rng=random.Random(8))

    for match in round_one[:-1]:
        result = _win_slot_a(session, match)
        assert result.created == []
    assert len(_all(session, event.id)) == 4
    assert round_status(session, event.id, "winners", 1).resolved == 3
    assert not round_status(session, event.id, "winners", 1).complete

    result = _win_slot_a(session, round_one[-1])

    assert round_status(session, event.id, "winners", 1).complete
    assert [(m.stage, m.round_number) for m in result.created] == [("winners", 2)] * 2 + [("losers", 1)] * 2
    assert len(_all(session, event.id)) == 8


def test_losers_bracket_insertion_eight_entrants(session: Session, make_event):
    event, entrants = make_event(8)
    round_one = generate_schedule(session, event.id, entrants, rng=random.Random(11))
    for match in round_one:
        _win_slot_b(session, match)

    round_one_losers = {m.loser for m in _round(session, event.id, "winners", 1)}
    losers_one = _round(session, event.id, "losers", 1)
    assert len(losers_one) == 2
    assert {e for m in losers_one for e in m.entrants()} == round_one_losers

    # One loss is not elimination
    statuses = {p.status for p in session.exec(select(EventParticipant)).all()}
    assert statuses == {"approved"}

    for match in losers_one:
        _win_slot_a(session, match)

    eliminated = {
        p.entrant for p in session.exec(select(EventParticipant)).all() if p.status == "eliminated"
    }
    assert eliminated == {m.loser for m in _round(session, event.id, "losers", 1)}
    losses = _losses(_all(session, event.id))
    assert all(losses[e] == 2 for e in eliminated)


def test_five_entrant_scenario(session: Session, make_event):
    event, entrants = make_event(5)
    round_one = generate_schedule(session, event.id, entrants, rng=random.Random(5))

    assert len(round_one) == 3
    bye = next(m for m in round_one if m.is_bye)
    assert bye.status == "completed"

    for match in round_one:
        if not match.is_bye:
            _win_slot_a(session, match)

    round_one = _round(session, event.id, "winners", 1)
    winners_two = _round(session, event.id, "winners", 2)
    assert len(winners_two) == 2
    assert sum(1 for m in winners_two if m.is_bye) == 1
    assert {e for m in winners_two for e in m.entrants()} == {m.winner for m in round_one}

    losers_one = _round(session, event.id, "losers", 1)
    assert len(losers_one) == 1
    assert set(losers_one[0].entrants()) == {m.loser for m in round_one if m.loser is not None}


def test_losers_round_waits_for_winners_drop_ins(session: Session, make_event):
    event, entrants = make_event(8)
    for match in generate_schedule(session, event.id, entrants, rng=random.Random(2)):
        _win_slot_a(session, match)
    for match in _round(session, event.id, "losers", 1):
        _win_slot_a(session, match)

    # Winners round 2 still open: losers round 2 has no drop-ins yet
    assert _round(session, event.id, "losers", 2) == []

    for match in _round(session, event.id, "winners", 2):
        _win_slot_a(session, match)
    losers_two = _round(session, event.id, "losers", 2)
    assert len(losers_two) == 2
    drop_ins = {m.loser for m in _round(session, event.id, "winners", 2)}
    survivors = {m.winner for m in _round(session, event.id, "losers", 1)}
    assert {e for m in losers_two for e in m.entrants()} == drop_ins | survivors


# ============================================================================
# Grand final
# ============================================================================


def _to_grand_final(session: Session, make_event):
    event, entrants = make_event(2)
    (final,) = generate_schedule(session, event.id, entrants, rng=random.Random(0))
    result = _win_slot_a(session, final)
    (grand_final,) = result.created
    assert grand_final.stage == "grand_final" and grand_final.round_number == 1
    assert grand_final.slot_a == final.winner
    assert grand_final.slot_b == final.loser
    return event, grand_final


def test_grand_final_winners_champion_wins_outright(session: Session, make_event):
    event, grand_final = _to_grand_final(session, make_event)

    result = _win_slot_a(session, grand_final)

    assert result.champion == grand_final.slot_a
    assert result.created == []
    assert _round(session, event.id, "grand_final", 2) == []
    session.refresh(event)
    assert event.status == "completed"
    assert event.champion == grand_final.slot_a


def test_grand_final_reset_when_losers_champion_wins(session: Session, make_event):
    event, grand_final = _to_grand_final(session, make_event)
    slots = (grand_final.slot_a, grand_final.slot_b)

    result = _win_slot_b(session, grand_final)

    assert result.champion is None
    (rematch,) = result.created
    assert (rematch.stage, rematch.round_number) == ("grand_final", 2)
    assert (rematch.slot_a, rematch.slot_b) == slots
    session.refresh(grand_final)
    assert (grand_final.slot_a, grand_final.slot_b) == slots
    session.refresh(event)
    assert event.champion is None

    result = _win_slot_b(session, rematch)

    assert result.champion == slots[1]
    assert result.eliminated == [slots[0]]
    assert len(_round(session, event.id, "grand_final", 2)) == 1
    assert _round(session, event.id, "grand_final", 3) == []


# ============================================================================
# Repair / re-run
# ============================================================================


def test_advance_round_rejects_incomplete_round(session: Session, make_event):
    event, entrants = make_event(4)
    generate_schedule(session, event.id, entrants, rng=random.Random(1))
    with pytest.raises(BracketNotReady):
        advance_round(session, event.id, "winners", 1)


def test_advance_round_unknown_event(session: Session):
    with pytest.raises(EventNotFound):
        advance_round(session, 404, "winners", 1)


def test_advance_round_is_idempotent(session: Session, make_event):
    event, entrants = make_event(4)
    for match in generate_schedule(session, event.id, entrants, rng=random.Random(1)):
        _win_slot_a(session, match)
    before = sorted(m.id for m in _all(session, event.id))

    result = advance_round(session, event.id, "winners", 1)

    assert result.created == []
    assert sorted(m.id for m in _all(session, event.id)) == before


def test_advance_round_rebuilds_missing_next_round(session: Session, make_event):
    event, entrants = make_event(4)
    for match in generate_schedule(session, event.id, entrants, rng=random.Random(1)):
        _win_slot_a(session, match)

    # Lose the synthesized rounds as if the advancement had never been committed
    for match in _all(session, event.id):
        if (match.stage, match.round_number) != ("winners", 1):
            session.delete(match)
    session.commit()

    result = advance_round(session, event.id, "winners", 1)

    assert sorted((m.stage, m.round_number) for m in result.created) == [("losers", 1), ("winners", 2)]
    assert len(_all(session, event.id)) == 4


# ============================================================================
# Full playthroughs
# ============================================================================


@pytest.mark.parametrize("n", range(2, 17))
def test_full_playthrough_terminates_with_one_champion(session: Session, make_event, n):
    event, entrants = make_event(n)
    rng = random.Random(1000 + n)
    generate_schedule(session, event.id, entrants, rng=rng)

    _play_out(session, event.id, rng)

    session.expire_all()
    event = session.get(Event, event.id)
    matches = list_bracket(session, event.id)

    assert event.status == "completed"
    champion = event.champion
    assert champion in entrants

    # Every other entrant lost exactly twice and is eliminated
    losses = _losses(matches)
    for entrant in entrants:
        if entrant == champion:
            assert losses[entrant] <= 1
        else:
            assert losses[entrant] == 2, f"{entrant} has {losses[entrant]} losses"

    statuses = {p.entrant: p.status for p in session.exec(select(EventParticipant)).all()}
    assert statuses.pop(champion) == "approved"
    assert set(statuses.values()) == {"eliminated"}

    # Per (stage, round): contiguous sequences from 1, each entrant at most once
    rounds = {}
    for m in matches:
        rounds.setdefault((m.stage, m.round_number), []).append(m)
    for key, round_matches in rounds.items():
        sequences = sorted(m.sequence_in_round for m in round_matches)
        assert sequences == list(range(1, len(round_matches) + 1)), key
        seen = [e for m in round_matches for e in m.entrants()]
        assert len(seen) == len(set(seen)), key

    # No entrant sits out two losers rounds in a row
    losers_byes = {m.round_number: m.slot_a for m in matches if m.stage == "losers" and m.is_bye}
    for round_number, entrant in losers_byes.items():
        assert losers_byes.get(round_number + 1) != entrant, (round_number, entrant)

    # Winner defined exactly for resolved matches
    assert all((m.winner is not None) == m.is_resolved for m in matches)
    assert len([k for k in rounds if k[0] == "grand_final"]) in (1, 2)
    assert [m.stage for m in matches] == sorted((m.stage for m in matches), key=["winners", "losers", "grand_final"].index)


def test_six_entrant_losers_byes_rotate(session: Session, make_event):
    event, entrants = make_event(6)
    for match in generate_schedule(session, event.id, entrants, rng=random.Random(6)):
        _win_slot_a(session, match)
    for stage, round_number in (("losers", 1), ("winners", 2), ("losers", 2), ("winners", 3)):
        for match in _round(session, event.id, stage, round_number):
            if not match.is_bye:
                _win_slot_a(session, match)

    byes = {
        rn: next(m.slot_a for m in _round(session, event.id, "losers", rn) if m.is_bye) for rn in (1, 2, 3)
    }
    assert byes[1] != byes[2]
    assert byes[2] != byes[3]


# ============================================================================
# Locks
# ============================================================================


def test_bracket_locks_are_per_event_and_reentrant():
    assert lock_for(1) is lock_for(1)
    assert lock_for(1) is not lock_for(2)
    with bracket_writer(7):
        with bracket_writer(7):
            pass


def test_bracket_lock_released_when_no_writer_holds_it():
    with bracket_writer(42):
        assert 42 in _BRACKET_LOCKS
    gc.collect()
    assert 42 not in _BRACKET_LOCKS


def test_concurrent_last_results_synthesize_next_round_once(tmp_path):
    """Two threads finish the last two matches of a round at the same moment."""
    engine = create_engine(f"sqlite:///{tmp_path / 'brackets.db'}", connect_args={"check_same_thread": False})
    init_db(engine)
    try:
        with Session(engine) as setup:
            tournament = Tournament(name="Race Cup", tournament_format="team_vs_team")
            setup.add(tournament)
            setup.commit()
            event = Event(tournament_id=tournament.id, name="Race Draw")
            setup.add(event)
            setup.commit()
            event_id = event.id
            entrants = [Entrant(EntrantKind.team, i) for i in range(1, 9)]
            round_one = generate_schedule(setup, event_id, entrants, rng=random.Random(8))
            for match in round_one[:2]:
                _win_slot_a(setup, match)
            last_two = [m.id for m in round_one[2:]]

        barrier = threading.Barrier(2)
        errors = []

        def finish(match_id: int):
            try:
                with Session(engine) as own_session:
                    barrier.wait()
                    submit_score(own_session, match_id, 21, 10)
            except Exception as e:  # surfaced by the assertion below
                errors.append(e)

        threads = [threading.Thread(target=finish, args=(match_id,)) for match_id in last_two]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        with Session(engine) as check:
            assert len(_round(check, event_id, "winners", 2)) == 2
            assert len(_round(check, event_id, "losers", 1)) == 2
            assert len(_all(check, event_id)) == 8
    finally:
        engine.dispose()
