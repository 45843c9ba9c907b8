"""
Double-elimination advancement: result recording, round-completion checks and
next-round synthesis.

Every result submission runs one round-completion check for the submitted
match's (stage, round). Nothing moves until every match of that round is
completed or forfeited; then the next round is synthesized:

    winners N  -> winners N+1 (winners, sequence order) and losers N (losers)
    losers  M  -> losers M+1 (survivors); round losers are eliminated
    losers done, one survivor, no winners-bracket input pending -> grand final 1
    grand final 1 won by the losers-bracket champion -> grand final 2 (reset)
    grand final 1 won by the winners-bracket champion, or grand final 2 -> champion

Losers round K takes the survivors of losers round K-1 together with the
losers of winners round K, so it opens only once both feeders are resolved.
Whether winners-bracket input is still pending is derived from the original
entrant count (expected_winners_rounds), never from the rounds that happen to
exist yet.

All state is derived from match rows on every call. Each synthesis step checks
whether its target round already exists, so a failed or repeated advancement
can be re-run from scratch.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlmodel import Session, func, select

from bracket_service.models.event import Event, EventStatus
from bracket_service.models.match import (
    OPEN_STATUSES,
    RESOLVED_STATUSES,
    STAGE_ORDER,
    Match,
    MatchStage,
    MatchStatus,
)
from bracket_service.models.participant import EventParticipant, ParticipantStatus
from bracket_service.services.bracket_locks import bracket_writer
from bracket_service.services.champion_notifier import notify_champion
from bracket_service.services.entrants import Entrant
from bracket_service.services.errors import (
    BracketNotReady,
    ChampionAlreadyDeclared,
    EventNotFound,
    InvalidScore,
    MatchAlreadyResolved,
    MatchNotFound,
)
from bracket_service.services.schedule_generator import build_match, pair_consecutive
from bracket_service.utils.sql import optional_int, scalar_int

logger = logging.getLogger(__name__)

FORFEIT_SLOTS = ("a", "b")


@dataclass(frozen=True)
class RoundStatus:
    total: int
    resolved: int

    @property
    def complete(self) -> bool:
        return self.total > 0 and self.resolved == self.total


@dataclass
class AdvancementResult:
    match: Optional[Match]
    created: List[Match] = field(default_factory=list)
    eliminated: List[Entrant] = field(default_factory=list)
    champion: Optional[Entrant] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _stage(stage) -> MatchStage:
    return MatchStage(stage)


# ============================================================================
# Bracket arithmetic
# ============================================================================


def losers_round_for(winners_round: int) -> int:
    """Losers-bracket round that receives the losers of a winners round.

    Losers rounds are numbered after the winners round feeding them rather than
    counted separately from 1: drop-ins from winners round N always land in
    losers round N, for any entrant count.
    """
    return winners_round


def expected_winners_rounds(entrant_count: int) -> int:
    """Number of winners rounds played by a bracket of entrant_count entrants.

    Byes carry odd entrants forward, so each round keeps ceil(n / 2) entrants
    until one is left.
    """
    rounds = 0
    remaining = entrant_count
    while remaining > 1:
        remaining = (remaining + 1) // 2
        rounds += 1
    return rounds


def interleave(survivors: Sequence[Entrant], drop_ins: Sequence[Entrant]) -> List[Entrant]:
    """s0, d0, s1, d1, ...; whichever list is longer finishes the sequence."""
    out: List[Entrant] = []
    for i in range(max(len(survivors), len(drop_ins))):
        if i < len(survivors):
            out.append(survivors[i])
        if i < len(drop_ins):
            out.append(drop_ins[i])
    return out


def rotate_bye(entrants: Sequence[Entrant], had_bye: Sequence[Entrant]) -> List[Entrant]:
    """Keep an odd pool's bye (the last slot) away from entrants that just had one.

    The last entrant without a recent bye moves to the end; everyone else keeps
    their order.
    """
    out = list(entrants)
    if len(out) < 3 or len(out) % 2 == 0 or out[-1] not in had_bye:
        return out
    for i in range(len(out) - 2, -1, -1):
        if out[i] not in had_bye:
            out.append(out.pop(i))
            break
    return out


# ============================================================================
# Row queries
# ============================================================================


def round_status(session: Session, event_id: int, stage, round_number: int) -> RoundStatus:
    """Resolved vs. total match count for one (event, stage, round), read fresh."""
    base = select(func.count(Match.id)).where(
        Match.event_id == event_id,
        Match.stage == _stage(stage).value,
        Match.round_number == round_number,
    )
    total = scalar_int(session.exec(base).one())
    resolved = scalar_int(session.exec(base.where(Match.status.in_(RESOLVED_STATUSES))).one())
    return RoundStatus(total=total, resolved=resolved)


def _round_matches(session: Session, event_id: int, stage: MatchStage, round_number: int) -> List[Match]:
    return list(
        session.exec(
            select(Match)
            .where(
                Match.event_id == event_id,
                Match.stage == stage.value,
                Match.round_number == round_number,
            )
            .order_by(Match.sequence_in_round)
        ).all()
    )


def _round_exists(session: Session, event_id: int, stage: MatchStage, round_number: int) -> bool:
    return round_status(session, event_id, stage, round_number).total > 0


def _entrant_count(session: Session, event_id: int) -> int:
    """Original bracket size: occupied slots of winners round 1."""
    return sum(len(m.entrants()) for m in _round_matches(session, event_id, MatchStage.winners, 1))


def list_bracket(session: Session, event_id: int) -> List[Match]:
    """All matches of an event: winners, losers, grand final; then round, sequence."""
    matches = session.exec(select(Match).where(Match.event_id == event_id)).all()
    return sorted(
        matches,
        key=lambda m: (STAGE_ORDER[_stage(m.stage).value], m.round_number, m.sequence_in_round),
    )


def _get_match(session: Session, match_id: int) -> Match:
    match = session.get(Match, match_id)
    if not match:
        raise MatchNotFound(f"Match {match_id} not found")
    return match


def _require_open(match: Match) -> None:
    if match.status not in OPEN_STATUSES:
        raise MatchAlreadyResolved(f"Match {match.id} is already {match.status}")


# ============================================================================
# Round synthesis
# ============================================================================


def _create_round(
    session: Session,
    event: Event,
    stage: MatchStage,
    round_number: int,
    entrants: Sequence[Entrant],
    result: AdvancementResult,
) -> List[Match]:
    if _round_exists(session, event.id, stage, round_number):
        return []

    created: List[Match] = []
    for sequence, (slot_a, slot_b) in enumerate(pair_consecutive(entrants), start=1):
        match = build_match(event.id, stage, round_number, sequence, slot_a, slot_b)
        session.add(match)
        created.append(match)
    session.flush()
    result.created.extend(created)

    logger.info(
        "Event %d: created %s round %d with %d matches (%d byes)",
        event.id,
        stage.value,
        round_number,
        len(created),
        sum(1 for m in created if m.is_bye),
    )

    # A bye-only round is resolved on creation and advances right away
    _advance(session, event, stage, round_number, result)
    return created


def _advance(session: Session, event: Event, stage: MatchStage, round_number: int, result: AdvancementResult) -> None:
    status = round_status(session, event.id, stage, round_number)
    if not status.complete:
        logger.debug(
            "Event %d: %s round %d not complete (%d/%d resolved)",
            event.id,
            stage.value,
            round_number,
            status.resolved,
            status.total,
        )
        return

    if stage == MatchStage.winners:
        _advance_winners(session, event, round_number, result)
    elif stage == MatchStage.losers:
        _advance_losers(session, event, round_number, result)
    else:
        _advance_grand_final(session, event, round_number, result)


def _advance_winners(session: Session, event: Event, round_number: int, result: AdvancementResult) -> None:
    matches = _round_matches(session, event.id, MatchStage.winners, round_number)
    winners = [m.winner for m in matches]

    if len(winners) > 1:
        _create_round(session, event, MatchStage.winners, round_number + 1, winners, result)
    else:
        logger.info(
            "Event %d: winners-bracket champion %s, held for the grand final", event.id, winners[0]
        )

    _open_losers_round(session, event, losers_round_for(round_number), result)


def _advance_losers(session: Session, event: Event, round_number: int, result: AdvancementResult) -> None:
    matches = _round_matches(session, event.id, MatchStage.losers, round_number)
    _eliminate(session, event, [m.loser for m in matches if m.loser is not None], result)
    _open_losers_round(session, event, round_number + 1, result)


def _open_losers_round(session: Session, event: Event, round_number: int, result: AdvancementResult) -> None:
    """Open losers round K once both of its feeders are resolved.

    Feeders: survivors of losers round K-1 (K > 1) and losers of winners round
    K (while K is within the expected winners rounds). A single entrant with
    nothing left to come from the winners bracket is the losers champion.
    """
    if _round_exists(session, event.id, MatchStage.losers, round_number):
        return

    winners_rounds = expected_winners_rounds(_entrant_count(session, event.id))

    drop_ins: List[Entrant] = []
    if round_number <= winners_rounds:
        if not round_status(session, event.id, MatchStage.winners, round_number).complete:
            return
        drop_ins = [
            m.loser
            for m in _round_matches(session, event.id, MatchStage.winners, round_number)
            if m.loser is not None
        ]

    survivors: List[Entrant] = []
    had_bye: List[Entrant] = []
    if round_number > 1:
        if not round_status(session, event.id, MatchStage.losers, round_number - 1).complete:
            return
        previous = _round_matches(session, event.id, MatchStage.losers, round_number - 1)
        survivors = [m.winner for m in previous]
        had_bye = [m.slot_a for m in previous if m.is_bye]

    entrants = rotate_bye(interleave(survivors, drop_ins), had_bye)
    pending = round_number < winners_rounds

    if len(entrants) == 1 and not pending:
        logger.info("Event %d: losers-bracket champion %s", event.id, entrants[0])
        _open_grand_final(session, event, entrants[0], result)
    elif entrants:
        _create_round(session, event, MatchStage.losers, round_number, entrants, result)


def _winners_champion(session: Session, event_id: int) -> Entrant:
    last_round = session.exec(
        select(func.max(Match.round_number)).where(
            Match.event_id == event_id, Match.stage == MatchStage.winners.value
        )
    ).one()
    last_round = optional_int(last_round) or 0
    matches = _round_matches(session, event_id, MatchStage.winners, last_round)
    if len(matches) != 1 or not matches[0].is_resolved:
        raise BracketNotReady(f"Winners bracket of event {event_id} has not produced a champion")
    return matches[0].winner


def _open_grand_final(session: Session, event: Event, losers_champion: Entrant, result: AdvancementResult) -> None:
    if _round_exists(session, event.id, MatchStage.grand_final, 1):
        return
    winners_champion = _winners_champion(session, event.id)
    _create_round(session, event, MatchStage.grand_final, 1, [winners_champion, losers_champion], result)


def _advance_grand_final(session: Session, event: Event, round_number: int, result: AdvancementResult) -> None:
    match = _round_matches(session, event.id, MatchStage.grand_final, round_number)[0]

    # slot_a is the winners-bracket champion, slot_b arrived from the losers bracket
    if round_number == 1 and match.winner_id != match.slot_a_id:
        logger.info(
            "Event %d: losers-bracket champion %s won grand final 1, bracket reset", event.id, match.winner
        )
        _create_round(session, event, MatchStage.grand_final, 2, [match.slot_a, match.slot_b], result)
        return

    _eliminate(session, event, [match.loser], result)
    if _set_champion(session, event, match.winner):
        result.champion = match.winner


def _eliminate(session: Session, event: Event, losers: Sequence[Entrant], result: AdvancementResult) -> None:
    for entrant in losers:
        participant = session.exec(
            select(EventParticipant).where(
                EventParticipant.event_id == event.id,
                EventParticipant.entrant_kind == entrant.kind.value,
                EventParticipant.entrant_id == entrant.id,
            )
        ).first()
        if participant and participant.status != ParticipantStatus.eliminated.value:
            participant.status = ParticipantStatus.eliminated.value
            session.add(participant)
        result.eliminated.append(entrant)
        logger.info("Event %d: %s eliminated", event.id, entrant)


def _set_champion(session: Session, event: Event, entrant: Entrant) -> bool:
    current = event.champion
    if current is not None:
        if current == entrant:
            return False
        raise ChampionAlreadyDeclared(f"Event {event.id} already has champion {current}; refusing {entrant}")

    event.champion_kind = entrant.kind.value
    event.champion_id = entrant.id
    event.status = EventStatus.completed.value
    event.completed_at = _now()
    session.add(event)
    logger.info("Event %d: champion %s", event.id, entrant)
    return True


# ============================================================================
# Public operations
# ============================================================================


def _commit_advancement(session: Session, event: Event, stage: MatchStage, round_number: int, result: AdvancementResult):
    try:
        session.flush()
        _advance(session, event, stage, round_number, result)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return result


def _publish(session: Session, event_id: int, result: AdvancementResult) -> AdvancementResult:
    if result.match is not None:
        session.refresh(result.match)
    if result.champion is not None:
        notify_champion(event_id, result.champion)
    return result


def _record_and_advance(session: Session, match: Match) -> AdvancementResult:
    event = session.get(Event, match.event_id)
    session.add(match)
    result = AdvancementResult(match=match)
    return _commit_advancement(session, event, _stage(match.stage), match.round_number, result)


def _validate_scores(score_a, score_b) -> None:
    for name, value in (("score_a", score_a), ("score_b", score_b)):
        if value is None:
            raise InvalidScore(f"{name} is required")
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidScore(f"{name} must be an integer")
        if value < 0:
            raise InvalidScore(f"{name} must be a non-negative integer")
    if score_a == score_b:
        raise InvalidScore("Elimination matches cannot end in a draw")


def start_match(session: Session, match_id: int) -> Match:
    """scheduled -> in_progress. Starting a running match is a no-op."""
    match = _get_match(session, match_id)
    with bracket_writer(match.event_id):
        session.refresh(match)
        if match.status == MatchStatus.in_progress.value:
            return match
        _require_open(match)
        match.status = MatchStatus.in_progress.value
        match.started_at = _now()
        session.add(match)
        session.commit()
        session.refresh(match)
    return match


def submit_score(session: Session, match_id: int, score_a: int, score_b: int) -> AdvancementResult:
    """Record a scored result and advance the bracket if the round is now complete."""
    match = _get_match(session, match_id)
    _validate_scores(score_a, score_b)

    with bracket_writer(match.event_id):
        session.refresh(match)
        _require_open(match)
        match.score_a = score_a
        match.score_b = score_b
        match.winner_id = match.slot_a_id if score_a > score_b else match.slot_b_id
        match.status = MatchStatus.completed.value
        match.completed_at = _now()
        result = _record_and_advance(session, match)

    return _publish(session, match.event_id, result)


def submit_forfeit(session: Session, match_id: int, forfeiting_slot: str) -> AdvancementResult:
    """Record a forfeit by slot 'a' or 'b'; the other slot wins without a score."""
    match = _get_match(session, match_id)
    slot = forfeiting_slot.lower() if isinstance(forfeiting_slot, str) else forfeiting_slot
    if slot not in FORFEIT_SLOTS:
        raise InvalidScore(f"forfeiting_slot must be one of {FORFEIT_SLOTS}, got {forfeiting_slot!r}")

    with bracket_writer(match.event_id):
        session.refresh(match)
        _require_open(match)
        match.score_a = None
        match.score_b = None
        match.winner_id = match.slot_b_id if slot == "a" else match.slot_a_id
        match.status = MatchStatus.forfeited.value
        match.completed_at = _now()
        result = _record_and_advance(session, match)

    return _publish(session, match.event_id, result)


def submit_result(
    session: Session,
    match_id: int,
    score_a: Optional[int] = None,
    score_b: Optional[int] = None,
    forfeiting_slot: Optional[str] = None,
) -> AdvancementResult:
    """Record either a score ({score_a, score_b}) or a forfeit ({forfeiting_slot})."""
    if forfeiting_slot is not None:
        if score_a is not None or score_b is not None:
            raise InvalidScore("Submit either scores or a forfeiting slot, not both")
        return submit_forfeit(session, match_id, forfeiting_slot)
    return submit_score(session, match_id, score_a, score_b)


def advance_round(session: Session, event_id: int, stage, round_number: int) -> AdvancementResult:
    """Re-run next-round synthesis for a resolved round (repair after a failed advancement).

    Raises BracketNotReady if the round still has unresolved matches.
    """
    stage = _stage(stage)
    with bracket_writer(event_id):
        event = session.get(Event, event_id)
        if not event:
            raise EventNotFound(f"Event {event_id} not found")
        status = round_status(session, event_id, stage, round_number)
        if not status.complete:
            raise BracketNotReady(
                f"{stage.value} round {round_number} of event {event_id} is not complete "
                f"({status.resolved}/{status.total} resolved)"
            )
        result = _commit_advancement(session, event, stage, round_number, AdvancementResult(match=None))

    return _publish(session, event_id, result)


def declare_champion(session: Session, event_id: int, entrant: Entrant) -> bool:
    """Mark the event completed with entrant as champion.

    Returns False when the same champion is already declared; a different
    champion raises ChampionAlreadyDeclared.
    """
    with bracket_writer(event_id):
        event = session.get(Event, event_id)
        if not event:
            raise EventNotFound(f"Event {event_id} not found")
        try:
            declared = _set_champion(session, event, entrant)
            session.commit()
        except Exception:
            session.rollback()
            raise

    if declared:
        notify_champion(event_id, entrant)
    return declared
