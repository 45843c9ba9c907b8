"""
Champion-declared notifications.

The notification subsystem registers listeners here; the bracket engine calls
notify_champion() once a champion is committed. A failing listener is logged
and does not undo the declaration.
"""
import logging
from typing import Callable, List

from bracket_service.services.entrants import Entrant

logger = logging.getLogger(__name__)

ChampionListener = Callable[[int, Entrant], None]

_listeners: List[ChampionListener] = []


def register_listener(listener: ChampionListener) -> None:
    _listeners.append(listener)


def clear_listeners() -> None:
    _listeners.clear()


def notify_champion(event_id: int, champion: Entrant) -> int:
    """Deliver the champion-declared event to every listener.

    Returns the number of listeners that accepted the event.
    """
    logger.info("Champion declared for event %d: %s", event_id, champion)
    delivered = 0
    for listener in list(_listeners):
        try:
            listener(event_id, champion)
            delivered += 1
        except Exception:
            logger.exception("Champion listener %r failed for event %d", listener, event_id)
    return delivered
