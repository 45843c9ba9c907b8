"""
Per-bracket writer locks.

Recording a result, the round-completion check, next-round synthesis and the
commit all run while holding the lock of the owning event, so concurrent
submissions for the last two matches of a round cannot both synthesize the
next round. Different events never share a lock and advance in parallel.

The registry holds locks weakly: an event's lock lives only while some writer
references it, so finished brackets do not accumulate entries.

Across processes the unique (event_id, stage, round_number, sequence_in_round)
constraint on Match rejects a duplicate round insert.
"""
import weakref
from contextlib import contextmanager
from threading import Lock, RLock
from typing import Iterator

_REGISTRY_LOCK = Lock()
_BRACKET_LOCKS: "weakref.WeakValueDictionary[int, RLock]" = weakref.WeakValueDictionary()


def lock_for(event_id: int) -> RLock:
    with _REGISTRY_LOCK:
        lock = _BRACKET_LOCKS.get(event_id)
        if lock is None:
            lock = RLock()
            _BRACKET_LOCKS[event_id] = lock
        return lock


@contextmanager
def bracket_writer(event_id: int) -> Iterator[None]:
    """Hold the single-writer lock for one event's bracket."""
    lock = lock_for(event_id)
    with lock:
        yield
