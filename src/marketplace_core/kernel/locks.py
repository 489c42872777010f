"""
Per-aggregate mutual exclusion

Every mutating operation is a read-modify-write over one aggregate, so all
writers of the same Order, Auction, GroupBuy or reputation record are
serialized in-process. Writers in other processes are caught by the event
store's version check instead (Conflict).
"""

import threading
import weakref
from collections.abc import Iterable, Iterator
from contextlib import ExitStack, contextmanager


class AggregateLocks:
    """
    Registry of one lock per stream id

    Locks for several streams are always taken in sorted order, and
    reputation streams only after the aggregate they follow from, so two
    operations can never wait on each other in a cycle. A lock lives only
    while some caller holds or waits on it, so the registry does not grow
    with every stream ever touched.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, stream_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(stream_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[stream_id] = lock
            return lock

    @contextmanager
    def hold(self, *stream_ids: str) -> Iterator[None]:
        """Hold the locks of the given streams for the duration of the block"""
        with self.hold_all(stream_ids):
            yield

    @contextmanager
    def hold_all(self, stream_ids: Iterable[str]) -> Iterator[None]:
        with ExitStack() as stack:
            for stream_id in sorted(set(stream_ids)):
                stack.enter_context(self._lock_for(stream_id))
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
