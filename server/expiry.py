# server/expiry.py
"""
One cancellable deadline per key.

schedule() replaces the key's previous deadline instead of adding a second
one. Old heap entries stay behind and are skipped when popped, so a key is
reported due at most once per schedule() call.
"""
import heapq
import itertools
import logging
import threading
import time
from typing import Callable, Dict, Hashable, List, Optional, Tuple

log = logging.getLogger(__name__)


class ExpiryScheduler:
    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._heap: List[Tuple[float, int, Hashable]] = []
        self._live: Dict[Hashable, Tuple[float, int]] = {}
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def schedule(self, key: Hashable) -> float:
        deadline = self.clock() + self.ttl
        gen = next(self._seq)
        with self._lock:
            self._live[key] = (deadline, gen)
            heapq.heappush(self._heap, (deadline, gen, key))
        return deadline

    def cancel(self, key: Hashable) -> None:
        with self._lock:
            self._live.pop(key, None)

    def deadline(self, key: Hashable) -> Optional[float]:
        entry = self._live.get(key)
        return entry[0] if entry else None

    def is_due(self, key: Hashable, now: Optional[float] = None) -> bool:
        dl = self.deadline(key)
        now = self.clock() if now is None else now
        return dl is not None and now >= dl

    def pop_due(self, now: Optional[float] = None) -> List[Hashable]:
        """Removes and returns every key whose current deadline has passed."""
        now = self.clock() if now is None else now
        due = []
        with self._lock:
            while self._heap and self._heap[0][0] <= now:
                deadline, gen, key = heapq.heappop(self._heap)
                if self._live.get(key) == (deadline, gen):
                    del self._live[key]
                    due.append(key)
        return due

    def clear(self) -> None:
        with self._lock:
            self._heap.clear()
            self._live.clear()

    def __len__(self):
        return len(self._live)


class Reaper(threading.Thread):
    """Daemon thread calling reap() on an interval until stop() is called."""

    def __init__(self, reap: Callable[[], list], interval: float):
        super().__init__(name="room-reaper", daemon=True)
        self._reap = reap
        self._interval = interval
        self._stopped = threading.Event()

    def run(self):
        while not self._stopped.wait(self._interval):
            try:
                self._reap()
            except Exception:
                log.exception("Room reaper failed")

    def stop(self):
        self._stopped.set()
