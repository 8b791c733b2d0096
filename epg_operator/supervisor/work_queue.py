import asyncio

from epg_operator.logger import init_logger

logger = init_logger(__name__)

_SHUTDOWN = object()
# 2**32 * base delay is far beyond any sane max delay
_MAX_BACKOFF_EXPONENT = 32


class WorkQueue:
    """Keyed work queue with per-key exclusion and exponential backoff.

    - a key waits in the queue at most once, however often it is added
    - a key added while a worker holds it is parked until done() is called,
      so one key never has two reconciles in flight
    - add_rate_limited() delays a failed key by base * 2**failures, capped
    """

    def __init__(self, base_delay_seconds: float = 0.005, max_delay_seconds: float = 1000.0):
        self._base_delay = base_delay_seconds
        self._max_delay = max_delay_seconds
        self._queue: asyncio.Queue = asyncio.Queue()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._failures: dict[str, int] = {}
        self._delayed: dict[str, asyncio.TimerHandle] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._dirty - self._processing)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: str) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.put_nowait(key)

    def add_after(self, key: str, delay_seconds: float) -> None:
        if self._shutting_down:
            return
        if delay_seconds <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        fire_at = loop.time() + delay_seconds
        existing = self._delayed.get(key)
        if existing is not None:
            if existing.when() <= fire_at:
                return
            existing.cancel()
        self._delayed[key] = loop.call_at(fire_at, self._fire, key)

    def _fire(self, key: str) -> None:
        self._delayed.pop(key, None)
        self.add(key)

    def add_rate_limited(self, key: str) -> float:
        """Requeue a failed key after its backoff delay, returning the delay."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(self._base_delay * 2 ** min(failures, _MAX_BACKOFF_EXPONENT), self._max_delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> str | None:
        """Next key to process, or None once the queue is shut down."""
        key = await self._queue.get()
        if key is _SHUTDOWN:
            # wake the next waiting worker as well
            self._queue.put_nowait(_SHUTDOWN)
            return None
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: str) -> None:
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.put_nowait(key)

    def shutdown(self) -> None:
        self._shutting_down = True
        for handle in self._delayed.values():
            handle.cancel()
        self._delayed.clear()
        self._queue.put_nowait(_SHUTDOWN)
