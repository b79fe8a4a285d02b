from __future__ import annotations

import logging
import threading
import time

logger = logging.getLogger(__name__)

DEDUP_WINDOW_MS = 10_000
RETENTION_MS = 300_000
SWEEP_INTERVAL_SECONDS = 300.0


def now_ms() -> float:
    return time.time() * 1000


def dedup_key(event_name: str, book_id: str | None, session_id: str | None) -> str:
    return f"{event_name}_{book_id or 'unknown'}_{session_id or ''}"


class EventDeduplicator:
    """Remembers when each (event, book, session) was last allowed through."""

    def __init__(
        self,
        window_ms: float = DEDUP_WINDOW_MS,
        retention_ms: float = RETENTION_MS,
        sweep_interval_seconds: float = SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self.window_ms = window_ms
        self.retention_ms = retention_ms
        self.sweep_interval_seconds = sweep_interval_seconds
        self._seen: dict[str, float] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def should_suppress(
        self,
        event_name: str,
        book_id: str | None,
        session_id: str | None,
        now: float | None = None,
    ) -> bool:
        now = now_ms() if now is None else now
        key = dedup_key(event_name, book_id, session_id)
        with self._lock:
            last = self._seen.get(key)
            if last is not None and now - last < self.window_ms:
                logger.info("Suppressing duplicate %s event for book %s", event_name, book_id or "unknown")
                return True
            self._seen[key] = now
        return False

    def sweep(self, now: float | None = None) -> int:
        now = now_ms() if now is None else now
        with self._lock:
            expired = [key for key, seen_at in self._seen.items() if now - seen_at > self.retention_ms]
            for key in expired:
                del self._seen[key]
        if expired:
            logger.debug("Dedup sweep removed %d entries", len(expired))
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self._seen.clear()

    def start(self) -> None:
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._run_sweeper, name="event-dedup-sweeper", daemon=True)
        self._sweeper.start()

    def stop(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1.0)
            self._sweeper = None

    def _run_sweeper(self) -> None:
        while not self._stop.wait(self.sweep_interval_seconds):
            self.sweep()
