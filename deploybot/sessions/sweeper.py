"""Background expiry sweep for the session store."""

from __future__ import annotations

from datetime import datetime
from threading import Event, Thread
from typing import Callable, Optional

from deploybot.core.logger import get_logger
from deploybot.core.observability import capture_exception
from deploybot.sessions.models import utcnow
from deploybot.sessions.store import SessionStore


logger = get_logger("deploybot.sessions.sweeper")


class SessionSweeper:
    """Run ``store.sweep`` on a fixed period from a daemon thread."""

    def __init__(
        self,
        store: SessionStore,
        *,
        interval_seconds: float = 600,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._store = store
        self._interval_seconds = interval_seconds
        self._clock = clock
        self._stop = Event()
        self._thread: Optional[Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> int:
        try:
            removed = self._store.sweep(self._clock())
        except Exception as exc:
            logger.error("session_sweep_failed", error=str(exc))
            capture_exception(exc)
            return 0
        if removed:
            logger.info("session_sweep_completed", removed=removed)
        return removed

    def _loop(self) -> None:
        while not self._stop.wait(self._interval_seconds):
            self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = Thread(target=self._loop, name="session-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        self._thread = None
