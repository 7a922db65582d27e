import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class IntervalScheduler:
    """
    Runs ``task`` every ``interval`` seconds.

    The clock is injectable so tests can drive ``run_pending`` without sleeping.
    A task that raises is logged and the schedule carries on.
    """

    def __init__(
        self,
        interval: float,
        task: Callable[[], object],
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.task = task
        self.clock = clock
        self.next_run: Optional[float] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_pending(self) -> bool:
        now = self.clock()
        if self.next_run is None:
            self.next_run = now
        if now < self.next_run:
            return False
        # one run per call even when several intervals were missed
        self.next_run = now + self.interval
        try:
            self.task()
        except Exception:
            logger.exception("Scheduled task failed")
        return True

    def seconds_until_next(self) -> float:
        if self.next_run is None:
            return 0.0
        return max(0.0, self.next_run - self.clock())

    def run_forever(self) -> None:
        while not self._stop.is_set():
            self.run_pending()
            self._stop.wait(self.seconds_until_next())

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
