import logging
import queue
import re
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# ffmpeg prints e.g. "frame=  120 fps= 30 ... time=00:00:04.00 bitrate=..."
ELAPSED_RE = re.compile(r"time=(\d{2}):(\d{2}):(\d{2})\.(\d{2})")


def parse_elapsed(line: str) -> Optional[float]:
    """Return the elapsed seconds reported on an ffmpeg status line, if any."""
    m = ELAPSED_RE.search(line)
    if not m:
        return None
    hours, minutes, seconds, centis = (int(g) for g in m.groups())
    return hours * 3600 + minutes * 60 + seconds + centis / 100.0


class ProgressMonitor:
    """Turns ffmpeg output lines into 0-100 completion estimates."""

    def __init__(self, target_duration: Optional[float]):
        self.target_duration = target_duration

    def feed(self, line: str) -> Optional[int]:
        if not self.target_duration or self.target_duration <= 0:
            return None
        elapsed = parse_elapsed(line)
        if elapsed is None:
            return None
        pct = int(elapsed / self.target_duration * 100)
        return max(0, min(100, pct))


_CLOSE = object()


class ProgressChannel:
    """
    Hands progress values from the output reader to a record updater running on
    its own thread. The reader never blocks; updater failures are logged only.
    """

    def __init__(self, on_progress: Callable[[int], None], join_timeout: float = 5.0):
        self.on_progress = on_progress
        self.join_timeout = join_timeout
        self._q: "queue.Queue[object]" = queue.Queue()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._started = False

    def start(self) -> "ProgressChannel":
        self._thread.start()
        self._started = True
        return self

    def put(self, value: int) -> None:
        self._q.put_nowait(value)

    def close(self) -> None:
        if not self._started:
            return
        self._q.put_nowait(_CLOSE)
        self._thread.join(self.join_timeout)

    def _run(self) -> None:
        while True:
            item = self._q.get()
            if item is _CLOSE:
                return
            try:
                self.on_progress(item)  # type: ignore[arg-type]
            except Exception as e:
                logger.warning("Progress update failed: %s", e)

    def __enter__(self) -> "ProgressChannel":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.close()


class ProgressGate:
    """
    Serializes progress writes against the job's final write. ``close`` waits
    for a write already in progress; writes attempted afterwards are dropped.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, fn: Callable[..., object], *args) -> bool:
        with self._lock:
            if self._closed:
                return False
            fn(*args)
            return True

    def close(self) -> None:
        with self._lock:
            self._closed = True
