import dataclasses
import logging
from pathlib import Path
from typing import Callable, List, Optional

from .commands import OUTPUT_DIR, build_args
from .config import Settings, configure_logging, load_settings
from .media import probe_duration
from .progress import ProgressChannel, ProgressGate, ProgressMonitor
from .runner import RunResult, run_ffmpeg
from .scheduler import IntervalScheduler
from .schemas import COMPLETED, FAILED, IMAGE_TO_VIDEO, PROCESSING, JobRecord
from .store import JobStore
from .utils import ensure_dir, utc_now_iso

logger = logging.getLogger(__name__)


class Worker:
    """
    Single-consumer worker: each tick claims at most one queued job and runs it
    to completion. Several workers may share one storage root.
    """

    def __init__(
        self,
        store: JobStore,
        ffmpeg_bin: Optional[str] = None,
        ffprobe_bin: str = "ffprobe",
        lease_timeout: Optional[float] = None,
        run: Callable[..., RunResult] = run_ffmpeg,
        builder: Callable[..., List[str]] = build_args,
        duration_probe: Callable[..., Optional[float]] = probe_duration,
        progress_timeout: float = 5.0,
    ):
        self.store = store
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin
        self.lease_timeout = lease_timeout
        self.run = run
        self.builder = builder
        self.duration_probe = duration_probe
        self.progress_timeout = progress_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "Worker":
        return cls(
            JobStore(settings.storage_root),
            ffmpeg_bin=settings.ffmpeg_bin,
            ffprobe_bin=settings.ffprobe_bin,
            lease_timeout=settings.lease_timeout,
        )

    def tick(self) -> Optional[str]:
        try:
            if self.lease_timeout:
                self.store.reap_stale(self.lease_timeout)
            return self.process_next()
        except Exception:
            logger.exception("Worker tick failed")
            return None

    def process_next(self) -> Optional[str]:
        """Claim and run the oldest queued job. Returns its id, or None if nothing ran."""
        for pending in self.store.list_pending():
            inflight = self.store.claim(pending)
            if inflight is None:
                # another worker got there first
                continue
            self._process(inflight)
            return pending.job_id
        return None

    def _process(self, inflight: Path) -> None:
        try:
            record = self.store.load(inflight)
        except (OSError, ValueError) as e:
            # TODO: write a failed record instead once the status API can show parse errors
            logger.warning("Dropping unreadable job %s: %s", inflight.name, e)
            self.store.discard(inflight)
            return

        job_id = record.job_id or inflight.stem
        record.started_at = utc_now_iso()
        gate = ProgressGate()
        try:
            self._execute(inflight, record, job_id, gate)
        except Exception as e:
            logger.exception("Job %s crashed after it was claimed", job_id)
            gate.close()
            self._fail(inflight, record, f"worker error: {e}")

    def _execute(self, inflight: Path, record: JobRecord, job_id: str, gate: ProgressGate) -> None:
        session_dir = inflight.parent.parent

        if record.args is None:
            try:
                record.args = self.builder(
                    record.operation, record.params, record.output_filename, session_dir
                )
            except Exception as e:
                logger.warning("Job %s rejected: %s", job_id, e)
                self._fail(inflight, record, f"build error: {e}")
                return

        record.status = PROCESSING
        record.progress = 0
        try:
            self.store.write_inflight(inflight, record)
        except OSError as e:
            logger.warning("Could not mark job %s as processing: %s", job_id, e)

        ensure_dir(session_dir / OUTPUT_DIR)
        cwd = record.cwd or str(session_dir)
        monitor = ProgressMonitor(self._target_duration(record, session_dir))
        logger.info("Running job %s (%s) in %s", job_id, record.operation or "prebuilt", cwd)

        def write_progress(pct: int) -> None:
            gate.write(self._write_progress, inflight, record, pct)

        with ProgressChannel(write_progress, join_timeout=self.progress_timeout) as channel:
            def on_line(line: str) -> None:
                pct = monitor.feed(line)
                if pct is not None:
                    channel.put(pct)
                if self.lease_timeout:
                    self.store.heartbeat(inflight)

            result = self.run(record.args, cwd=cwd, ffmpeg_bin=self.ffmpeg_bin, on_line=on_line)

        # waits for a progress write still in flight, then drops any later ones
        gate.close()

        if self.lease_timeout and not inflight.exists():
            logger.warning("Job %s lost its claim while running; leaving the reaper's record", job_id)
            return

        record.status = COMPLETED if result.success else FAILED
        record.code = result.code
        record.logs = result.logs
        record.finished_at = utc_now_iso()
        if result.success:
            record.progress = 100
        dest = self.store.finalize(inflight, record)
        logger.info("Job %s %s (code %s) -> %s", job_id, record.status, result.code, dest)

    def _fail(self, inflight: Path, record: JobRecord, message: str) -> None:
        if not inflight.exists():
            logger.warning("Job %s is no longer in flight; not recording: %s", inflight.stem, message)
            return
        record.status = FAILED
        record.code = None
        record.logs = [message]
        record.finished_at = utc_now_iso()
        self.store.finalize(inflight, record)

    def _write_progress(self, inflight: Path, record: JobRecord, pct: int) -> None:
        snapshot = dataclasses.replace(record, status=PROCESSING, progress=pct)
        self.store.update_inflight(inflight, snapshot)

    def _target_duration(self, record: JobRecord, session_dir: Path) -> Optional[float]:
        params = record.params or {}
        if record.operation == IMAGE_TO_VIDEO:
            duration = params.get("duration", 10)
            if isinstance(duration, (int, float)) and not isinstance(duration, bool) and duration > 0:
                return float(duration)
            return None
        video_file = params.get("videoFile")
        if not isinstance(video_file, str) or not video_file:
            return None
        try:
            return self.duration_probe(
                str(session_dir / OUTPUT_DIR / video_file),
                ffprobe_bin=self.ffprobe_bin,
                ffmpeg_bin=self.ffmpeg_bin,
            )
        except Exception as e:
            logger.debug("Duration probe failed for job %s: %s", record.job_id, e)
            return None


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    ensure_dir(settings.sessions_root)
    worker = Worker.from_settings(settings)
    logger.info("Watching %s every %.1fs", settings.sessions_root, settings.poll_interval)
    IntervalScheduler(settings.poll_interval, worker.tick).run_forever()


if __name__ == "__main__":
    main()
