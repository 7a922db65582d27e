"""
Filesystem-backed job queue.

Layout per session, under ``<storage_root>/sessions/<sessionId>/``::

    queue/<jobId>.json         waiting to be picked up
    queue/<jobId>.processing   claimed by a worker (in flight)
    completed/<jobId>.json     finished with exit code 0
    failed/<jobId>.json        finished with an error
    input/  output/  tmp/      media files

Claiming is a rename from ``.json`` to ``.processing``; the filesystem lets
exactly one of several concurrent renames of the same file succeed, which is
the only mutual exclusion between workers.
"""

import logging
import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .schemas import COMPLETED, FAILED, JobRecord, QUEUED, parse_params
from .utils import ensure_dir, read_json, utc_now_iso, write_json_atomic

logger = logging.getLogger(__name__)

JOB_SUFFIX = ".json"
INFLIGHT_SUFFIX = ".processing"
REAPED_SUFFIX = ".reaped"
LEASE_EXPIRED_CODE = -2


@dataclass
class PendingJob:
    path: Path
    mtime: float

    @property
    def session_dir(self) -> Path:
        return self.path.parent.parent

    @property
    def job_id(self) -> str:
        return self.path.stem


class JobStore:
    def __init__(self, storage_root: str | Path):
        self.storage_root = Path(storage_root)
        self.sessions_root = self.storage_root / "sessions"

    # ---- paths ----

    def session_dir(self, session_id: str) -> Path:
        return self.sessions_root / session_id

    def queue_dir(self, session_id: str) -> Path:
        return self.session_dir(session_id) / "queue"

    def ensure_session(self, session_id: str) -> Path:
        base = self.session_dir(session_id)
        for sub in ("queue", "completed", "failed", "input", "output", "tmp"):
            ensure_dir(base / sub)
        return base

    def _sessions(self) -> List[Path]:
        try:
            return sorted(p for p in self.sessions_root.iterdir() if p.is_dir())
        except FileNotFoundError:
            return []

    # ---- producer side ----

    def enqueue(
        self,
        session_id: str,
        operation: str,
        params: Dict[str, Any],
        output_filename: str,
        job_id: Optional[str] = None,
    ) -> JobRecord:
        parse_params(operation, params)
        base = self.ensure_session(session_id)
        record = JobRecord(
            job_id=job_id or f"job-{uuid.uuid4().hex[:8]}",
            session_id=session_id,
            operation=operation,
            params=params,
            output_filename=output_filename,
            status=QUEUED,
            created_at=utc_now_iso(),
            cwd=str(base),
        )
        path = base / "queue" / f"{record.job_id}{JOB_SUFFIX}"
        if path.exists():
            raise FileExistsError(f"job {record.job_id} already queued in session {session_id}")
        write_json_atomic(path, record.to_dict())
        return record

    # ---- worker side ----

    def list_pending(self) -> List[PendingJob]:
        """All queued records across sessions, oldest modification time first."""
        entries: List[PendingJob] = []
        for session in self._sessions():
            qdir = session / "queue"
            try:
                names = os.listdir(qdir)
            except FileNotFoundError:
                continue
            for name in names:
                if not name.endswith(JOB_SUFFIX):
                    continue
                path = qdir / name
                try:
                    mtime = path.stat().st_mtime
                except FileNotFoundError:
                    # claimed by someone else between listdir and stat
                    continue
                entries.append(PendingJob(path=path, mtime=mtime))
        entries.sort(key=lambda e: (e.mtime, e.path.name))
        return entries

    def claim(self, pending: PendingJob) -> Optional[Path]:
        inflight = pending.path.with_suffix(INFLIGHT_SUFFIX)
        try:
            os.rename(pending.path, inflight)
        except OSError:
            return None
        return inflight

    def load(self, inflight: Path) -> JobRecord:
        return JobRecord.from_dict(read_json(inflight))

    def discard(self, inflight: Path) -> None:
        try:
            inflight.unlink()
        except OSError:
            pass

    def write_inflight(self, inflight: Path, record: JobRecord) -> None:
        write_json_atomic(inflight, record.to_dict())

    def update_inflight(self, inflight: Path, record: JobRecord) -> bool:
        """
        Rewrite an in-flight record only while the claim is still held. If the job
        got settled elsewhere (reaped or finalized) while the write was under way,
        the recreated in-flight file is removed again. Returns whether the update stuck.
        """
        if not inflight.exists():
            return False
        self.write_inflight(inflight, record)
        if self._is_settled(inflight):
            self.discard(inflight)
            return False
        return True

    def _is_settled(self, inflight: Path) -> bool:
        session_dir = inflight.parent.parent
        name = f"{inflight.stem}{JOB_SUFFIX}"
        return (
            inflight.with_suffix(REAPED_SUFFIX).exists()
            or (session_dir / COMPLETED / name).exists()
            or (session_dir / FAILED / name).exists()
        )

    def heartbeat(self, inflight: Path) -> bool:
        """Refresh the claim's modification time; False once the claim is gone."""
        try:
            os.utime(inflight)
            return True
        except OSError:
            return False

    def finalize(self, inflight: Path, record: JobRecord) -> Path:
        session_dir = inflight.parent.parent
        dest_dir = session_dir / (COMPLETED if record.status == COMPLETED else FAILED)
        dest = dest_dir / f"{inflight.stem}{JOB_SUFFIX}"
        write_json_atomic(dest, record.to_dict())
        try:
            inflight.unlink()
        except OSError:
            # the terminal record is already durable
            pass
        return dest

    # ---- lease reaper ----

    def reap_stale(self, lease_timeout: float, now: Optional[float] = None) -> List[str]:
        """
        Fail in-flight jobs whose claim has not been refreshed for ``lease_timeout``
        seconds. Returns the reaped job ids.
        """
        now = time.time() if now is None else now
        reaped: List[str] = []
        for session in self._sessions():
            qdir = session / "queue"
            try:
                names = os.listdir(qdir)
            except FileNotFoundError:
                continue
            for name in names:
                if not name.endswith(INFLIGHT_SUFFIX):
                    continue
                inflight = qdir / name
                try:
                    age = now - inflight.stat().st_mtime
                except FileNotFoundError:
                    continue
                if age < lease_timeout:
                    continue
                held = inflight.with_suffix(REAPED_SUFFIX)
                try:
                    os.rename(inflight, held)
                except OSError:
                    continue
                self._fail_reaped(held, lease_timeout)
                reaped.append(held.stem)
        return reaped

    def _fail_reaped(self, held: Path, lease_timeout: float) -> None:
        try:
            record = self.load(held)
        except (OSError, ValueError):
            record = JobRecord(job_id=held.stem, session_id=held.parent.parent.name)
        record.status = FAILED
        record.code = LEASE_EXPIRED_CODE
        record.finished_at = utc_now_iso()
        record.logs = list(record.logs or []) + [f"lease expired: no heartbeat for {lease_timeout:g}s"]
        self.finalize(held, record)
        logger.warning("Reaped stale job %s in session %s", held.stem, held.parent.parent.name)

    # ---- status read ----

    def find(self, job_id: str, include_logs: bool = True) -> Optional[Dict[str, Any]]:
        """Look a job up across sessions: completed, failed, in flight, then queued."""
        for session in self._sessions():
            candidates = (
                session / "completed" / f"{job_id}{JOB_SUFFIX}",
                session / "failed" / f"{job_id}{JOB_SUFFIX}",
                session / "queue" / f"{job_id}{INFLIGHT_SUFFIX}",
                session / "queue" / f"{job_id}{JOB_SUFFIX}",
            )
            for path in candidates:
                if not path.exists():
                    continue
                try:
                    data = read_json(path)
                except (OSError, ValueError):
                    logger.warning("Unreadable job record %s", path)
                    continue
                if isinstance(data, dict):
                    if not include_logs:
                        data.pop("logs", None)
                    return data
        return None
