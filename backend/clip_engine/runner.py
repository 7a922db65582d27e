import logging
import subprocess
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .config import default_ffmpeg_bin

logger = logging.getLogger(__name__)

SPAWN_FAILED_CODE = -1


@dataclass
class RunResult:
    success: bool
    code: int
    logs: List[str] = field(default_factory=list)


def run_ffmpeg(
    args: List[str],
    cwd: Optional[str] = None,
    ffmpeg_bin: Optional[str] = None,
    on_line: Optional[Callable[[str], None]] = None,
) -> RunResult:
    """
    Run ffmpeg with a forced-overwrite flag followed by ``args``.

    stdout and stderr are merged and read line by line (text mode treats a lone
    carriage return as a line end, so ffmpeg's in-place status lines arrive one
    at a time). Every line is kept in the result and passed to ``on_line``.
    """
    cmd = [ffmpeg_bin or default_ffmpeg_bin(), "-y", *args]
    logs: List[str] = []
    try:
        proc = subprocess.Popen(
            cmd,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except (OSError, TypeError, ValueError) as e:
        # missing binary, or an argument list Popen cannot pass to exec
        logger.error("Could not start %s: %s", cmd[0], e)
        return RunResult(success=False, code=SPAWN_FAILED_CODE, logs=[f"spawn error: {e}"])

    assert proc.stdout is not None
    with proc.stdout:
        for raw in proc.stdout:
            line = raw.rstrip("\n")
            if not line:
                continue
            logs.append(line)
            if on_line is not None:
                try:
                    on_line(line)
                except Exception as e:
                    logger.debug("Output line handler failed: %s", e)
    code = proc.wait()
    return RunResult(success=code == 0, code=code, logs=logs)
