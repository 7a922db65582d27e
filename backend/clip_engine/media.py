import json
import re
import subprocess
from typing import Any, Dict, Optional, Tuple

from .config import default_ffmpeg_bin

DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
VIDEO_SIZE_RE = re.compile(r"Stream #.*Video:.*?\b(\d{2,5})x(\d{2,5})\b")


def probe(path: str, ffprobe_bin: str = "ffprobe") -> Dict[str, Any]:
    """
    Use ffprobe to read basic metadata. If ffprobe is unavailable, return an empty dict.
    """
    cmd = [
        ffprobe_bin,
        "-v",
        "error",
        "-select_streams",
        "v:0",
        "-show_entries",
        "stream=width,height,r_frame_rate,avg_frame_rate",
        "-show_entries",
        "format=duration",
        "-of",
        "json",
        path,
    ]
    try:
        out = subprocess.check_output(cmd, stderr=subprocess.DEVNULL)
        return json.loads(out.decode("utf-8"))
    except Exception:
        # Graceful fallback for environments without ffprobe
        return {}


def _ffmpeg_banner(path: str, ffmpeg_bin: Optional[str] = None) -> str:
    # `ffmpeg -i` without an output exits non-zero but still prints the input summary
    cmd = [ffmpeg_bin or default_ffmpeg_bin(), "-hide_banner", "-i", path]
    try:
        proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
    except OSError:
        return ""
    return proc.stdout.decode("utf-8", errors="ignore")


def probe_duration(path: str, ffprobe_bin: str = "ffprobe", ffmpeg_bin: Optional[str] = None) -> Optional[float]:
    info = probe(path, ffprobe_bin)
    try:
        duration = float((info.get("format") or {}).get("duration"))
        if duration > 0:
            return duration
    except (TypeError, ValueError):
        pass

    m = DURATION_RE.search(_ffmpeg_banner(path, ffmpeg_bin))
    if not m:
        return None
    hours, minutes, seconds = m.groups()
    duration = int(hours) * 3600 + int(minutes) * 60 + float(seconds)
    return duration if duration > 0 else None


def probe_dimensions(path: str, ffprobe_bin: str = "ffprobe", ffmpeg_bin: Optional[str] = None) -> Optional[Tuple[int, int]]:
    info = probe(path, ffprobe_bin)
    streams = info.get("streams") or []
    if streams:
        st0 = streams[0] or {}
        width, height = st0.get("width"), st0.get("height")
        if width and height:
            return int(width), int(height)

    m = VIDEO_SIZE_RE.search(_ffmpeg_banner(path, ffmpeg_bin))
    if not m:
        return None
    return int(m.group(1)), int(m.group(2))
