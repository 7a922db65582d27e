"""
Clip editing engine: a file-backed job queue whose worker turns media-editing
jobs (image slideshows, audio mixing, visual effects, text overlays) into
ffmpeg invocations and records the outcome next to each job.
"""

from .commands import build_args
from .store import JobStore
from .worker import Worker

__all__ = ["JobStore", "Worker", "build_args"]
