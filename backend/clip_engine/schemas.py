from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

IMAGE_TO_VIDEO = "image-to-video"
ADD_AUDIO = "add-audio"
APPLY_EFFECTS = "apply-effects"
ADD_TEXT_OVERLAY = "add-text-overlay"

OPERATIONS = (IMAGE_TO_VIDEO, ADD_AUDIO, APPLY_EFFECTS, ADD_TEXT_OVERLAY)

QUEUED = "queued"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

RESOLUTION_RE = re.compile(r"^\d+x\d+$")

OVERLAY_POSITIONS = ("top", "center", "bottom")
OVERLAY_STYLES = ("panel", "banner")
DEFAULT_PANEL_RATIO = 0.30
MAX_OVERLAY_TEXT = 500
MAX_OVERLAY_SUBTITLE = 100


class ParamsError(ValueError):
    """Raised when a job's operation or parameters cannot be turned into a command."""


@dataclass
class ImageToVideoParams:
    images: List[str]
    duration: float = 10
    fps: int = 30
    orientation: str = "vertical"
    resolution: Optional[str] = None


@dataclass
class AddAudioParams:
    video_file: str
    audio_file: str
    volume: float = 1.0


@dataclass
class ApplyEffectsParams:
    video_file: str
    effects: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class TextOverlayParams:
    video_file: str
    text: str
    subtitle: str = ""
    position: str = "top"
    style: str = "panel"
    ratio: float = DEFAULT_PANEL_RATIO


OperationParams = Union[ImageToVideoParams, AddAudioParams, ApplyEffectsParams, TextOverlayParams]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require_str(params: Dict[str, Any], key: str) -> str:
    value = params.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ParamsError(f"'{key}' is required and must be a non-empty string")
    return value


def _parse_image_to_video(params: Dict[str, Any]) -> ImageToVideoParams:
    images = params.get("images")
    if not isinstance(images, list) or not images:
        raise ParamsError("'images' must be a non-empty list")
    for img in images:
        if not isinstance(img, str) or not img:
            raise ParamsError("every entry of 'images' must be a non-empty string")

    duration = params.get("duration", 10)
    if not _is_number(duration) or duration <= 0:
        raise ParamsError("'duration' must be a positive number")

    fps = params.get("fps", 30)
    if not _is_number(fps) or fps <= 0 or int(fps) != fps:
        raise ParamsError("'fps' must be a positive integer")

    orientation = params.get("orientation", "vertical")
    if orientation is not None and not isinstance(orientation, str):
        raise ParamsError("'orientation' must be a string")
    orientation = "landscape" if orientation == "landscape" else "vertical"

    resolution = params.get("resolution")
    if resolution is not None:
        if not isinstance(resolution, str) or not RESOLUTION_RE.match(resolution):
            raise ParamsError("'resolution' must look like WIDTHxHEIGHT")

    return ImageToVideoParams(
        images=list(images),
        duration=duration,
        fps=int(fps),
        orientation=orientation,
        resolution=resolution,
    )


def _parse_add_audio(params: Dict[str, Any]) -> AddAudioParams:
    volume = params.get("volume", 1.0)
    if volume is None:
        volume = 1.0
    if not _is_number(volume) or volume < 0:
        raise ParamsError("'volume' must be a non-negative number")
    return AddAudioParams(
        video_file=_require_str(params, "videoFile"),
        audio_file=_require_str(params, "audioFile"),
        volume=volume,
    )


def _parse_apply_effects(params: Dict[str, Any]) -> ApplyEffectsParams:
    video_file = _require_str(params, "videoFile")
    effects = params.get("effects", [])
    if not isinstance(effects, list):
        raise ParamsError("'effects' must be a list")
    for effect in effects:
        if not isinstance(effect, dict) or not isinstance(effect.get("type"), str):
            raise ParamsError("every effect must be an object with a string 'type'")
    return ApplyEffectsParams(video_file=video_file, effects=[dict(e) for e in effects])


def _parse_text_overlay(params: Dict[str, Any]) -> TextOverlayParams:
    video_file = _require_str(params, "videoFile")
    text = _require_str(params, "text").strip()
    if len(text) > MAX_OVERLAY_TEXT:
        raise ParamsError(f"'text' must be {MAX_OVERLAY_TEXT} characters or less")

    subtitle = params.get("subtitle")
    if subtitle is None:
        subtitle = params.get("attribution", "")
    if subtitle is None:
        subtitle = ""
    if not isinstance(subtitle, str) or len(subtitle) > MAX_OVERLAY_SUBTITLE:
        raise ParamsError(f"'subtitle' must be a string of {MAX_OVERLAY_SUBTITLE} characters or less")

    position = params.get("position") or "top"
    if position not in OVERLAY_POSITIONS:
        raise ParamsError(f"'position' must be one of: {', '.join(OVERLAY_POSITIONS)}")

    style = params.get("style") or "panel"
    if style not in OVERLAY_STYLES:
        raise ParamsError(f"'style' must be one of: {', '.join(OVERLAY_STYLES)}")

    ratio = params.get("ratio", DEFAULT_PANEL_RATIO)
    if not _is_number(ratio) or not 0 < ratio < 1:
        if ratio is not None:
            logger.warning("Ignoring overlay ratio %r outside (0, 1); using %.2f", ratio, DEFAULT_PANEL_RATIO)
        ratio = DEFAULT_PANEL_RATIO

    return TextOverlayParams(
        video_file=video_file,
        text=text,
        subtitle=subtitle.strip(),
        position=position,
        style=style,
        ratio=float(ratio),
    )


_PARSERS = {
    IMAGE_TO_VIDEO: _parse_image_to_video,
    ADD_AUDIO: _parse_add_audio,
    APPLY_EFFECTS: _parse_apply_effects,
    ADD_TEXT_OVERLAY: _parse_text_overlay,
}


def parse_params(operation: Optional[str], params: Any) -> OperationParams:
    """Validate a raw params mapping and return the typed variant for ``operation``."""
    if not operation:
        raise ParamsError("job has no 'operation' and no prebuilt 'args'")
    parser = _PARSERS.get(operation)
    if parser is None:
        raise ParamsError(f"unsupported operation: {operation}")
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise ParamsError("'params' must be an object")
    return parser(params)


# camelCase JSON key -> attribute name
_RECORD_FIELDS = {
    "jobId": "job_id",
    "sessionId": "session_id",
    "operation": "operation",
    "params": "params",
    "outputFilename": "output_filename",
    "status": "status",
    "createdAt": "created_at",
    "startedAt": "started_at",
    "finishedAt": "finished_at",
    "args": "args",
    "cwd": "cwd",
    "progress": "progress",
    "code": "code",
    "logs": "logs",
}


@dataclass
class JobRecord:
    job_id: Optional[str] = None
    session_id: Optional[str] = None
    operation: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    output_filename: Optional[str] = None
    status: str = QUEUED
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    args: Optional[List[str]] = None
    cwd: Optional[str] = None
    progress: Optional[int] = None
    code: Optional[int] = None
    logs: Optional[List[str]] = None
    # keys written by collaborators that the engine does not interpret
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "JobRecord":
        if not isinstance(data, dict):
            raise ValueError("job record must be a JSON object")
        known = {attr: data[key] for key, attr in _RECORD_FIELDS.items() if key in data}
        extra = {k: v for k, v in data.items() if k not in _RECORD_FIELDS}
        if known.get("params") is None:
            known["params"] = {}
        if not isinstance(known["params"], dict):
            raise ValueError("'params' must be an object when present")
        args = known.get("args")
        if args is not None:
            if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
                raise ValueError("'args' must be a list of strings when present")
        return cls(extra=extra, **known)

    def to_dict(self, include_logs: bool = True) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(self.extra)
        for key, attr in _RECORD_FIELDS.items():
            value = getattr(self, attr)
            if value is None and not (key == "code" and self.status in (COMPLETED, FAILED)):
                continue
            if key == "logs" and not include_logs:
                continue
            out[key] = value
        return out
