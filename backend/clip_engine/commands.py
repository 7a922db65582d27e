"""
ffmpeg argument builders, one per operation kind.

Paths in the returned arguments are relative to the session directory, which
is the working directory ffmpeg runs in: uploaded media under ``input/``,
generated media under ``output/``. The leading ``-y`` is added by the runner.
"""

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .media import probe_dimensions
from .overlay import build_scene, render_overlay
from .schemas import (
    ADD_AUDIO,
    ADD_TEXT_OVERLAY,
    APPLY_EFFECTS,
    IMAGE_TO_VIDEO,
    AddAudioParams,
    ApplyEffectsParams,
    ImageToVideoParams,
    ParamsError,
    TextOverlayParams,
    parse_params,
)

logger = logging.getLogger(__name__)

INPUT_DIR = "input"
OUTPUT_DIR = "output"
TMP_DIR = "tmp"

DEFAULT_RESOLUTIONS = {
    "vertical": (1080, 1920),
    "landscape": (1920, 1080),
}
DEFAULT_OVERLAY_CANVAS = (1080, 1920)

KENBURNS_FRAMES = 125
KENBURNS_SIZE = "1080x1920"
KENBURNS_STEP = 0.0015
KENBURNS_MAX_ZOOM = 1.5

# Fixed encoder settings for re-encoded overlay output
OVERLAY_ENCODE = [
    "-c:v", "libx264",
    "-preset", "veryfast",
    "-crf", "18",
    "-pix_fmt", "yuv420p",
    "-movflags", "+faststart",
]


def _in(name: str) -> str:
    return f"{INPUT_DIR}/{name}"


def _out(name: str) -> str:
    return f"{OUTPUT_DIR}/{name}"


def _require_output(output_filename: Optional[str]) -> str:
    if not isinstance(output_filename, str) or not output_filename.strip():
        raise ParamsError("'outputFilename' is required")
    return output_filename


def _fmt_num(value: float) -> str:
    # shortest form without trailing zeros, keeping full double precision
    return f"{value:.15g}"


def resolve_resolution(params: ImageToVideoParams) -> Tuple[int, int]:
    if params.resolution:
        w, h = params.resolution.split("x")
        return int(w), int(h)
    return DEFAULT_RESOLUTIONS[params.orientation]


def _fit_filter(width: int, height: int) -> str:
    # letterbox into the target canvas, keeping aspect ratio
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,"
        "setsar=1"
    )


def image_to_video_args(params: ImageToVideoParams, output_filename: str) -> List[str]:
    count = len(params.images)
    per_image = max(1, int(params.duration // count))
    width, height = resolve_resolution(params)

    args: List[str] = []
    for img in params.images:
        args += ["-loop", "1", "-t", str(per_image), "-i", _in(img)]

    if count == 1:
        args += ["-vf", _fit_filter(width, height)]
    else:
        chains = [f"[{i}:v]{_fit_filter(width, height)}[v{i}]" for i in range(count)]
        labels = "".join(f"[v{i}]" for i in range(count))
        chains.append(f"{labels}concat=n={count}:v=1:a=0[outv]")
        args += ["-filter_complex", ";".join(chains), "-map", "[outv]"]

    args += [
        "-r", str(params.fps),
        "-c:v", "libx264",
        "-pix_fmt", "yuv420p",
        _out(output_filename),
    ]
    return args


def add_audio_args(params: AddAudioParams, output_filename: str) -> List[str]:
    return [
        "-i", _out(params.video_file),
        "-i", _in(params.audio_file),
        "-map", "0:v:0",
        "-map", "1:a:0",
        "-c:v", "copy",
        "-filter:a", f"volume={_fmt_num(params.volume)}",
        "-c:a", "aac",
        "-shortest",
        _out(output_filename),
    ]


def _effect_number(effect: Dict, key: str, default: float) -> float:
    value = effect.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ParamsError(f"effect '{effect.get('type')}' needs a numeric '{key}'")
    return value


def kenburns_filter(zoom_out: bool) -> str:
    if zoom_out:
        zoom = f"if(eq(on,1),{KENBURNS_MAX_ZOOM},max(zoom-{KENBURNS_STEP},1.0))"
    else:
        zoom = f"min(zoom+{KENBURNS_STEP},{KENBURNS_MAX_ZOOM})"
    return (
        f"zoompan=z='{zoom}':d={KENBURNS_FRAMES}"
        ":x='iw/2-(iw/zoom/2)':y='ih/2-(ih/zoom/2)'"
        f":s={KENBURNS_SIZE}"
    )


def effects_filter_chain(effects: List[Dict]) -> str:
    filters: List[str] = []
    for effect in effects:
        kind = str(effect.get("type", "")).lower()
        if kind == "kenburns":
            direction = str(effect.get("direction") or effect.get("value") or "in").lower()
            filters.append(kenburns_filter(direction in ("out", "zoom-out", "zoomout")))
        elif kind == "brightness":
            filters.append(f"eq=brightness={_fmt_num(_effect_number(effect, 'value', 0.0))}")
        elif kind == "contrast":
            filters.append(f"eq=contrast={_fmt_num(_effect_number(effect, 'value', 1.0))}")
        elif kind == "blur":
            sigma = _effect_number(effect, "sigma", _effect_number(effect, "value", 5.0))
            filters.append(f"gblur=sigma={_fmt_num(sigma)}")
        else:
            logger.debug("Ignoring unknown effect type %r", kind)
    return ",".join(filters) if filters else "null"


def apply_effects_args(params: ApplyEffectsParams, output_filename: str) -> List[str]:
    return [
        "-i", _out(params.video_file),
        "-vf", effects_filter_chain(params.effects),
        "-c:v", "libx264",
        "-pix_fmt", "yuv420p",
        "-c:a", "copy",
        _out(output_filename),
    ]


def overlay_artifact_names(output_filename: str) -> Tuple[str, str]:
    stem = Path(output_filename).stem
    return f"{TMP_DIR}/{stem}.overlay.png", f"{TMP_DIR}/{stem}.overlay.svg"


def text_overlay_args(
    params: TextOverlayParams,
    output_filename: str,
    session_dir: Path,
    canvas_size: Optional[Tuple[int, int]] = None,
) -> List[str]:
    if canvas_size is None:
        canvas_size = probe_dimensions(str(session_dir / OUTPUT_DIR / params.video_file)) or DEFAULT_OVERLAY_CANVAS
    width, height = canvas_size

    scene = build_scene(
        params.text,
        params.subtitle,
        width,
        height,
        style=params.style,
        position=params.position,
        ratio=params.ratio if params.style == "panel" else None,
    )
    png_rel, svg_rel = overlay_artifact_names(output_filename)
    render_overlay(scene, session_dir / png_rel, session_dir / svg_rel)

    return [
        "-i", _out(params.video_file),
        "-i", png_rel,
        "-filter_complex", "[0:v][1:v]overlay=0:0[outv]",
        "-map", "[outv]",
        "-map", "0:a?",
        *OVERLAY_ENCODE,
        "-c:a", "copy",
        _out(output_filename),
    ]


_SIMPLE_BUILDERS: Dict[str, Callable] = {
    IMAGE_TO_VIDEO: image_to_video_args,
    ADD_AUDIO: add_audio_args,
    APPLY_EFFECTS: apply_effects_args,
}


def build_args(
    operation: Optional[str],
    params: Optional[Dict],
    output_filename: Optional[str],
    session_dir: Optional[Path] = None,
    canvas_size: Optional[Tuple[int, int]] = None,
) -> List[str]:
    """
    Translate a job's operation and raw params into ffmpeg arguments.

    Raises ParamsError for invalid input (before anything touches the disk) and
    OverlayError when the text overlay image cannot be rendered.
    """
    typed = parse_params(operation, params)
    output_filename = _require_output(output_filename)

    if operation == ADD_TEXT_OVERLAY:
        if session_dir is None:
            raise ParamsError("text overlay needs the session directory")
        return text_overlay_args(typed, output_filename, Path(session_dir), canvas_size)
    return _SIMPLE_BUILDERS[operation](typed, output_filename)
