"""
Runtime configuration for the clip engine worker.

Values are resolved in this order (later wins): built-in defaults, an optional
YAML file named by CLIP_ENGINE_CONFIG, then environment variables (a local
.env file is loaded first).
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def default_ffmpeg_bin() -> str:
    exe = os.environ.get("FFMPEG_BIN")
    if exe:
        return exe
    try:
        import imageio_ffmpeg  # type: ignore
        return imageio_ffmpeg.get_ffmpeg_exe()
    except Exception:
        return "ffmpeg"


@dataclass
class Settings:
    storage_root: Path = Path("storage")
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    poll_interval: float = 2.0
    lease_timeout: Optional[float] = None
    log_level: str = "INFO"

    @property
    def sessions_root(self) -> Path:
        return self.storage_root / "sessions"


def _load_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def load_settings(config_path: Optional[str] = None) -> Settings:
    load_dotenv()

    file_values: Dict[str, Any] = {}
    config_path = config_path or os.environ.get("CLIP_ENGINE_CONFIG")
    if config_path:
        file_values = _load_yaml(config_path)

    def pick(env_key: str, file_key: str, default: Any) -> Any:
        if env_key in os.environ:
            return os.environ[env_key]
        return file_values.get(file_key, default)

    ffmpeg_bin = os.environ.get("FFMPEG_BIN") or file_values.get("ffmpeg_bin") or default_ffmpeg_bin()

    return Settings(
        storage_root=Path(pick("CLIP_ENGINE_STORAGE", "storage_root", "storage")),
        ffmpeg_bin=str(ffmpeg_bin),
        ffprobe_bin=str(pick("FFPROBE_BIN", "ffprobe_bin", "ffprobe")),
        poll_interval=float(pick("CLIP_ENGINE_POLL_INTERVAL", "poll_interval", 2.0)),
        lease_timeout=_optional_float(pick("CLIP_ENGINE_LEASE_TIMEOUT", "lease_timeout", None)),
        log_level=str(pick("LOG_LEVEL", "log_level", "INFO")).upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
