from pathlib import Path

import pytest

from backend.clip_engine.config import default_ffmpeg_bin, load_settings

ENV_KEYS = (
    "CLIP_ENGINE_CONFIG",
    "CLIP_ENGINE_STORAGE",
    "FFMPEG_BIN",
    "FFPROBE_BIN",
    "CLIP_ENGINE_POLL_INTERVAL",
    "CLIP_ENGINE_LEASE_TIMEOUT",
    "LOG_LEVEL",
)


@pytest.fixture()
def clean_env(monkeypatch, tmp_path):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


def test_defaults(clean_env):
    clean_env.setenv("FFMPEG_BIN", "/opt/ffmpeg/bin/ffmpeg")
    settings = load_settings()

    assert settings.storage_root == Path("storage")
    assert settings.sessions_root == Path("storage") / "sessions"
    assert settings.ffmpeg_bin == "/opt/ffmpeg/bin/ffmpeg"
    assert settings.ffprobe_bin == "ffprobe"
    assert settings.poll_interval == 2.0
    assert settings.lease_timeout is None
    assert settings.log_level == "INFO"


def test_yaml_file_then_environment(clean_env, tmp_path):
    cfg = tmp_path / "engine.yaml"
    cfg.write_text(
        "storage_root: /data/clips\n"
        "ffprobe_bin: /usr/local/bin/ffprobe\n"
        "poll_interval: 0.5\n"
        "lease_timeout: 90\n"
        "log_level: debug\n",
        encoding="utf-8",
    )
    clean_env.setenv("CLIP_ENGINE_CONFIG", str(cfg))
    clean_env.setenv("CLIP_ENGINE_POLL_INTERVAL", "4")
    clean_env.setenv("FFMPEG_BIN", "ffmpeg")

    settings = load_settings()

    assert settings.storage_root == Path("/data/clips")
    assert settings.ffprobe_bin == "/usr/local/bin/ffprobe"
    assert settings.poll_interval == 4.0
    assert settings.lease_timeout == 90.0
    assert settings.log_level == "DEBUG"


def test_config_must_be_mapping(clean_env, tmp_path):
    cfg = tmp_path / "bad.yaml"
    cfg.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(str(cfg))


def test_ffmpeg_bin_falls_back_to_bundled_binary(clean_env, mocker):
    mocker.patch("imageio_ffmpeg.get_ffmpeg_exe", return_value="/venv/bin/ffmpeg-bundled")
    assert default_ffmpeg_bin() == "/venv/bin/ffmpeg-bundled"

    clean_env.setenv("FFMPEG_BIN", "/usr/bin/ffmpeg")
    assert default_ffmpeg_bin() == "/usr/bin/ffmpeg"
