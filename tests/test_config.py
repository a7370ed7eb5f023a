"""Tests for YAML config loading, env override and the config singleton."""

import pytest
from pydantic import ValidationError

from scenescout.core.config import (
    ConfigLoader,
    SegmentationSettings,
    Settings,
    ThumbnailSettings,
    get_config,
    reset_config,
)

pytestmark = [pytest.mark.fast]


def test_defaults():
    cfg = Settings()
    assert cfg.segmentation.sampling_interval_sec == 0.5
    assert (cfg.segmentation.grid_width, cfg.segmentation.grid_height) == (32, 18)
    assert cfg.segmentation.min_scene_len_sec == 1.0
    assert cfg.thumbnail.max_width == 480
    assert cfg.log_level == "WARNING"


def test_load_nested_yaml(tmp_path):
    path = tmp_path / "scenescout.yml"
    path.write_text(
        "segmentation:\n"
        "  sampling_interval_sec: 0.25\n"
        "  threshold_multiplier: 2.5\n"
        "thumbnail:\n"
        "  jpeg_quality: 70\n"
        "  workers: 4\n"
        "log_level: info\n"
        "unknown_key: ignored\n"
    )
    cfg = ConfigLoader(env={}).load_from_yaml(path, apply_env_override=False)
    assert cfg.segmentation.sampling_interval_sec == 0.25
    assert cfg.segmentation.threshold_multiplier == 2.5
    assert cfg.segmentation.threshold_margin == 8.0
    assert cfg.thumbnail.jpeg_quality == 70
    assert cfg.thumbnail.workers == 4
    assert cfg.log_level == "INFO"


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "empty.yml"
    path.write_text("")
    assert ConfigLoader(env={}).load_from_yaml(path, apply_env_override=False) == Settings()


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigLoader(env={}).load_from_yaml(tmp_path / "nope.yml", apply_env_override=False)


def test_env_selects_config_and_overrides_log_level(tmp_path):
    path = tmp_path / "custom.yml"
    path.write_text("log_level: ERROR\nsegmentation:\n  seek_gap_sec: 2.0\n")
    loader = ConfigLoader(env={"SCENESCOUT_CONFIG": str(path), "SCENESCOUT_LOG_LEVEL": "debug"})
    cfg = loader.load_default()
    assert cfg.segmentation.seek_gap_sec == 2.0
    assert cfg.log_level == "DEBUG"


def test_env_log_level_without_config_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    cfg = ConfigLoader(env={"SCENESCOUT_LOG_LEVEL": "info"}).load_default()
    assert cfg.log_level == "INFO"
    assert cfg.segmentation == SegmentationSettings()


def test_explicit_path_is_not_overridden_by_env(tmp_path, monkeypatch):
    path = tmp_path / "explicit.yml"
    path.write_text("log_level: ERROR\n")
    monkeypatch.setenv("SCENESCOUT_LOG_LEVEL", "DEBUG")
    assert get_config(path).log_level == "ERROR"


def test_get_config_caches_until_reset(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    first = get_config()
    assert get_config() is first
    reset_config()
    assert get_config() is not first


@pytest.mark.parametrize(
    "kwargs",
    [
        {"sampling_interval_sec": 0},
        {"min_scene_len_sec": -1},
        {"threshold_margin": -0.5},
        {"baseline_percentile": 101},
        {"grid_width": 0},
    ],
)
def test_invalid_segmentation_settings(kwargs):
    with pytest.raises(ValidationError):
        SegmentationSettings(**kwargs)


@pytest.mark.parametrize("kwargs", [{"jpeg_quality": 0}, {"jpeg_quality": 100}, {"workers": 0}])
def test_invalid_thumbnail_settings(kwargs):
    with pytest.raises(ValidationError):
        ThumbnailSettings(**kwargs)
