"""Engine configuration (Pydantic v2). Load from scenescout.yml with optional env override."""

import os
from pathlib import Path
from typing import Mapping

import yaml
from pydantic import BaseModel, Field, field_validator


DEFAULT_CONFIG_ENV_VAR = "SCENESCOUT_CONFIG"
DEFAULT_CONFIG_FILENAME = "scenescout.yml"
LOG_LEVEL_ENV_VAR = "SCENESCOUT_LOG_LEVEL"


class SegmentationSettings(BaseModel):
    """Sampling cadence, diff grid and adaptive cut thresholds."""

    model_config = {"extra": "ignore"}

    sampling_interval_sec: float = 0.5  # one sampled frame per interval of video time
    grid_width: int = 32  # DiffScorer grid (resolution independent)
    grid_height: int = 18
    baseline_percentile: float = 50.0  # noise baseline of the diff distribution (50 = median)
    threshold_multiplier: float = 3.0  # candidate if score > baseline * multiplier + margin
    threshold_margin: float = 8.0
    min_scene_len_sec: float = 1.0  # candidates closer than this merge into the earlier one
    min_remainder_sec: float = 0.25  # fixed mode: shorter trailing slice merges into the previous one
    scan_width: int = 160  # decode width for the scan pass
    seek_gap_sec: float = 5.0  # forward jumps larger than this restart FFmpeg with -ss
    hwaccel: str | None = None

    @field_validator(
        "sampling_interval_sec",
        "threshold_multiplier",
        "min_scene_len_sec",
        "seek_gap_sec",
    )
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("grid_width", "grid_height", "scan_width")
    @classmethod
    def _positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("threshold_margin", "min_remainder_sec")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator("baseline_percentile")
    @classmethod
    def _percentile(cls, v: float) -> float:
        if not 0 <= v <= 100:
            raise ValueError("must be within [0, 100]")
        return v


class ThumbnailSettings(BaseModel):
    """Thumbnail decode size, JPEG encoding and optional parallelism."""

    model_config = {"extra": "ignore"}

    source_width: int = 640  # decode width before fitting into max_width x max_height
    max_width: int = 480
    max_height: int = 480
    jpeg_quality: int = 80
    workers: int = 1  # >1 extracts thumbnails on threads, one FrameSource each

    @field_validator("source_width", "max_width", "max_height", "workers")
    @classmethod
    def _positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("jpeg_quality")
    @classmethod
    def _quality(cls, v: int) -> int:
        if not 1 <= v <= 95:
            raise ValueError("must be within [1, 95]")
        return v


class Settings(BaseModel):
    """
    Engine config loaded from YAML.

    When loading the default config, log_level may be overridden by the SCENESCOUT_LOG_LEVEL
    environment variable (but not when an explicit config_path is provided).
    """

    model_config = {"extra": "ignore"}

    segmentation: SegmentationSettings = Field(default_factory=SegmentationSettings)
    thumbnail: ThumbnailSettings = Field(default_factory=ThumbnailSettings)
    log_level: str = "WARNING"
    forensics_dir: str = "logs/forensics"

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, v: object) -> str:
        return str(v or "WARNING").upper()


_config: Settings | None = None


class ConfigLoader:
    """
    Helper responsible for loading Settings from YAML and environment.

    - load_from_yaml(path, apply_env_override): read a YAML file and optionally apply env overrides.
    - load_default(): resolve the default config path from SCENESCOUT_CONFIG / scenescout.yml and
      apply SCENESCOUT_LOG_LEVEL override when present.
    """

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self._env: Mapping[str, str] = env if env is not None else os.environ

    def load_from_yaml(self, path: Path, apply_env_override: bool) -> Settings:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f)
        if not data:
            data = {}
        if apply_env_override and self._env.get(LOG_LEVEL_ENV_VAR):
            data["log_level"] = self._env[LOG_LEVEL_ENV_VAR]
        return Settings.model_validate(data)

    def load_default(self) -> Settings:
        """Load the default Settings, using SCENESCOUT_CONFIG or scenescout.yml when present."""
        path_str = self._env.get(DEFAULT_CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILENAME
        path = Path(path_str)
        if path.exists():
            return self.load_from_yaml(path, apply_env_override=True)

        settings = Settings()
        if self._env.get(LOG_LEVEL_ENV_VAR):
            settings = settings.model_copy(update={"log_level": self._env[LOG_LEVEL_ENV_VAR].upper()})
        return settings


_loader = ConfigLoader()


def get_config(config_path: str | Path | None = None) -> Settings:
    """
    Return singleton config.

    - If config_path is given, load from it (without env overrides) and update the cache.
    - Otherwise, return the cached config if available, or load via ConfigLoader.load_default().
    """
    global _config
    if config_path is not None:
        _config = _loader.load_from_yaml(Path(config_path), apply_env_override=False)
        return _config
    if _config is not None:
        return _config
    _config = _loader.load_default()
    return _config


def reset_config() -> None:
    """Clear cached config (for tests)."""
    global _config
    _config = None
