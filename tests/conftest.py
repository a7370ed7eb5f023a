"""Pytest fixtures: default settings, config isolation and synthetic frame-source factories."""

import pytest

from scenescout.core.config import SegmentationSettings, Settings, ThumbnailSettings, reset_config
from tests.synthetic import SourceFactory, cuts_color_at, flat_color_at


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch):
    """Each test starts without a cached config and without SCENESCOUT_* env overrides."""
    monkeypatch.delenv("SCENESCOUT_CONFIG", raising=False)
    monkeypatch.delenv("SCENESCOUT_LOG_LEVEL", raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def settings() -> Settings:
    """Defaults, with small thumbnails so JPEG encoding stays cheap."""
    return Settings(
        segmentation=SegmentationSettings(),
        thumbnail=ThumbnailSettings(max_width=64, max_height=64),
    )


@pytest.fixture
def flat_factory():
    """Factory for a video with no visual change at all."""

    def make(duration: float = 10.0, **kwargs) -> SourceFactory:
        return SourceFactory(duration, flat_color_at(), **kwargs)

    return make


@pytest.fixture
def cuts_factory():
    """Factory for a video with hard cuts at the given timestamps."""

    def make(cuts: list[float], duration: float = 10.0, **kwargs) -> SourceFactory:
        return SourceFactory(duration, cuts_color_at(cuts), **kwargs)

    return make
