"""Data contracts for segmentation: transient frame samples, diff timeline, scenes and the result."""

import json
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, model_validator

SCENE_ID_BASE = 1


class ModeKind(str, Enum):
    adaptive = "adaptive"  # Visual Cut AI
    fixed = "fixed"  # uniform slices of duration_sec


_ADAPTIVE_ALIASES = {"adaptive", "smart", "auto", "ai"}


class SegmentationMode(BaseModel):
    """How scene boundaries are decided: adaptive cut detection or fixed-duration slicing."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: ModeKind
    duration_sec: float | None = Field(default=None, alias="durationSeconds")

    @model_validator(mode="after")
    def _check_duration(self) -> "SegmentationMode":
        if self.kind is ModeKind.fixed:
            if self.duration_sec is None or not math.isfinite(self.duration_sec) or self.duration_sec <= 0:
                raise ValueError("fixed mode requires a finite duration_sec > 0")
        elif self.duration_sec is not None:
            raise ValueError("adaptive mode does not take duration_sec")
        return self

    @classmethod
    def adaptive(cls) -> "SegmentationMode":
        return cls(kind=ModeKind.adaptive)

    @classmethod
    def fixed(cls, duration_sec: float) -> "SegmentationMode":
        return cls(kind=ModeKind.fixed, duration_sec=float(duration_sec))

    @classmethod
    def from_duration(cls, duration_sec: float) -> "SegmentationMode":
        """0 selects adaptive mode (the "Visual Cut AI" choice); anything positive selects fixed slices."""
        if duration_sec == 0:
            return cls.adaptive()
        return cls.fixed(duration_sec)

    @classmethod
    def parse(cls, value: str) -> "SegmentationMode":
        """Parse a CLI/config string: 'adaptive' (or smart/auto/ai), '0', or a number of seconds such as '8' or '7.5s'."""
        text = value.strip().lower()
        if text in _ADAPTIVE_ALIASES:
            return cls.adaptive()
        if text.endswith("s"):
            text = text[:-1]
        try:
            seconds = float(text)
        except ValueError as e:
            raise ValueError(f"invalid segmentation mode: {value!r}") from e
        if not math.isfinite(seconds) or seconds < 0:
            raise ValueError(f"invalid segmentation mode: {value!r}")
        return cls.from_duration(seconds)

    def describe(self) -> str:
        if self.kind is ModeKind.adaptive:
            return "adaptive"
        return f"fixed {self.duration_sec:g}s"


@dataclass(frozen=True)
class FrameSample:
    """One decoded frame. Owned by the sampling loop and discarded after scoring or thumbnailing."""

    frame_index: int
    timestamp: float
    pixels: np.ndarray  # (height, width, 3) uint8 RGB

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


class FrameDiff(BaseModel):
    """Visual change between a sample and the previous sample."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    frame_index: int = Field(ge=0, alias="frameIndex")
    timestamp: float = Field(ge=0)
    diff_score: float = Field(ge=0, alias="diffScore")


class Scene(BaseModel):
    """A contiguous [start_time, end_time) window of the source video."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    start_time: float = Field(ge=0, alias="startTime")
    end_time: float = Field(alias="endTime")
    thumbnail_data_url: str | None = Field(default=None, alias="thumbnailDataUrl")

    @model_validator(mode="after")
    def _check_window(self) -> "Scene":
        if not self.start_time < self.end_time:
            raise ValueError(f"scene {self.id}: start_time {self.start_time} >= end_time {self.end_time}")
        return self

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


class SegmentationResult(BaseModel):
    """Scenes plus the full diff timeline. Produced once per segment() call and owned by the caller."""

    model_config = ConfigDict(populate_by_name=True)

    scenes: list[Scene]
    diffs: list[FrameDiff] = Field(default_factory=list)
    duration: float = 0.0
    mode: SegmentationMode | None = None

    def to_dict(self, *, include_thumbnails: bool = True) -> dict[str, Any]:
        """camelCase dict for downstream consumers (startTime, endTime, thumbnailDataUrl, diffScore...)."""
        data = self.model_dump(mode="json", by_alias=True)
        if not include_thumbnails:
            for scene in data["scenes"]:
                scene.pop("thumbnailDataUrl", None)
        return data

    def to_json(self, *, indent: int | None = 2, include_thumbnails: bool = True) -> str:
        return json.dumps(self.to_dict(include_thumbnails=include_thumbnails), indent=indent)
