import tempfile
from enum import Enum
from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator

DEFAULT_SOURCE_PATH = "/mnt/media/video"
DEFAULT_EXTENSIONS = ["mp4", "mkv", "avi", "mov", "m4v", "flv", "wmv", "webm", "mpg", "mpeg"]


class Policy(str, Enum):
    SURROUND_ONLY = "surround_only"  # add 5.1 from 7.1, nothing else
    FULL = "full"  # also add stereo from any wider layout


class TrackSettings(BaseModel):
    codec: str
    bitrate: str


class AppConfig(BaseModel):
    source_path: str = DEFAULT_SOURCE_PATH
    extensions: list[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    skip_small_files_mb: float = 0
    scratch_dir: Optional[str] = None
    policy: Policy = Policy.SURROUND_ONLY
    workers: int = Field(default=1, ge=1)
    probe_format: Literal["auto", "json", "flat"] = "auto"
    probe_timeout: int = Field(default=120, gt=0)
    surround: TrackSettings = TrackSettings(codec="ac3", bitrate="640k")
    stereo: TrackSettings = TrackSettings(codec="aac", bitrate="192k")
    label_new_tracks: bool = True

    @field_validator("extensions")
    @classmethod
    def _normalize_extensions(cls, value: list[str]) -> list[str]:
        return [ext.lower().lstrip(".") for ext in value]

    def scratch_path(self) -> str:
        # Parent of the per-run scratch directory, never deleted itself
        if self.scratch_dir:
            return self.scratch_dir
        return tempfile.gettempdir()

    def track_settings(self, surround: bool) -> TrackSettings:
        return self.surround if surround else self.stereo
