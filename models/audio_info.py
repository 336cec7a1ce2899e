from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class AudioStreamDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    stream_index: int  # raw container index, not the audio-only ordinal
    channel_count: int
    codec_name: str = "unknown"
    language: str = "und"


class AudioConfiguration(BaseModel):
    has_stereo: bool = False
    has_51: bool = False
    has_71: bool = False
    # Ordinal among audio streams, as used by ffmpeg's "0:a:N" selector
    first_71_stream_number: Optional[int] = None
    first_71_stream_index: Optional[int] = None


class TargetLayout(str, Enum):
    SURROUND = "5.1"
    STEREO = "stereo"


class SynthesisRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    target: TargetLayout
    source_stream_number: int
    source_stream_index: int
    source_channels: int
    language: str = "und"

    def describe(self) -> str:
        return (f"{self.target.value} from {self.source_channels}ch "
                f"(stream {self.source_stream_number}, index {self.source_stream_index})")


class TransformJob(BaseModel):
    source_path: str
    backup_path: str
    staged_output_path: str
    requests: list[SynthesisRequest]
    synthesized_audio_paths: list[str]

    @property
    def chosen_source_stream_number(self) -> int:
        return self.requests[0].source_stream_number


class ProgressEvent(BaseModel):
    label: str
    path: str
    out_time_seconds: float = 0.0
    speed: str = ""
    finished: bool = False


class Outcome(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


class BatchResult(BaseModel):
    found: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    interrupted: bool = False
    failures: list[str] = Field(default_factory=list)

    def record(self, path: str, outcome: Outcome) -> None:
        if outcome == Outcome.PROCESSED:
            self.processed += 1
        elif outcome == Outcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
            self.failures.append(path)
