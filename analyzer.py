from enum import Enum, auto
from typing import List, Optional
from pydantic import BaseModel
from models.audio_info import AudioStreamDescriptor, AudioConfiguration, SynthesisRequest, TargetLayout
from models.config import Policy
from logger import setup_logger

logger = setup_logger()

STEREO_CHANNELS = 2
SURROUND_51_CHANNELS = 6
SURROUND_71_CHANNELS = 8


class RequiredAction(Enum):
    ALREADY_COMPLETE = auto()
    NO_SURROUND_SOURCE = auto()
    SYNTHESIZE_FROM_71 = auto()
    SYNTHESIZE_STEREO = auto()
    SYNTHESIZE_BOTH = auto()

    @property
    def is_skip(self) -> bool:
        return self in (RequiredAction.ALREADY_COMPLETE, RequiredAction.NO_SURROUND_SOURCE)


class Decision(BaseModel):
    action: RequiredAction
    reason: str
    requests: List[SynthesisRequest] = []


def classify(streams: List[AudioStreamDescriptor]) -> AudioConfiguration:
    """
    Summarizes the audio layouts present, by channel count only.
    The first 7.1 stream in probe order is remembered as the synthesis source.
    """
    config = AudioConfiguration()
    for stream_number, stream in enumerate(streams):
        if stream.channel_count == STEREO_CHANNELS:
            config.has_stereo = True
        elif stream.channel_count == SURROUND_51_CHANNELS:
            config.has_51 = True
        elif stream.channel_count == SURROUND_71_CHANNELS and not config.has_71:
            config.has_71 = True
            config.first_71_stream_number = stream_number
            config.first_71_stream_index = stream.stream_index
    return config


def stream_number_for_index(streams: List[AudioStreamDescriptor], stream_index: int) -> Optional[int]:
    """
    Maps a container stream index to its ordinal among the audio streams.
    ffmpeg's "0:a:N" selector needs the latter.
    """
    for stream_number, stream in enumerate(streams):
        if stream.stream_index == stream_index:
            return stream_number
    return None


def _request(streams: List[AudioStreamDescriptor], stream_number: int, target: TargetLayout) -> SynthesisRequest:
    source = streams[stream_number]
    return SynthesisRequest(
        target=target,
        source_stream_number=stream_number,
        source_stream_index=source.stream_index,
        source_channels=source.channel_count,
        language=source.language
    )


class Analyzer:
    def __init__(self, policy: Policy = Policy.SURROUND_ONLY):
        self.policy = policy

    def analyze(self, streams: List[AudioStreamDescriptor]) -> Decision:
        """
        Determines the required action for a file from its audio streams.
        """
        config = classify(streams)
        logger.info(f"  [Analyzer] has_5.1={config.has_51}, has_7.1={config.has_71}, has_stereo={config.has_stereo}")

        if self.policy == Policy.FULL:
            return self._analyze_full(streams, config)
        return self._analyze_surround(streams, config)

    def _analyze_surround(self, streams: List[AudioStreamDescriptor], config: AudioConfiguration) -> Decision:
        if config.has_51:
            return Decision(action=RequiredAction.ALREADY_COMPLETE, reason="already has 5.1 audio")

        if not config.has_71:
            if config.has_stereo:
                reason = "only has stereo, no 7.1 source"
            elif streams:
                reason = "no 7.1 audio to convert"
            else:
                reason = "no audio streams"
            return Decision(action=RequiredAction.NO_SURROUND_SOURCE, reason=reason)

        request = _request(streams, config.first_71_stream_number, TargetLayout.SURROUND)
        return Decision(
            action=RequiredAction.SYNTHESIZE_FROM_71,
            reason=f"5.1 missing, using 7.1 audio stream {request.source_stream_number} "
                   f"(index: {request.source_stream_index})",
            requests=[request]
        )

    def _analyze_full(self, streams: List[AudioStreamDescriptor], config: AudioConfiguration) -> Decision:
        requests = []
        reasons = []

        if not config.has_51 and config.has_71:
            requests.append(_request(streams, config.first_71_stream_number, TargetLayout.SURROUND))
            reasons.append("5.1 missing")

        if not config.has_stereo:
            wider = next((n for n, s in enumerate(streams) if s.channel_count > STEREO_CHANNELS), None)
            if wider is not None:
                requests.append(_request(streams, wider, TargetLayout.STEREO))
                reasons.append("stereo missing")

        if not requests:
            if config.has_51:
                return Decision(action=RequiredAction.ALREADY_COMPLETE, reason="already has 5.1 and stereo audio")
            if config.has_stereo:
                reason = "only has stereo, no 7.1 source"
            else:
                reason = "no surround or wider audio to convert"
            return Decision(action=RequiredAction.NO_SURROUND_SOURCE, reason=reason)

        targets = {r.target for r in requests}
        if targets == {TargetLayout.SURROUND, TargetLayout.STEREO}:
            action = RequiredAction.SYNTHESIZE_BOTH
        elif TargetLayout.SURROUND in targets:
            action = RequiredAction.SYNTHESIZE_FROM_71
        else:
            action = RequiredAction.SYNTHESIZE_STEREO

        sources = ", ".join(r.describe() for r in requests)
        return Decision(action=action, reason=f"{' and '.join(reasons)}: {sources}", requests=requests)
