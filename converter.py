import shutil
from typing import Optional, List
from models.audio_info import SynthesisRequest, TargetLayout
from models.config import AppConfig
from analyzer import stream_number_for_index
from utils.ffprobe_wrapper import FFprobeWrapper
from utils.tool_runner import ToolRunner, ToolResult, ProgressObserver, PROGRESS_ARGS
from errors import PreconditionError, SynthesisFailure
from logger import setup_logger

logger = setup_logger()

# Keep front, center, LFE and rears; the 7.1 side channels are dropped, not folded in
PAN_71_TO_51 = "pan=5.1|FL=FL|FR=FR|FC=FC|LFE=LFE|BL=BL|BR=BR"

CODEC_EXTENSIONS = {
    "ac3": ".ac3",
    "eac3": ".eac3",
    "aac": ".m4a",
    "flac": ".flac",
    "libopus": ".mka",
    "opus": ".mka",
}


def synthesized_extension(codec: str) -> str:
    return CODEC_EXTENSIONS.get(codec.lower(), ".mka")


class Converter:
    def __init__(self, config: AppConfig, ffprobe: FFprobeWrapper, runner: ToolRunner,
                 ffmpeg_path: Optional[str] = None):
        self.config = config
        self.ffprobe = ffprobe
        self.runner = runner
        self.ffmpeg_path = ffmpeg_path or shutil.which("ffmpeg")
        if not self.ffmpeg_path:
            raise PreconditionError("FFmpeg not found")

    def synthesize(self, source_path: str, request: SynthesisRequest, output_path: str,
                   observer: Optional[ProgressObserver] = None) -> ToolResult:
        """
        Encodes one new audio track from a source stream into a standalone file.
        The caller checks the exit status and the output file.
        """
        # Re-resolve the stream number from the container index in case the
        # audio stream order differs from the one the decision was made on
        stream_number = stream_number_for_index(self.ffprobe.get_audio_streams(source_path),
                                                request.source_stream_index)
        if stream_number is None:
            raise SynthesisFailure(f"Audio stream with index {request.source_stream_index} "
                                   f"no longer present in {source_path}")
        if stream_number != request.source_stream_number:
            logger.warning(f"Audio stream index {request.source_stream_index} moved from stream "
                           f"{request.source_stream_number} to {stream_number}")

        cmd = self.build_synthesis_command(source_path, stream_number, request.target, output_path)
        logger.info(f"Generating {request.target.value} audio from {request.source_channels}ch "
                    f"(stream {stream_number}, index {request.source_stream_index}) -> {output_path}")
        return self._run_ffmpeg(cmd, f"synthesize {request.target.value}", source_path, observer)

    def build_synthesis_command(self, source_path: str, stream_number: int, target: TargetLayout,
                                output_path: str) -> List[str]:
        settings = self.config.track_settings(target == TargetLayout.SURROUND)
        cmd = [
            self.ffmpeg_path, "-nostdin", "-hide_banner", "-v", "error", "-y",
            "-i", source_path,
            "-map", f"0:a:{stream_number}",
            "-vn", "-sn", "-dn",
        ]
        if target == TargetLayout.SURROUND:
            cmd.extend(["-af", PAN_71_TO_51])
        else:
            cmd.extend(["-ac", "2"])
        cmd.extend([
            "-c:a", settings.codec,
            "-b:a", settings.bitrate,
        ])
        cmd.extend(PROGRESS_ARGS)
        cmd.append(output_path)
        return cmd

    def merge(self, source_path: str, synthesized_paths: List[str], requests: List[SynthesisRequest],
              output_path: str, observer: Optional[ProgressObserver] = None) -> ToolResult:
        """
        Remuxes the source with the synthesized tracks appended after the
        original audio. Everything from the source is stream-copied.
        """
        # Counted again here rather than reusing the classification probe
        audio_count = self.ffprobe.count_streams(source_path, "a")
        subtitle_count = self.ffprobe.count_streams(source_path, "s")
        if audio_count == 0:
            logger.warning("No audio streams found at merge time, using default mapping 0:a:0")
            audio_count = 1

        logger.info(f"Found {audio_count} audio track(s) to preserve")
        if subtitle_count:
            logger.info(f"Found {subtitle_count} subtitle track(s) to preserve")

        cmd = self.build_merge_command(source_path, synthesized_paths, requests, output_path,
                                       audio_count, subtitle_count)
        logger.info(f"Merging {len(synthesized_paths)} new audio track(s) into {output_path}")
        return self._run_ffmpeg(cmd, "merge", source_path, observer)

    def build_merge_command(self, source_path: str, synthesized_paths: List[str],
                            requests: List[SynthesisRequest], output_path: str,
                            audio_count: int, subtitle_count: int) -> List[str]:
        cmd = [self.ffmpeg_path, "-nostdin", "-hide_banner", "-v", "error", "-y", "-i", source_path]
        for path in synthesized_paths:
            cmd.extend(["-i", path])

        cmd.extend(["-map", "0:v:0"])
        for i in range(audio_count):
            cmd.extend(["-map", f"0:a:{i}"])
        for input_number in range(1, len(synthesized_paths) + 1):
            cmd.extend(["-map", f"{input_number}:a:0"])
        for i in range(subtitle_count):
            cmd.extend(["-map", f"0:s:{i}"])

        cmd.extend(["-c:v", "copy"])
        for i in range(audio_count):
            cmd.extend([f"-c:a:{i}", "copy"])

        for offset, request in enumerate(requests):
            out_idx = audio_count + offset
            settings = self.config.track_settings(request.target == TargetLayout.SURROUND)
            cmd.extend([f"-c:a:{out_idx}", settings.codec, f"-b:a:{out_idx}", settings.bitrate])
            if self.config.label_new_tracks:
                cmd.extend([
                    f"-metadata:s:a:{out_idx}", f"title={track_title(request)}",
                    f"-metadata:s:a:{out_idx}", f"language={request.language}",
                ])

        for i in range(subtitle_count):
            cmd.extend([f"-c:s:{i}", "copy"])

        cmd.extend(PROGRESS_ARGS)
        cmd.append(output_path)
        return cmd

    def _run_ffmpeg(self, cmd: list, label: str, path: str,
                    observer: Optional[ProgressObserver]) -> ToolResult:
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = self.runner.run(cmd, label, path, observer)
        except OSError as e:
            logger.error(f"FFmpeg execution error: {e}")
            return ToolResult(returncode=127, output_tail=str(e))
        if result.returncode != 0:
            logger.error(f"FFmpeg failed ({label}): {result.output_tail}")
        return result


def track_title(request: SynthesisRequest) -> str:
    if request.target == TargetLayout.SURROUND:
        return "5.1 (from 7.1)"
    return f"Stereo (Downmix from {request.source_channels}ch)"
