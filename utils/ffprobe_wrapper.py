import subprocess
import json
import os
import shutil
from typing import Optional, Dict, Any, List
from models.audio_info import AudioStreamDescriptor
from errors import ProbeFailure, PreconditionError
from logger import setup_logger

logger = setup_logger()

STREAM_ENTRIES = "stream=index,channels,codec_name:stream_tags=language"


class FFprobeWrapper:
    def __init__(self, probe_format: str = "auto", timeout: int = 120, ffprobe_path: Optional[str] = None):
        self.ffprobe_path = ffprobe_path or shutil.which("ffprobe")
        if not self.ffprobe_path:
            logger.error("FFprobe not found in system PATH")
            raise PreconditionError("FFprobe not found. Please install FFmpeg.")
        self.probe_format = probe_format
        self.timeout = timeout

    def get_audio_streams(self, file_path: str) -> List[AudioStreamDescriptor]:
        """
        Returns the audio streams of file_path in container order, so that a
        stream's position in the list is its audio stream number.
        An empty list means the file has no audio.
        """
        if not os.path.exists(file_path):
            raise ProbeFailure(f"File not found: {file_path}")

        if self.probe_format == "flat":
            return self._parse_flat(self._run(file_path, "a", STREAM_ENTRIES, "default=noprint_wrappers=1"))

        try:
            output = self._run(file_path, "a", STREAM_ENTRIES, "json")
        except ProbeFailure as e:
            if self.probe_format == "json":
                raise
            logger.warning(f"ffprobe JSON output failed for {file_path} ({e}), retrying with line output")
            return self._parse_flat(self._run(file_path, "a", STREAM_ENTRIES, "default=noprint_wrappers=1"))

        try:
            return self._parse_json(json.loads(output) if output.strip() else {})
        except (ValueError, TypeError, AttributeError) as e:
            if self.probe_format == "json":
                raise ProbeFailure(f"Unreadable ffprobe JSON for {file_path}: {e}") from e
            logger.warning(f"ffprobe JSON unreadable for {file_path} ({e}), retrying with line output")

        return self._parse_flat(self._run(file_path, "a", STREAM_ENTRIES, "default=noprint_wrappers=1"))

    def count_streams(self, file_path: str, selector: str) -> int:
        """
        Number of streams of one type ("a" or "s") in file_path.
        """
        output = self._run(file_path, selector, "stream=index", "csv=p=0")
        return sum(1 for line in output.splitlines() if line.strip())

    def _run(self, file_path: str, selector: str, entries: str, output_format: str) -> str:
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-select_streams", selector,
            "-show_entries", entries,
            "-of", output_format,
            file_path
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, encoding='utf-8',
                                    errors='replace', timeout=self.timeout, stdin=subprocess.DEVNULL)
        except subprocess.TimeoutExpired as e:
            raise ProbeFailure(f"FFprobe timed out after {self.timeout}s for {file_path}") from e
        except OSError as e:
            raise ProbeFailure(f"FFprobe could not be started for {file_path}: {e}") from e

        if result.returncode != 0:
            raise ProbeFailure(f"FFprobe failed for {file_path} (exit status {result.returncode}): "
                               f"{result.stderr.strip()}")
        return result.stdout

    @staticmethod
    def _parse_json(data: Dict[str, Any]) -> List[AudioStreamDescriptor]:
        streams = []
        for s in data.get("streams", []):
            if "index" not in s:
                continue
            streams.append(AudioStreamDescriptor(
                stream_index=int(s["index"]),
                channel_count=_to_int(s.get("channels")),
                codec_name=s.get("codec_name") or "unknown",
                language=(s.get("tags") or {}).get("language", "und")
            ))
        return streams

    @staticmethod
    def _parse_flat(output: str) -> List[AudioStreamDescriptor]:
        """
        Parses key=value lines. ffprobe prints the fields of one stream
        together, starting with index.
        """
        streams = []
        current: Dict[str, str] = {}

        def flush():
            if "index" in current:
                streams.append(AudioStreamDescriptor(
                    stream_index=int(current["index"]),
                    channel_count=_to_int(current.get("channels")),
                    codec_name=current.get("codec_name") or "unknown",
                    language=current.get("TAG:language", "und")
                ))

        for line in output.splitlines():
            line = line.strip()
            if not line or "=" not in line:
                continue
            key, value = line.split("=", 1)
            if key == "index":
                if not value.isdigit():
                    raise ProbeFailure(f"Unexpected stream index in ffprobe output: {line}")
                flush()
                current = {}
            current[key] = value
        flush()
        return streams


def _to_int(value: Any) -> int:
    # Unknown channel counts ("N/A", missing) are treated as unclassified
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
