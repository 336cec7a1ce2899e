import os
import sys
import tempfile

# Add parent dir to path so the flat modules import as in production
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
os.environ.setdefault("AUDIO_NORMALIZER_LOG", os.path.join(tempfile.gettempdir(), "audio_normalizer_tests.log"))

import pytest

from models.audio_info import AudioStreamDescriptor
from models.config import AppConfig
from utils.tool_runner import ToolRunner, ToolResult


def stream(index, channels, codec="aac", language="und"):
    return AudioStreamDescriptor(stream_index=index, channel_count=channels, codec_name=codec, language=language)


class FakeRunner(ToolRunner):
    """
    Stands in for ffmpeg: records each command and writes its last argument
    (the output path) unless told to fail.
    """

    def __init__(self, fail_labels=(), empty_labels=()):
        super().__init__()
        self.commands = []
        self.fail_labels = fail_labels
        self.empty_labels = empty_labels

    def run(self, cmd, label, path, observer=None):
        self.check_cancelled()
        self.commands.append((label, cmd))
        output = cmd[-1]
        if any(label.startswith(prefix) for prefix in self.fail_labels):
            with open(output, "wb") as f:
                f.write(b"partial")
            return ToolResult(returncode=1, output_tail="boom")
        with open(output, "wb") as f:
            if not any(label.startswith(prefix) for prefix in self.empty_labels):
                f.write(label.encode() + b" output")
        return ToolResult(returncode=0)


@pytest.fixture
def config(tmp_path):
    return AppConfig(source_path=str(tmp_path / "library"), scratch_dir=str(tmp_path / "scratch"))


@pytest.fixture
def library(tmp_path):
    root = tmp_path / "library"
    root.mkdir()
    return root


@pytest.fixture
def scratch(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return path
