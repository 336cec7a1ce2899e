import subprocess
import threading
from collections import deque
from typing import Callable, Optional, List
from pydantic import BaseModel
from models.audio_info import ProgressEvent
from errors import JobCancelled
from logger import setup_logger

logger = setup_logger()

ProgressObserver = Callable[[ProgressEvent], None]

# Added to every ffmpeg command so progress arrives as key=value blocks on stdout
PROGRESS_ARGS = ["-progress", "pipe:1", "-nostats"]


class ToolResult(BaseModel):
    returncode: int
    output_tail: str = ""


class ToolRunner:
    """
    Runs external tools one process per call. cancel() terminates every
    process still running and makes later calls raise JobCancelled.
    """

    def __init__(self, terminate_grace: float = 10.0, tail_lines: int = 20):
        self.terminate_grace = terminate_grace
        self.tail_lines = tail_lines
        self._cancelled = threading.Event()
        # Reentrant: cancel() also runs from signal handlers on the main thread
        self._lock = threading.RLock()
        self._active: set = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def check_cancelled(self):
        if self._cancelled.is_set():
            raise JobCancelled("Cancelled")

    def cancel(self):
        self._cancelled.set()
        with self._lock:
            active = list(self._active)
        for process in active:
            logger.warning(f"Terminating external tool (pid {process.pid})")
            self._terminate(process)

    def run(self, cmd: List[str], label: str, path: str,
            observer: Optional[ProgressObserver] = None) -> ToolResult:
        """
        Runs cmd to completion, feeding parsed progress blocks to observer.
        Raises JobCancelled if cancel() was called before or during the run.
        """
        self.check_cancelled()
        process = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding='utf-8',
            errors='replace'
        )
        with self._lock:
            self._active.add(process)
        if self._cancelled.is_set():
            self._terminate(process)

        tail = deque(maxlen=self.tail_lines)
        block = {}
        try:
            for line in process.stdout:
                line = line.strip()
                if not line:
                    continue
                key, sep, value = line.partition("=")
                if not sep or " " in key:
                    tail.append(line)
                    continue
                block[key] = value
                if key == "progress":
                    self._emit(observer, label, path, block)
                    block = {}
            process.wait()
        finally:
            if process.poll() is None:
                self._terminate(process)
            with self._lock:
                self._active.discard(process)

        if self._cancelled.is_set():
            raise JobCancelled(f"{label} cancelled for {path}")

        return ToolResult(returncode=process.returncode, output_tail="\n".join(tail))

    def _terminate(self, process: subprocess.Popen):
        process.terminate()
        try:
            process.wait(timeout=self.terminate_grace)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    @staticmethod
    def _emit(observer: Optional[ProgressObserver], label: str, path: str, block: dict):
        if observer is None:
            return
        event = ProgressEvent(
            label=label,
            path=path,
            out_time_seconds=parse_out_time(block.get("out_time_us") or block.get("out_time_ms")),
            speed=block.get("speed", "").strip(),
            finished=block.get("progress") == "end"
        )
        try:
            observer(event)
        except Exception as e:
            logger.warning(f"Progress observer failed: {e}")


def parse_out_time(value: Optional[str]) -> float:
    # ffmpeg reports both out_time_us and out_time_ms in microseconds
    try:
        return max(int(value), 0) / 1_000_000
    except (TypeError, ValueError):
        return 0.0
