import argparse
import os
import shutil
import signal
import sys
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional, List
import yaml
from pydantic import ValidationError
from logger import setup_logger, set_level, log_progress
from scanner import Scanner
from utils.ffprobe_wrapper import FFprobeWrapper
from utils.tool_runner import ToolRunner
from analyzer import Analyzer
from converter import Converter
from transaction import FileTransaction, build_job
from file_ops import scratch_directory
from models.audio_info import Outcome, BatchResult
from models.config import AppConfig, Policy
from errors import NormalizerError, PreconditionError, ConfigError, JobCancelled

logger = setup_logger()

DEFAULT_CONFIG_PATH = "config.yaml"
EXIT_INTERRUPTED = 130


def load_config(path: Optional[str] = None) -> AppConfig:
    """
    Reads the YAML config. Without an explicit path a missing config.yaml
    means built-in defaults; an explicit path that does not exist is fatal.
    """
    explicit = path is not None
    path = path or DEFAULT_CONFIG_PATH
    if not os.path.exists(path):
        if explicit:
            raise ConfigError(f"Config file not found: {path}")
        logger.info(f"No {path} found, using built-in defaults")
        return AppConfig()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return AppConfig(**data)
    except (yaml.YAMLError, ValidationError, TypeError) as e:
        raise ConfigError(f"Invalid config {path}: {e}") from e


def check_dependencies() -> None:
    for tool in ("ffmpeg", "ffprobe"):
        if not shutil.which(tool):
            raise PreconditionError(f"{tool} is not installed. Please install it first.")
    logger.info("Dependencies check passed")


class AudioNormalizerApp:
    def __init__(self, config: AppConfig, ffprobe: Optional[FFprobeWrapper] = None,
                 converter: Optional[Converter] = None, runner: Optional[ToolRunner] = None):
        self.config = config
        self.runner = runner or ToolRunner()
        self.ffprobe = ffprobe or FFprobeWrapper(config.probe_format, config.probe_timeout)
        self.converter = converter or Converter(config, self.ffprobe, self.runner)
        self.analyzer = Analyzer(config.policy)
        self.scanner = Scanner(config.source_path, config.extensions, config.skip_small_files_mb)

    def process_file(self, file_path: str, scratch_dir: str) -> Outcome:
        name = os.path.basename(file_path)
        logger.info(f"Processing: {name}")
        try:
            streams = self.ffprobe.get_audio_streams(file_path)
            stream_summary = ", ".join(f"#{s.stream_index}:{s.codec_name}({s.channel_count}ch)[{s.language}]"
                                       for s in streams)
            logger.info(f"Analyzed {file_path}: {len(streams)} audio stream(s) ({stream_summary or 'none'})")

            decision = self.analyzer.analyze(streams)
            if decision.action.is_skip:
                logger.info(f"PASS: {name} [{decision.reason}]")
                return Outcome.SKIPPED

            start_time = time.time()
            logger.info(f"START: path=\"{file_path}\" action=\"{decision.action.name}\" reason=\"{decision.reason}\"")
            job = build_job(file_path, decision.requests, scratch_dir, self.config)
            FileTransaction(job, self.converter, log_progress).run()

            duration = int(time.time() - start_time)
            logger.info(f"DONE: Successfully processed \"{file_path}\" time={duration}s")
            return Outcome.PROCESSED

        except JobCancelled:
            logger.error(f"FAILED {name}: cancelled, original left untouched")
        except NormalizerError as e:
            logger.error(f"FAILED {name}: {type(e).__name__}: {e}")
        except Exception as e:
            logger.exception(f"Unhandled error processing {file_path}: {e}")
        return Outcome.FAILED

    def run(self) -> BatchResult:
        result = BatchResult()
        root = self.config.source_path
        logger.info(f"Starting video processing in: {root} (policy={self.config.policy.value}, "
                    f"workers={self.config.workers})")
        if not os.path.isdir(root):
            raise PreconditionError(f"Base directory does not exist: {root}")

        with scratch_directory(self.config.scratch_path()) as scratch_dir:
            files = list(self.scanner.scan())
            result.found = len(files)
            if not files:
                logger.warning(f"No video files found in {root}")
            else:
                logger.info(f"Found {len(files)} video file(s) to process")

            if self.config.workers > 1:
                self._run_parallel(files, scratch_dir, result)
            else:
                for file_path in files:
                    if self.runner.cancelled:
                        break
                    result.record(file_path, self.process_file(file_path, scratch_dir))

        result.interrupted = self.runner.cancelled
        self._log_summary(result)
        return result

    def _run_parallel(self, files: List[str], scratch_dir: str, result: BatchResult) -> None:
        def work(file_path: str) -> Optional[Outcome]:
            if self.runner.cancelled:
                return None
            return self.process_file(file_path, scratch_dir)

        with ThreadPoolExecutor(max_workers=self.config.workers) as executor:
            futures = {executor.submit(work, path): path for path in files}
            for future in as_completed(futures):
                outcome = future.result()
                if outcome is not None:
                    result.record(futures[future], outcome)

    def stop(self) -> None:
        if not self.runner.cancelled:
            logger.warning("Stop requested, rolling back files in progress...")
        self.runner.cancel()

    def _log_summary(self, result: BatchResult) -> None:
        if result.interrupted:
            logger.warning("Processing interrupted!")
        else:
            logger.info("Processing complete!")
        logger.info(f"Processed: {result.processed}")
        logger.info(f"Skipped: {result.skipped}")
        logger.info(f"Failed: {result.failed}")
        for path in result.failures:
            logger.info(f"  failed: {path}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="audio-normalizer",
        description="Add missing 5.1 (and optionally stereo) audio tracks to a video library in place."
    )
    parser.add_argument("--config", help=f"YAML config file (default: {DEFAULT_CONFIG_PATH} if present)")
    parser.add_argument("--root", help="Library root to scan, overrides source_path")
    parser.add_argument("--workers", type=int, help="Files processed in parallel")
    parser.add_argument("--policy", choices=[p.value for p in Policy], help="Which tracks to add")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log ffmpeg commands and progress")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    if args.verbose:
        set_level("DEBUG")

    logger.info("=== 7.1 to 5.1 Audio Normalizer ===")
    try:
        config = load_config(args.config)
        overrides = {key: value for key, value in (("source_path", args.root), ("workers", args.workers),
                                                   ("policy", args.policy)) if value is not None}
        if overrides:
            config = AppConfig(**{**config.model_dump(), **overrides})
        check_dependencies()
        app = AudioNormalizerApp(config)
    except ValidationError as e:
        logger.critical(f"Invalid option: {e}")
        return 1
    except PreconditionError as e:
        logger.critical(str(e))
        return 1

    previous = {sig: signal.signal(sig, lambda signum, frame: app.stop())
                for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        result = app.run()
    except PreconditionError as e:
        logger.critical(str(e))
        return 1
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    if result.interrupted:
        return EXIT_INTERRUPTED
    logger.info("All done!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
