import os
from enum import Enum
from typing import Optional
from models.audio_info import TransformJob, SynthesisRequest, TargetLayout
from models.config import AppConfig
from converter import Converter, synthesized_extension
from utils.tool_runner import ProgressObserver
from file_ops import (BACKUP_SUFFIX, create_backup, verify_artifact, atomic_replace,
                      partial_sibling, remove_quietly, unique_token)
from errors import SynthesisFailure, MergeFailure, VerificationFailure
from logger import setup_logger

logger = setup_logger()


class TxState(Enum):
    IDLE = "idle"
    BACKING_UP = "backing up"
    SYNTHESIZING = "synthesizing"
    MERGING = "merging"
    VERIFYING = "verifying"
    COMMITTING = "committing"
    DONE = "done"
    ABORTED = "aborted"


TERMINAL_STATES = (TxState.DONE, TxState.ABORTED)


def build_job(source_path: str, requests: list[SynthesisRequest], scratch_dir: str,
              config: AppConfig) -> TransformJob:
    """
    Lays out every path one file's transaction will touch. Scratch names
    carry a per-job token so parallel jobs never collide.
    """
    token = unique_token()
    name = os.path.basename(source_path)
    stem, ext = os.path.splitext(name)
    synthesized = []
    for i, request in enumerate(requests):
        codec = config.track_settings(request.target == TargetLayout.SURROUND).codec
        synthesized.append(os.path.join(
            scratch_dir, f"temp_{token}_{i}_{request.target.name.lower()}_{stem}{synthesized_extension(codec)}"))
    return TransformJob(
        source_path=source_path,
        backup_path=source_path + BACKUP_SUFFIX,
        staged_output_path=os.path.join(scratch_dir, f"temp_{token}_{stem}{ext}"),
        requests=requests,
        synthesized_audio_paths=synthesized
    )


class FileTransaction:
    """
    Adds synthesized tracks to one file without ever exposing a partial
    result at its path.

    The source is backed up, new tracks are built and merged into a staged
    copy in the scratch directory, and only a verified staged copy is moved
    over the source. Every artifact (backup included) is removed when the
    transaction ends, successful or not. The source is never written before
    the final move, so nothing is ever restored from the backup.
    """

    def __init__(self, job: TransformJob, converter: Converter, observer: Optional[ProgressObserver] = None):
        self.job = job
        self.converter = converter
        self.observer = observer
        self.state = TxState.IDLE

    def run(self) -> None:
        if self.state != TxState.IDLE:
            raise RuntimeError(f"Transaction already {self.state.value}")
        job = self.job
        try:
            self._enter(TxState.BACKING_UP)
            logger.info("Creating backup of original file...")
            create_backup(job.source_path, job.backup_path)

            self._enter(TxState.SYNTHESIZING)
            for request, audio_path in zip(job.requests, job.synthesized_audio_paths):
                self.converter.runner.check_cancelled()
                result = self.converter.synthesize(job.source_path, request, audio_path, self.observer)
                if result.returncode != 0:
                    raise SynthesisFailure(f"{request.target.value} audio generation failed", result.returncode)
                verify_artifact(audio_path, SynthesisFailure, result.returncode)
                logger.info(f"{request.target.value} audio generation complete "
                            f"({os.path.getsize(audio_path) // (1024 * 1024)} MB)")

            self._enter(TxState.MERGING)
            self.converter.runner.check_cancelled()
            result = self.converter.merge(job.source_path, job.synthesized_audio_paths, job.requests,
                                          job.staged_output_path, self.observer)
            if result.returncode != 0:
                raise MergeFailure("Merge failed", result.returncode)
            verify_artifact(job.staged_output_path, MergeFailure, result.returncode)
            logger.info("Merge complete")

            self._enter(TxState.VERIFYING)
            verify_artifact(job.staged_output_path, VerificationFailure)

            # Last point at which a stop request is honoured
            self.converter.runner.check_cancelled()
            self._enter(TxState.COMMITTING)
            logger.info("Replacing original file...")
            atomic_replace(job.staged_output_path, job.source_path)

            self._enter(TxState.DONE)
        except BaseException:
            self._enter(TxState.ABORTED)
            raise
        finally:
            self._cleanup()

    def _enter(self, state: TxState) -> None:
        if self.state in TERMINAL_STATES:
            return
        logger.debug(f"  [Transaction] {os.path.basename(self.job.source_path)}: "
                     f"{self.state.value} -> {state.value}")
        self.state = state

    def _cleanup(self) -> None:
        job = self.job
        remove_quietly(*job.synthesized_audio_paths)
        remove_quietly(job.staged_output_path, partial_sibling(job.source_path))
        if os.path.exists(job.backup_path):
            remove_quietly(job.backup_path)
            logger.info("Removed backup file")
