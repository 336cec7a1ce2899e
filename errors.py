from typing import Optional


class NormalizerError(Exception):
    """Base class for every error raised by the normalizer."""


class PreconditionError(NormalizerError):
    """A fatal condition detected before any file is touched."""


class ConfigError(PreconditionError):
    pass


class ProbeFailure(NormalizerError):
    """ffprobe could not be run or its output could not be read.

    A file without audio streams is not a probe failure.
    """


class JobCancelled(NormalizerError):
    pass


class TransformFailure(NormalizerError):
    """A per-file stage failed. The batch continues with the next file."""

    def __init__(self, message: str, exit_status: Optional[int] = None):
        super().__init__(message)
        self.exit_status = exit_status

    def __str__(self) -> str:
        message = super().__str__()
        if self.exit_status is not None:
            return f"{message} (exit status {self.exit_status})"
        return message


class BackupFailure(TransformFailure):
    pass


class SynthesisFailure(TransformFailure):
    pass


class MergeFailure(TransformFailure):
    pass


class VerificationFailure(TransformFailure):
    pass
