import os
import shutil
import tempfile
import uuid
from contextlib import contextmanager
from typing import Iterator
from errors import BackupFailure, VerificationFailure
from logger import setup_logger

logger = setup_logger()

BACKUP_SUFFIX = ".backup"
PARTIAL_SUFFIX = ".partial"
SCRATCH_PREFIX = "audio_normalizer_"


def file_size(path: str) -> int:
    try:
        return os.path.getsize(path)
    except OSError:
        return 0


def format_size(size_bytes: int) -> str:
    if size_bytes >= 1024 ** 3:
        return f"{size_bytes / 1024 ** 3:.2f} GB"
    return f"{size_bytes // (1024 * 1024)} MB"


def create_backup(source_path: str, backup_path: str) -> None:
    """
    Copies source_path to backup_path and checks the copy is complete.
    Raises BackupFailure; a partial copy is removed before raising.
    """
    source_size = file_size(source_path)
    if source_size == 0:
        raise BackupFailure(f"Cannot determine file size or file is empty: {source_path}")

    if os.path.exists(backup_path):
        logger.warning(f"Overwriting stale backup: {backup_path}")

    logger.info(f"File size: {format_size(source_size)} - copying backup...")
    try:
        shutil.copy2(source_path, backup_path)
    except OSError as e:
        remove_quietly(backup_path)
        raise BackupFailure(f"Failed to create backup {backup_path}: {e}") from e

    backup_size = file_size(backup_path)
    if backup_size != source_size:
        remove_quietly(backup_path)
        raise BackupFailure(f"Backup file size mismatch. Expected: {source_size}, Got: {backup_size}")
    logger.info("Backup created successfully")


def verify_artifact(path: str, error_cls=VerificationFailure, exit_status=None) -> None:
    """Raises error_cls unless path exists and is non-empty."""
    if not os.path.isfile(path) or os.path.getsize(path) == 0:
        raise error_cls(f"Output file is missing or empty: {path}", exit_status)


def atomic_replace(staged_path: str, target_path: str) -> None:
    """
    Moves staged_path over target_path so that target_path is always either
    the old file or the complete new one.
    """
    try:
        os.replace(staged_path, target_path)
        return
    except OSError as e:
        # Staged file lives on another filesystem (EXDEV); fall through
        logger.debug(f"Direct rename failed ({e}), moving next to target first")

    sibling = partial_sibling(target_path)
    try:
        shutil.move(staged_path, sibling)
        os.replace(sibling, target_path)
    finally:
        remove_quietly(sibling)


def partial_sibling(target_path: str) -> str:
    directory, name = os.path.split(target_path)
    return os.path.join(directory, f".{name}{PARTIAL_SUFFIX}")


def remove_quietly(*paths: str) -> None:
    for path in paths:
        if not path:
            continue
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError as e:
            logger.warning(f"Could not remove {path}: {e}")


def unique_token() -> str:
    return uuid.uuid4().hex[:12]


@contextmanager
def scratch_directory(parent: str) -> Iterator[str]:
    """
    Creates a fresh scratch directory for one batch inside parent and removes
    it afterwards, whichever way the batch ends. parent itself and anything
    else in it are left alone.
    """
    os.makedirs(parent, exist_ok=True)
    path = tempfile.mkdtemp(prefix=SCRATCH_PREFIX, dir=parent)
    logger.info(f"Scratch directory: {path}")
    try:
        yield path
    finally:
        logger.info("Cleaning up temporary files...")
        shutil.rmtree(path, ignore_errors=True)
