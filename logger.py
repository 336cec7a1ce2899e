import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from models.audio_info import ProgressEvent

LOGGER_NAME = "audio_normalizer"
DEFAULT_LOG_FILE = "logs/audio_normalizer.log"


def setup_logger(name=LOGGER_NAME, log_file=None, level=None):
    """
    Sets up a logger with console and file handlers.
    Path and level can be overridden with AUDIO_NORMALIZER_LOG and
    AUDIO_NORMALIZER_LOG_LEVEL.
    """
    logger = logging.getLogger(name)

    # Prevent adding handlers multiple times
    if logger.hasHandlers():
        return logger

    log_file = log_file or os.environ.get("AUDIO_NORMALIZER_LOG", DEFAULT_LOG_FILE)
    if level is None:
        level = os.environ.get("AUDIO_NORMALIZER_LOG_LEVEL", "INFO").upper()
    logger.setLevel(level)

    formatter = logging.Formatter(
        '[%(asctime)s] [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    log_dir = os.path.dirname(log_file)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir, exist_ok=True)

    file_handler = RotatingFileHandler(
        log_file, maxBytes=10*1024*1024, backupCount=5, encoding='utf-8'
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


def set_level(level, name=LOGGER_NAME):
    logging.getLogger(name).setLevel(level)


def log_progress(event: ProgressEvent):
    """Observer for ffmpeg progress events."""
    logger = logging.getLogger(LOGGER_NAME)
    name = os.path.basename(event.path)
    if event.finished:
        logger.debug(f"  [{event.label}] {name}: finished at {event.out_time_seconds:.0f}s")
    else:
        logger.debug(f"  [{event.label}] {name}: {event.out_time_seconds:.0f}s processed (speed {event.speed or '?'})")
