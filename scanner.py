import os
from typing import List, Generator
from file_ops import BACKUP_SUFFIX, PARTIAL_SUFFIX
from logger import setup_logger

logger = setup_logger()


class Scanner:
    def __init__(self, root_path: str, extensions: List[str], min_size_mb: float = 0):
        self.root_path = root_path
        self.extensions = {ext.lower().lstrip(".") for ext in extensions}
        self.min_size_mb = min_size_mb

    def scan(self) -> Generator[str, None, None]:
        """
        Yields paths to video files under root_path whose extension is in the
        allow-list, compared case-insensitively.
        """
        logger.info(f"Searching for video files in: {self.root_path}")

        for root, dirs, files in os.walk(self.root_path):
            dirs.sort()
            for file in sorted(files):
                file_path = os.path.join(root, file)
                if file.endswith(BACKUP_SUFFIX) or file.endswith(PARTIAL_SUFFIX):
                    continue

                ext = os.path.splitext(file)[1].lower().lstrip(".")
                if ext not in self.extensions:
                    continue

                if self.min_size_mb > 0:
                    try:
                        size_mb = os.path.getsize(file_path) / (1024 * 1024)
                    except OSError as e:
                        logger.error(f"Error accessing file {file}: {e}")
                        continue
                    if size_mb < self.min_size_mb:
                        logger.info(f"Skipping {file}: Too small ({size_mb:.2f} MB < {self.min_size_mb} MB)")
                        continue

                logger.debug(f"Found candidate: {file_path}")
                yield file_path
