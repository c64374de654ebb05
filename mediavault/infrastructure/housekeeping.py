import logging
import os
import shutil
from pathlib import Path

class HousekeepingService:
    """Service for cleaning up partial outputs and removing title trees."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def cleanup_temp_files(self, directory: Path):
        """Recursively removes all .tmp files (ffmpeg temp segments) in the directory."""
        for root, dirs, files in os.walk(directory):
            for file in files:
                if file.endswith(".tmp"):
                    try:
                        (Path(root) / file).unlink()
                    except OSError:
                        pass

    def remove_tree(self, directory: Path) -> bool:
        """Removes a directory tree; False when it is missing or cannot be removed."""
        if not directory.exists():
            return False
        try:
            shutil.rmtree(directory)
            self.logger.info(f"Removed directory: {directory}")
            return True
        except OSError as e:
            self.logger.warning(f"Failed to remove directory {directory}: {e}")
            return False
