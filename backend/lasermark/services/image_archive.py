# lasermark/services/image_archive.py

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Optional

from lasermark.core.errors import ImageNotFound

logger = logging.getLogger(__name__)


class ImageArchive:
    """Moves the verification camera's image of a part into the backup folder."""

    def __init__(self, image_dir: str, backup_dir: str) -> None:
        self.image_dir = Path(image_dir)
        self.backup_dir = Path(backup_dir)

    def find(self, text: str) -> Path:
        """First file in the image directory whose name contains `text`."""
        if text and self.image_dir.is_dir():
            for path in sorted(self.image_dir.iterdir()):
                if path.is_file() and text in path.name:
                    return path
        raise ImageNotFound(text)

    def backup(self, source: Path) -> Optional[Path]:
        """Copy then delete. Not atomic; a source that vanished is logged, not raised."""
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        target = self.backup_dir / source.name
        try:
            shutil.copy2(source, target)
        except FileNotFoundError:
            logger.warning("image %s vanished before it could be backed up", source.name)
            return None
        try:
            source.unlink()
        except FileNotFoundError:
            logger.warning("image %s already removed after copy", source.name)
        logger.info("image backed up to %s", target)
        return target

    def archive(self, text: str) -> Optional[Path]:
        """find + backup. Raises ImageNotFound when no image matches."""
        return self.backup(self.find(text))
