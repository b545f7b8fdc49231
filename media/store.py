"""
Flat-directory storage for card images and audio clips.

Cards persist only the reference returned by save(), a bare filename.
Older stores kept absolute paths from a previous storage root; resolve()
still accepts those.
"""

import logging
import os
import uuid

from utils.errors import MediaIOError

logger = logging.getLogger(__name__)

IMAGE_EXTENSION = '.jpg'
AUDIO_EXTENSION = '.m4a'


class MediaStore:
    def __init__(self, root: str):
        self.root = root
        os.makedirs(root, exist_ok=True)

    def save(self, data: bytes, extension: str = '.bin') -> str:
        """Write bytes under a freshly minted filename and return that filename."""
        filename = uuid.uuid4().hex.upper() + extension
        path = os.path.join(self.root, filename)
        try:
            with open(path, 'wb') as f:
                f.write(data)
        except OSError as e:
            raise MediaIOError(filename, str(e)) from e
        logger.debug(f"Saved media {filename} ({len(data)} bytes)")
        return filename

    def resolve(self, reference: str) -> str:
        if '/' not in reference:
            return os.path.join(self.root, reference)
        # legacy full path from a previous storage root
        if os.path.exists(reference):
            return reference
        return os.path.join(self.root, os.path.basename(reference))

    def exists(self, reference: str) -> bool:
        return os.path.isfile(self.resolve(reference))

    def load(self, reference: str) -> bytes | None:
        path = self.resolve(reference)
        try:
            with open(path, 'rb') as f:
                return f.read()
        except OSError:
            return None

    def delete(self, reference: str) -> bool:
        """Best-effort removal. A file that is already gone counts as deleted."""
        path = self.resolve(reference)
        try:
            os.remove(path)
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning(f"Could not delete media {reference}: {e}")
            return False
        logger.debug(f"Deleted media {reference}")
        return True

    def delete_all(self, references) -> None:
        for reference in references:
            self.delete(reference)
