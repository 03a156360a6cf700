# faceauth/archive.py
# Archive of captured face images ("store bytes, get back a URL")
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .config import UPLOAD_DIR, UPLOAD_URL_PREFIX

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_-]")


class ArchiveError(Exception):
    pass


class LocalImageArchive:
    """
    Stores captures under UPLOAD_DIR/faces and returns the public path they
    are served from (mounted at UPLOAD_URL_PREFIX by the app).
    """

    def __init__(self, root: str = UPLOAD_DIR, url_prefix: str = UPLOAD_URL_PREFIX):
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")
        self.faces_dir = self.root / "faces"

    def store(self, data: bytes, key: str) -> str:
        """
        Write image bytes to disk.
        Returns: the URL path of the stored image, e.g. /uploads/faces/<file>.jpg
        """
        if not data:
            raise ArchiveError("empty image")
        safe_key = _SAFE_KEY.sub("", key) or "capture"
        filename = f"{safe_key}_{int(datetime.now(timezone.utc).timestamp() * 1000)}.jpg"
        try:
            self.faces_dir.mkdir(parents=True, exist_ok=True)
            with open(self.faces_dir / filename, "wb") as f:
                f.write(data)
        except OSError as e:
            raise ArchiveError(f"could not write {filename}: {e}") from e
        return f"{self.url_prefix}/faces/{filename}"

    def _path_for(self, url: str) -> Optional[Path]:
        prefix = f"{self.url_prefix}/faces/"
        if not url.startswith(prefix):
            return None
        name = os.path.basename(url[len(prefix):])
        return self.faces_dir / name if name else None

    def discard(self, url: str) -> bool:
        """Remove a stored image that was not kept by its flow."""
        path = self._path_for(url)
        if path is None or not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            logger.error(f"Error deleting archived capture {path}: {e}")
            return False
        logger.info(f"Discarded uncommitted capture {path.name}")
        return True
