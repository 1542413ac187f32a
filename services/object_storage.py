"""Evidence Object Storage.

Stores screenshot bytes and returns a public URL for them. The local
implementation writes under ``<data_dir>/evidence`` and builds URLs under
the web server's ``/evidence`` route.
"""

import logging
import mimetypes
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when an object cannot be stored."""
    pass


class LocalObjectStorage:
    """Writes objects to a local directory served by the web server."""

    def __init__(self, root_dir: Path, public_base_url: str):
        self.root_dir = Path(root_dir)
        self.public_base_url = public_base_url.rstrip("/")

    def resolve(self, object_name: str) -> Path:
        """Map an object name to its file, refusing paths that escape the root."""
        root = self.root_dir.resolve()
        path = (root / object_name).resolve()
        if root not in path.parents:
            raise StorageError(f"Object name escapes storage root: {object_name}")
        return path

    def store(self, data: bytes, content_type: str, object_name: str) -> str:
        """Persist bytes and return their public URL.

        Args:
            data: Object content
            content_type: MIME type, used to pick the file extension when the name has none
            object_name: Relative name such as ``screenshots/example.com-1700000000000.png``

        Raises:
            StorageError: if the object cannot be written
        """
        if not Path(object_name).suffix:
            object_name += mimetypes.guess_extension(content_type) or ""

        path = self.resolve(object_name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(f"Failed to store {object_name}: {e}") from e

        url = f"{self.public_base_url}/{object_name}"
        logger.info(f"Stored {len(data)} bytes ({content_type}) at {url}")
        return url
