import logging
import os

from docqa.errors import NotFoundError

logger = logging.getLogger(__name__)


class LocalBlobStore:
    """Raw upload bytes kept on local disk, keyed like ``docs/<hash>/<name>``."""

    def __init__(self, root: str):
        self.root = root
        os.makedirs(self.root, exist_ok=True)

    def _path(self, key: str) -> str:
        path = os.path.normpath(os.path.join(self.root, key))
        if not path.startswith(os.path.normpath(self.root) + os.sep):
            raise ValueError(f"Invalid storage key: {key}")
        return path

    def put(self, key: str, data: bytes) -> str:
        path = self._path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        return key

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not os.path.exists(path):
            raise NotFoundError(f"Stored file not found: {key}")
        with open(path, "rb") as f:
            return f.read()
