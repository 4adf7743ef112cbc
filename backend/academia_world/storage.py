from __future__ import annotations

from pathlib import Path

from .config import settings


class FileStorage:
    """Local-disk storage for posters and avatars.

    Stored values may be relative paths or absolute http(s) URLs (remote
    uploads); remote URLs are passed through untouched.
    """

    def __init__(self, root: str | Path, public_url: str):
        self.root = Path(root)
        self.public_url = public_url.rstrip("/")

    @staticmethod
    def _is_remote(path: str) -> bool:
        return path.startswith("http://") or path.startswith("https://")

    def _resolve(self, path: str) -> Path | None:
        candidate = (self.root / path.lstrip("/")).resolve()
        root = self.root.resolve()
        if candidate != root and root not in candidate.parents:
            return None
        return candidate

    def exists(self, path: str | None) -> bool:
        if not path:
            return False
        if self._is_remote(path):
            return True
        resolved = self._resolve(path)
        return bool(resolved and resolved.is_file())

    def url(self, path: str) -> str:
        if self._is_remote(path):
            return path
        return f"{self.public_url}/{path.lstrip('/')}"


def get_storage() -> FileStorage:
    return FileStorage(settings.storage_root, settings.storage_public_url)
