from __future__ import annotations

from typing import Dict, Optional, Tuple

from .base import AsyncFileStorage, StoredFile


class InMemoryFileStorage(AsyncFileStorage):
    """
    Keeps file contents in a dict. Used for tests and as a reference implementation.
    """

    def __init__(self) -> None:
        self.files: Dict[str, Tuple[bytes, Optional[str]]] = {}

    async def put(self, path: str, content: bytes, content_type: Optional[str] = None) -> StoredFile:
        if path in self.files:
            raise FileExistsError(path)
        self.files[path] = (content, content_type)
        return StoredFile(path=path, content_type=content_type, size=len(content))

    async def get(self, path: str) -> Optional[bytes]:
        entry = self.files.get(path)
        return entry[0] if entry is not None else None

    async def delete(self, path: str) -> bool:
        return self.files.pop(path, None) is not None
