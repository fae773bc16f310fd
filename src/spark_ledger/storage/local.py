from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

from .base import AsyncFileStorage, StoredFile


class LocalFileStorage(AsyncFileStorage):
    """
    Stores files under a root directory. Blocking file IO runs in a worker
    thread so the event loop is not stalled by large uploads.
    """

    def __init__(self, root: Path, base_url: Optional[str] = None) -> None:
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)
        self._base_url = base_url.rstrip("/") if base_url else None

    def _resolve(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if not target.is_relative_to(self._root.resolve()):
            raise ValueError(f"path escapes storage root: {path}")
        return target

    async def put(self, path: str, content: bytes, content_type: Optional[str] = None) -> StoredFile:
        target = self._resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            # "xb" refuses to overwrite an existing object
            with target.open("xb") as f:
                f.write(content)

        await asyncio.to_thread(_write)
        url = f"{self._base_url}/{path}" if self._base_url else None
        return StoredFile(path=path, content_type=content_type, size=len(content), url=url)

    async def get(self, path: str) -> Optional[bytes]:
        target = self._resolve(path)
        if not target.exists():
            return None
        return await asyncio.to_thread(target.read_bytes)

    async def delete(self, path: str) -> bool:
        target = self._resolve(path)

        def _unlink() -> bool:
            try:
                target.unlink()
            except FileNotFoundError:
                return False
            return True

        return await asyncio.to_thread(_unlink)
