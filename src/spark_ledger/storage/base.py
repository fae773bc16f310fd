from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel


class StoredFile(BaseModel):
    path: str
    content_type: Optional[str] = None
    size: int
    url: Optional[str] = None


class AsyncFileStorage(ABC):
    """
    Blob store abstraction for uploaded project files.
    Concrete implementations could use S3, GCS, a hosted bucket, etc.
    """

    @abstractmethod
    async def put(self, path: str, content: bytes, content_type: Optional[str] = None) -> StoredFile:
        ...

    @abstractmethod
    async def get(self, path: str) -> Optional[bytes]:
        ...

    @abstractmethod
    async def delete(self, path: str) -> bool:
        ...
