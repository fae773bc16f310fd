from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List


class AsyncNotificationQueue(ABC):
    """
    Push channel for notifications that live clients should see without
    polling. Persistence is the notification table; the queue only fans out.
    """

    @abstractmethod
    async def enqueue(self, payload: Dict[str, Any]) -> None:
        ...


class InMemoryNotificationQueue(AsyncNotificationQueue):
    """Collects payloads in a list; `drain()` hands them over once."""

    def __init__(self) -> None:
        self.messages: List[Dict[str, Any]] = []

    async def enqueue(self, payload: Dict[str, Any]) -> None:
        self.messages.append(payload)

    def drain(self) -> List[Dict[str, Any]]:
        messages, self.messages = self.messages, []
        return messages

    def __len__(self) -> int:
        return len(self.messages)
