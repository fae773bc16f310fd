from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel, utcnow


class NotificationType(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"
    WARNING = "warning"


class Notification(DBSerializableModel):
    """
    User-facing message shown in the notification centre.
    """

    collection_name: ClassVar[str] = "notifications"

    id: Optional[str] = Field(default=None)
    account_id: str
    title: str
    message: str
    type: NotificationType = NotificationType.INFO
    is_read: bool = False
    dedupe_key: Optional[str] = Field(
        default=None,
        description="At most one notification is stored per key.",
    )
    created_at: datetime = Field(default_factory=utcnow)
