from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel, utcnow


class ProjectStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"


class UploadedProject(DBSerializableModel):
    """
    A user-submitted artifact or an activated service order.

    Only created after the purchase debit succeeded.
    """

    collection_name: ClassVar[str] = "projects"

    id: Optional[str] = Field(default=None)
    title: str
    description: Optional[str] = None
    category: str = "idea"
    owner_id: str
    status: ProjectStatus = ProjectStatus.PENDING
    price_charged: int
    file_path: Optional[str] = None
    file_type: Optional[str] = None
    file_size: Optional[int] = None
    offer_id: Optional[str] = Field(
        default=None,
        description="Catalogue offer this order was bought from, if any.",
    )
    expedite: bool = False
    expedite_days: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
