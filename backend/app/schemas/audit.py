import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    action: str
    entity_type: str
    entity_id: str | None
    old_values: Any | None
    new_values: Any | None
    actor_id: uuid.UUID | None
    actor_email: str | None
    notes: str | None
    created_at: datetime


class AuditListResponse(BaseModel):
    items: list[AuditLogOut]
    total: int
