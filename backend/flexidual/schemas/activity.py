from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ActivityLogOut(BaseModel):
    id: str
    actor_id: str | None = Field(alias="actorId", validation_alias="user_id")
    action: str
    entity_type: str | None = Field(alias="entityType")
    entity_id: str | None = Field(alias="entityId")
    details: dict = Field(default_factory=dict)
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)
