from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field


class SyncResultRead(BaseModel):
    userId: str
    status: str


class SyncPassResponse(BaseModel):
    ok: bool = True
    results: list[SyncResultRead]


class SyncStatusRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    inProgress: bool = Field(validation_alias="in_progress")
    lastSyncAt: datetime | None = Field(default=None, validation_alias="last_sync_at")
    nextAllowedAt: datetime | None = Field(default=None, validation_alias="next_allowed_at")


class SyncTriggerResponse(BaseModel):
    success: bool = True
    jobId: str
