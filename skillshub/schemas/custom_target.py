"""Custom target request/response schemas."""

from datetime import datetime

from pydantic import BaseModel, Field


class CustomTargetCreate(BaseModel):
    label: str = Field(..., max_length=128)
    path: str = Field(..., min_length=1)
    remote_host_id: str | None = None


class CustomTargetResponse(BaseModel):
    id: str
    label: str
    path: str
    remote_host_id: str | None
    target_key: str
    created_at: datetime

    model_config = {"from_attributes": True}
