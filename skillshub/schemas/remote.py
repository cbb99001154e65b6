"""Remote host request/response schemas."""

from datetime import datetime

from pydantic import BaseModel, Field


class RemoteHostCreate(BaseModel):
    label: str = Field(..., max_length=128)
    host: str = Field(..., min_length=1, max_length=255)
    port: int = 22
    username: str = Field(..., min_length=1, max_length=128)
    auth_method: str = "key"
    key_path: str | None = None


class RemoteHostResponse(BaseModel):
    id: str
    label: str
    host: str
    port: int
    username: str
    auth_method: str
    key_path: str | None
    status: str
    created_at: datetime
    updated_at: datetime
    last_sync_at: datetime | None

    model_config = {"from_attributes": True}


class ConnectionTestResponse(BaseModel):
    ok: bool
    output: str


class RemoteToolResponse(BaseModel):
    key: str
    label: str
    installed: bool

    model_config = {"from_attributes": True}


class RemoteSyncRequest(BaseModel):
    tool_keys: list[str]
    skill_ids: list[str] | None = None  # None = every managed skill


class RemoteSyncResultResponse(BaseModel):
    synced: list[str]
    skipped: list[str]
    errors: list[str]

    model_config = {"from_attributes": True}


class RemoteSkillToolRequest(BaseModel):
    skill_id: str
    tool: str


class RemoteSkillToolResponse(BaseModel):
    target_path: str


class RemoteSkillsResponse(BaseModel):
    skills: list[str]


class BrowseResponse(BaseModel):
    path: str
    directories: list[str]
