"""Managed skill request/response schemas."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, computed_field

from skillshub.schemas.sync import SkillTargetResponse


class SourceType(StrEnum):
    LOCAL = "local"
    GIT = "git"
    REGISTRY = "registry"


class InstallRequest(BaseModel):
    source_type: SourceType
    source_ref: str = Field(..., min_length=1)
    subpath: str | None = None  # which skill inside a multi-skill source
    name: str | None = Field(None, max_length=128)
    version: str | None = None  # registry only
    overwrite: bool = False


class CandidateRequest(BaseModel):
    source_type: SourceType
    source_ref: str = Field(..., min_length=1)


class CandidateResponse(BaseModel):
    name: str
    subpath: str
    description: str | None = None
    valid: bool = True
    reason: str | None = None

    model_config = {"from_attributes": True}


class SkillResponse(BaseModel):
    id: str
    name: str
    source_type: str
    source_ref: str | None
    source_subpath: str | None
    source_revision: str | None
    central_path: str
    content_hash: str | None
    status: str
    created_at: datetime
    updated_at: datetime
    last_sync_at: datetime | None
    targets: list[SkillTargetResponse] = []

    model_config = {"from_attributes": True}


class SkillContentResponse(BaseModel):
    skill_id: str
    content: str


class TargetFailure(BaseModel):
    tool: str
    target_path: str
    error: str


class UpdateReport(BaseModel):
    skill_id: str
    changed: bool
    content_hash: str | None = None
    repushed: list[str] = []  # destination keys re-materialized after the swap
    failed: list[TargetFailure] = []


class UpdateState(StrEnum):
    UP_TO_DATE = "up_to_date"
    UPDATE_AVAILABLE = "update_available"
    UNKNOWN = "unknown"


class SkillUpdateStatus(BaseModel):
    skill_id: str
    name: str
    status: UpdateState
    current_revision: str | None = None
    remote_revision: str | None = None
    error: str | None = None

    @computed_field
    @property
    def has_update(self) -> bool:
        return self.status == UpdateState.UPDATE_AVAILABLE
