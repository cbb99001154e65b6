"""Sync request/response schemas."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel


class SyncMode(StrEnum):
    """How a destination is materialized from the central copy."""

    AUTO = "auto"
    SYMLINK = "symlink"
    JUNCTION = "junction"  # Windows directory reparse point
    COPY = "copy"


class ToolSyncRequest(BaseModel):
    tool: str
    overwrite: bool = False
    mode: SyncMode = SyncMode.AUTO


class CustomTargetSyncRequest(BaseModel):
    overwrite: bool = False
    mode: SyncMode = SyncMode.AUTO


class SyncResultResponse(BaseModel):
    mode_used: SyncMode
    target_path: str
    tools: list[str] = []  # every destination key whose record was written


class SkillTargetResponse(BaseModel):
    skill_id: str
    tool: str
    target_path: str
    mode: str
    status: str
    last_error: str | None = None
    synced_at: datetime | None = None

    model_config = {"from_attributes": True}


class ToolInfo(BaseModel):
    key: str
    label: str
    installed: bool
    skills_dir: str
    group: list[str] = []  # other tool keys sharing skills_dir


class ToolStatusResponse(BaseModel):
    tools: list[ToolInfo]
    installed: list[str]
    newly_installed: list[str]


class ReconcileResponse(BaseModel):
    repaired: list[SkillTargetResponse]
