"""Runtime settings schemas (values persisted in the settings table)."""

from pydantic import BaseModel, Field


class StorageSettings(BaseModel):
    central_repo_path: str
    git_cache_ttl_secs: int


class CentralRepoUpdate(BaseModel):
    path: str = Field(..., min_length=1)


class GitCacheTtlUpdate(BaseModel):
    ttl_secs: int = Field(..., ge=0, le=86400)
