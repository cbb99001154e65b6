"""Storage settings endpoints (central repository location, git cache TTL)."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from skillshub.database import get_db
from skillshub.schemas.settings import CentralRepoUpdate, GitCacheTtlUpdate, StorageSettings
from skillshub.services import installer
from skillshub.services.central_repo import migrate_central_repo, resolve_central_repo_path

router = APIRouter()


async def _current(db: AsyncSession) -> StorageSettings:
    return StorageSettings(
        central_repo_path=str(await resolve_central_repo_path(db)),
        git_cache_ttl_secs=await installer.git_cache_ttl(db),
    )


@router.get("/", response_model=StorageSettings)
async def get_settings(db: AsyncSession = Depends(get_db)):
    return await _current(db)


@router.put("/central-repo", response_model=StorageSettings)
async def set_central_repo(data: CentralRepoUpdate, db: AsyncSession = Depends(get_db)):
    """Move every managed skill to a new central repository root."""
    await migrate_central_repo(db, data.path)
    return await _current(db)


@router.put("/git-cache-ttl", response_model=StorageSettings)
async def set_git_cache_ttl(data: GitCacheTtlUpdate, db: AsyncSession = Depends(get_db)):
    await installer.set_git_cache_ttl(db, data.ttl_secs)
    return await _current(db)
