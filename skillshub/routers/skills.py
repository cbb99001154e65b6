"""Managed skill endpoints: install, update, delete and fan-out."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from skillshub.database import get_db
from skillshub.models import ManagedSkill
from skillshub.schemas.skill import (
    CandidateRequest,
    CandidateResponse,
    InstallRequest,
    SkillContentResponse,
    SkillResponse,
    SkillUpdateStatus,
    UpdateReport,
)
from skillshub.schemas.sync import (
    CustomTargetSyncRequest,
    ReconcileResponse,
    SkillTargetResponse,
    SyncResultResponse,
    ToolSyncRequest,
)
from skillshub.services import installer, skill_store, sync_service

router = APIRouter()


async def _with_targets(db: AsyncSession, skill: ManagedSkill) -> SkillResponse:
    resp = SkillResponse.model_validate(skill)
    resp.targets = [
        SkillTargetResponse.model_validate(t) for t in await skill_store.list_skill_targets(db, skill.id)
    ]
    return resp


@router.get("/", response_model=list[SkillResponse])
async def list_skills(db: AsyncSession = Depends(get_db)):
    return [await _with_targets(db, skill) for skill in await skill_store.list_skills(db)]


@router.post("/install", response_model=SkillResponse, status_code=201)
async def install_skill(data: InstallRequest, db: AsyncSession = Depends(get_db)):
    skill = await installer.install(
        db,
        source_type=data.source_type,
        source_ref=data.source_ref,
        subpath=data.subpath,
        name=data.name,
        version=data.version,
        overwrite=data.overwrite,
    )
    return await _with_targets(db, skill)


@router.post("/candidates", response_model=list[CandidateResponse])
async def list_candidates(data: CandidateRequest, db: AsyncSession = Depends(get_db)):
    return await installer.list_candidates(db, data.source_type, data.source_ref)


@router.get("/updates", response_model=list[SkillUpdateStatus])
async def check_updates(db: AsyncSession = Depends(get_db)):
    """Which skills have a newer revision at their source (read-only)."""
    return await installer.check_updates(db)


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile(skill_id: str | None = None, db: AsyncSession = Depends(get_db)):
    return ReconcileResponse(repaired=await sync_service.reconcile_targets(db, skill_id))


@router.get("/{skill_id}", response_model=SkillResponse)
async def get_skill(skill_id: str, db: AsyncSession = Depends(get_db)):
    skill = await skill_store.get_skill(db, skill_id)
    if not skill:
        raise HTTPException(status_code=404, detail="Skill not found")
    return await _with_targets(db, skill)


@router.get("/{skill_id}/content", response_model=SkillContentResponse)
async def get_skill_content(skill_id: str, db: AsyncSession = Depends(get_db)):
    content = await installer.read_skill_content(db, skill_id)
    return SkillContentResponse(skill_id=skill_id, content=content)


@router.post("/{skill_id}/update", response_model=UpdateReport)
async def update_skill(skill_id: str, db: AsyncSession = Depends(get_db)):
    return await installer.update(db, skill_id)


@router.delete("/{skill_id}", status_code=204)
async def delete_skill(skill_id: str, db: AsyncSession = Depends(get_db)):
    await installer.delete_skill(db, skill_id)


# ── Fan-out ──────────────────────────────────────────────────────────


@router.post("/{skill_id}/sync", response_model=SyncResultResponse)
async def sync_to_tool(skill_id: str, data: ToolSyncRequest, db: AsyncSession = Depends(get_db)):
    return await sync_service.sync_skill_to_tool(
        db, skill_id, data.tool, overwrite=data.overwrite, mode=data.mode
    )


@router.delete("/{skill_id}/sync/{tool}")
async def unsync_from_tool(skill_id: str, tool: str, db: AsyncSession = Depends(get_db)):
    removed = await sync_service.unsync_skill_from_tool(db, skill_id, tool)
    return {"removed": removed}


@router.post("/{skill_id}/custom-targets/{target_id}", response_model=SyncResultResponse)
async def sync_to_custom_target(
    skill_id: str,
    target_id: str,
    data: CustomTargetSyncRequest,
    db: AsyncSession = Depends(get_db),
):
    return await sync_service.sync_skill_to_custom_target(
        db, skill_id, target_id, overwrite=data.overwrite, mode=data.mode
    )


@router.delete("/{skill_id}/custom-targets/{target_id}", status_code=204)
async def unsync_from_custom_target(
    skill_id: str, target_id: str, db: AsyncSession = Depends(get_db)
):
    removed = await sync_service.unsync_skill_from_custom_target(db, skill_id, target_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Skill is not synced to this target")
