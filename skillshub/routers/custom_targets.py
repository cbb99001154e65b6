"""Custom target endpoints (user-chosen local or remote directories)."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from skillshub.database import get_db
from skillshub.schemas.custom_target import CustomTargetCreate, CustomTargetResponse
from skillshub.services import skill_store, sync_service

router = APIRouter()


@router.get("/", response_model=list[CustomTargetResponse])
async def list_custom_targets(db: AsyncSession = Depends(get_db)):
    return await skill_store.list_custom_targets(db)


@router.post("/", response_model=CustomTargetResponse, status_code=201)
async def add_custom_target(data: CustomTargetCreate, db: AsyncSession = Depends(get_db)):
    return await sync_service.add_custom_target(db, data)


@router.delete("/{target_id}", status_code=204)
async def delete_custom_target(target_id: str, db: AsyncSession = Depends(get_db)):
    await sync_service.delete_custom_target(db, target_id)
