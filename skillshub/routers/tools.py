"""Local tool detection endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from skillshub.database import get_db
from skillshub.schemas.sync import ToolStatusResponse
from skillshub.services import sync_service

router = APIRouter()


@router.get("/", response_model=ToolStatusResponse)
async def get_tool_status(db: AsyncSession = Depends(get_db)):
    return await sync_service.get_tool_status(db)
