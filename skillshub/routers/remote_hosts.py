"""Remote host CRUD + remote sync endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from skillshub.database import get_db
from skillshub.schemas.remote import (
    BrowseResponse,
    RemoteHostCreate,
    RemoteHostResponse,
    RemoteSkillsResponse,
    RemoteSkillToolRequest,
    RemoteSkillToolResponse,
    RemoteSyncRequest,
    RemoteSyncResultResponse,
    RemoteToolResponse,
    ConnectionTestResponse,
)
from skillshub.services import remote_service, skill_store, sync_service
from skillshub.services.remote_sync import ConnectionProfile

router = APIRouter()


@router.get("/", response_model=list[RemoteHostResponse])
async def list_hosts(db: AsyncSession = Depends(get_db)):
    return await skill_store.list_remote_hosts(db)


@router.post("/", response_model=RemoteHostResponse, status_code=201)
async def add_host(data: RemoteHostCreate, db: AsyncSession = Depends(get_db)):
    return await remote_service.add_remote_host(db, data)


@router.post("/test", response_model=ConnectionTestResponse)
async def test_unsaved_host(data: RemoteHostCreate):
    """Try a connection profile before saving it."""
    remote_service.validate_host_data(data)
    profile = ConnectionProfile(**data.model_dump(exclude={"label"}))
    output = await remote_service.test_connection(profile)
    return ConnectionTestResponse(ok=output == "ok", output=output)


@router.get("/{host_id}", response_model=RemoteHostResponse)
async def get_host(host_id: str, db: AsyncSession = Depends(get_db)):
    return await remote_service.require_host(db, host_id)


@router.put("/{host_id}", response_model=RemoteHostResponse)
async def update_host(host_id: str, data: RemoteHostCreate, db: AsyncSession = Depends(get_db)):
    return await remote_service.update_remote_host(db, host_id, data)


@router.delete("/{host_id}", status_code=204)
async def delete_host(host_id: str, db: AsyncSession = Depends(get_db)):
    await remote_service.delete_remote_host(db, host_id)


@router.post("/{host_id}/test", response_model=ConnectionTestResponse)
async def test_host(host_id: str, db: AsyncSession = Depends(get_db)):
    host = await remote_service.require_host(db, host_id)
    output = await remote_service.test_connection(ConnectionProfile.from_record(host))
    return ConnectionTestResponse(ok=output == "ok", output=output)


@router.get("/{host_id}/tools", response_model=list[RemoteToolResponse])
async def remote_tools(host_id: str, db: AsyncSession = Depends(get_db)):
    return await remote_service.get_remote_tool_status(db, host_id)


@router.get("/{host_id}/skills", response_model=RemoteSkillsResponse)
async def remote_skills(host_id: str, db: AsyncSession = Depends(get_db)):
    return RemoteSkillsResponse(skills=await remote_service.list_remote_skills(db, host_id))


@router.get("/{host_id}/browse", response_model=BrowseResponse)
async def browse(host_id: str, path: str | None = None, db: AsyncSession = Depends(get_db)):
    resolved, directories = await remote_service.browse_remote_directory(db, host_id, path)
    return BrowseResponse(path=resolved, directories=directories)


@router.post("/{host_id}/sync", response_model=RemoteSyncResultResponse)
async def sync_to_host(host_id: str, data: RemoteSyncRequest, db: AsyncSession = Depends(get_db)):
    return await remote_service.sync_skills_to_host(db, host_id, data.tool_keys, data.skill_ids)


@router.post("/{host_id}/sync-tool", response_model=RemoteSkillToolResponse)
async def sync_skill_to_host_tool(
    host_id: str, data: RemoteSkillToolRequest, db: AsyncSession = Depends(get_db)
):
    skill = await sync_service.require_skill(db, data.skill_id)
    path = await remote_service.sync_skill_to_host_tool(db, host_id, skill, data.tool)
    return RemoteSkillToolResponse(target_path=path)
