"""Remote host management + the host status state machine around remote syncs."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession

from skillshub.database import utcnow
from skillshub.errors import InvalidInput, NotFound, SkillsHubError
from skillshub.models import ManagedSkill, RemoteHost
from skillshub.schemas.remote import RemoteHostCreate
from skillshub.services import remote_sync, skill_store
from skillshub.services.remote_sync import ConnectionProfile, RemoteBatchResult, RemoteToolInfo

logger = logging.getLogger(__name__)

AUTH_METHODS = ("key", "agent")


async def require_host(db: AsyncSession, host_id: str) -> RemoteHost:
    host = await skill_store.get_remote_host(db, host_id)
    if host is None:
        raise NotFound("remote host", host_id)
    return host


def validate_host_data(data: RemoteHostCreate) -> None:
    if not 1 <= data.port <= 65535:
        raise InvalidInput(f"port must be between 1 and 65535, got {data.port}")
    if data.auth_method not in AUTH_METHODS:
        raise InvalidInput(f"auth_method must be one of {', '.join(AUTH_METHODS)}")


async def add_remote_host(db: AsyncSession, data: RemoteHostCreate) -> RemoteHost:
    validate_host_data(data)
    now = utcnow()
    host = RemoteHost(
        id=str(uuid.uuid4()),
        **data.model_dump(),
        status="idle",
        created_at=now,
        updated_at=now,
    )
    return await skill_store.save_remote_host(db, host)


async def update_remote_host(db: AsyncSession, host_id: str, data: RemoteHostCreate) -> RemoteHost:
    validate_host_data(data)
    host = await require_host(db, host_id)
    for field, value in data.model_dump().items():
        setattr(host, field, value)
    host.updated_at = utcnow()
    return await skill_store.save_remote_host(db, host)


async def delete_remote_host(db: AsyncSession, host_id: str) -> None:
    await require_host(db, host_id)
    bound = [t for t in await skill_store.list_custom_targets(db) if t.remote_host_id == host_id]
    if bound:
        raise InvalidInput(
            f"remote host is used by {len(bound)} custom target(s); delete them first"
        )
    await skill_store.delete_remote_host(db, host_id)


async def test_connection(profile: ConnectionProfile) -> str:
    return await remote_sync.test_connection(profile)


async def get_remote_tool_status(db: AsyncSession, host_id: str) -> list[RemoteToolInfo]:
    host = await require_host(db, host_id)
    async with remote_sync.open_session(ConnectionProfile.from_record(host)) as session:
        return await session.detect_remote_tools()


async def list_remote_skills(db: AsyncSession, host_id: str) -> list[str]:
    host = await require_host(db, host_id)
    async with remote_sync.open_session(ConnectionProfile.from_record(host)) as session:
        skills = await session.list_skills()
    # A working connection clears a previous error; other states are left alone
    if host.status == "error":
        await skill_store.update_remote_host_status(db, host_id, "ok")
    return skills


async def browse_remote_directory(
    db: AsyncSession, host_id: str, path: str | None = None
) -> tuple[str, list[str]]:
    host = await require_host(db, host_id)
    async with remote_sync.open_session(ConnectionProfile.from_record(host)) as session:
        return await session.browse(path)


async def sync_skills_to_host(
    db: AsyncSession,
    host_id: str,
    tool_keys: list[str],
    skill_ids: list[str] | None = None,
) -> RemoteBatchResult:
    """Push managed skills (all, or ``skill_ids``) to a host for ``tool_keys``.

    Host status goes ``syncing`` then ``ok`` (with ``last_sync_at``) when at
    least one skill made it, or ``error`` when the connection or every skill
    failed.
    """
    host = await require_host(db, host_id)
    skills = await skill_store.list_skills(db)
    if skill_ids is not None:
        wanted = set(skill_ids)
        skills = [s for s in skills if s.id in wanted]
    pairs = [(Path(s.central_path).name, Path(s.central_path)) for s in skills]

    await skill_store.update_remote_host_status(db, host_id, "syncing")
    try:
        async with remote_sync.open_session(ConnectionProfile.from_record(host)) as session:
            result = await remote_sync.sync_skills_to_remote(session, pairs, tool_keys)
    except SkillsHubError:
        await skill_store.update_remote_host_status(db, host_id, "error")
        raise

    await skill_store.update_remote_host_status(db, host_id, "ok", utcnow())
    logger.info(
        "Synced %d skill(s) to %s (%d skipped, %d error(s))",
        len(result.synced), host.label, len(result.skipped), len(result.errors),
    )
    return result


async def sync_skill_to_host_tool(
    db: AsyncSession, host_id: str, skill: ManagedSkill, tool_key: str
) -> str:
    host = await require_host(db, host_id)
    async with remote_sync.open_session(ConnectionProfile.from_record(host)) as session:
        return await remote_sync.sync_skill_to_remote_tool(
            session, Path(skill.central_path).name, Path(skill.central_path), tool_key
        )


async def push_skill_to_remote_dir(
    db: AsyncSession, host_id: str, skill: ManagedSkill, dest_root: str
) -> str:
    host = await require_host(db, host_id)
    async with remote_sync.open_session(ConnectionProfile.from_record(host)) as session:
        return await remote_sync.sync_skill_to_remote_path(
            session, Path(skill.central_path).name, Path(skill.central_path), dest_root
        )


async def remove_remote_path(db: AsyncSession, host_id: str, path: str) -> None:
    host = await require_host(db, host_id)
    async with remote_sync.open_session(ConnectionProfile.from_record(host)) as session:
        await session.remove_path(path)
