"""Skill store — durable CRUD over skills, sync targets, hosts and settings.

Every write commits before returning so a crash right after a filesystem
mutation never loses the record describing it.  Nothing in here touches the
filesystem; the installer and the sync engines reconcile records with disk.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from skillshub.database import utcnow
from skillshub.models import CustomTarget, ManagedSkill, RemoteHost, Setting, SkillTarget

# ── Managed skills ───────────────────────────────────────────────────


async def list_skills(db: AsyncSession) -> list[ManagedSkill]:
    result = await db.execute(select(ManagedSkill).order_by(ManagedSkill.name))
    return list(result.scalars().all())


async def get_skill(db: AsyncSession, skill_id: str) -> ManagedSkill | None:
    return await db.get(ManagedSkill, skill_id)


async def get_skill_by_name(db: AsyncSession, name: str) -> ManagedSkill | None:
    result = await db.execute(select(ManagedSkill).where(ManagedSkill.name == name))
    return result.scalars().first()


async def save_skill(db: AsyncSession, skill: ManagedSkill) -> ManagedSkill:
    """Insert or update ``skill`` and commit."""
    db.add(skill)
    await db.commit()
    await db.refresh(skill)
    return skill


async def touch_skill_sync(db: AsyncSession, skill_id: str, when: datetime | None = None) -> None:
    skill = await db.get(ManagedSkill, skill_id)
    if skill is None:
        return
    skill.last_sync_at = when or utcnow()
    await db.commit()


async def delete_skill(db: AsyncSession, skill_id: str) -> bool:
    skill = await db.get(ManagedSkill, skill_id)
    if not skill:
        return False
    await db.execute(delete(SkillTarget).where(SkillTarget.skill_id == skill_id))
    await db.delete(skill)
    await db.commit()
    return True


# ── Sync targets ─────────────────────────────────────────────────────


async def list_skill_targets(db: AsyncSession, skill_id: str | None = None) -> list[SkillTarget]:
    stmt = select(SkillTarget).order_by(SkillTarget.skill_id, SkillTarget.tool)
    if skill_id is not None:
        stmt = stmt.where(SkillTarget.skill_id == skill_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_targets_for_key(db: AsyncSession, tool: str) -> list[SkillTarget]:
    result = await db.execute(select(SkillTarget).where(SkillTarget.tool == tool))
    return list(result.scalars().all())


async def get_skill_target(db: AsyncSession, skill_id: str, tool: str) -> SkillTarget | None:
    return await db.get(SkillTarget, (skill_id, tool))


async def upsert_skill_target(
    db: AsyncSession,
    *,
    skill_id: str,
    tool: str,
    target_path: str,
    mode: str,
    status: str = "ok",
    last_error: str | None = None,
    synced_at: datetime | None = None,
) -> SkillTarget:
    target = await db.get(SkillTarget, (skill_id, tool))
    if target is None:
        target = SkillTarget(skill_id=skill_id, tool=tool)
        db.add(target)
    target.target_path = target_path
    target.mode = str(mode)
    target.status = status
    target.last_error = last_error
    target.synced_at = synced_at
    await db.commit()
    await db.refresh(target)
    return target


async def mark_target_error(db: AsyncSession, skill_id: str, tool: str, error: str) -> None:
    target = await db.get(SkillTarget, (skill_id, tool))
    if target is None:
        return
    target.status = "error"
    target.last_error = error
    await db.commit()


async def delete_skill_target(db: AsyncSession, skill_id: str, tool: str) -> bool:
    result = await db.execute(
        delete(SkillTarget).where(SkillTarget.skill_id == skill_id, SkillTarget.tool == tool)
    )
    await db.commit()
    return bool(result.rowcount)


# ── Remote hosts ─────────────────────────────────────────────────────


async def list_remote_hosts(db: AsyncSession) -> list[RemoteHost]:
    result = await db.execute(select(RemoteHost).order_by(RemoteHost.label))
    return list(result.scalars().all())


async def get_remote_host(db: AsyncSession, host_id: str) -> RemoteHost | None:
    return await db.get(RemoteHost, host_id)


async def save_remote_host(db: AsyncSession, host: RemoteHost) -> RemoteHost:
    db.add(host)
    await db.commit()
    await db.refresh(host)
    return host


async def update_remote_host_status(
    db: AsyncSession,
    host_id: str,
    status: str,
    last_sync_at: datetime | None = None,
) -> None:
    host = await db.get(RemoteHost, host_id)
    if host is None:
        return
    host.status = status
    if last_sync_at is not None:
        host.last_sync_at = last_sync_at
    await db.commit()


async def delete_remote_host(db: AsyncSession, host_id: str) -> bool:
    host = await db.get(RemoteHost, host_id)
    if not host:
        return False
    await db.delete(host)
    await db.commit()
    return True


# ── Custom targets ───────────────────────────────────────────────────


async def list_custom_targets(db: AsyncSession) -> list[CustomTarget]:
    result = await db.execute(select(CustomTarget).order_by(CustomTarget.label))
    return list(result.scalars().all())


async def get_custom_target(db: AsyncSession, target_id: str) -> CustomTarget | None:
    return await db.get(CustomTarget, target_id)


async def save_custom_target(db: AsyncSession, target: CustomTarget) -> CustomTarget:
    db.add(target)
    await db.commit()
    await db.refresh(target)
    return target


async def delete_custom_target(db: AsyncSession, target_id: str) -> bool:
    target = await db.get(CustomTarget, target_id)
    if not target:
        return False
    await db.execute(delete(SkillTarget).where(SkillTarget.tool == f"custom:{target_id}"))
    await db.delete(target)
    await db.commit()
    return True


# ── Settings ─────────────────────────────────────────────────────────


async def get_setting(db: AsyncSession, key: str) -> str | None:
    row = await db.get(Setting, key)
    return row.value if row else None


async def set_setting(db: AsyncSession, key: str, value: str) -> None:
    row = await db.get(Setting, key)
    if row is None:
        db.add(Setting(key=key, value=value))
    else:
        row.value = value
    await db.commit()
