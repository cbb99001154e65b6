"""Sync service — fan managed skills out to tools and custom targets.

Physical writes go through the sync engine (local) or the remote sync engine
(custom targets bound to a host); this module keeps the SkillTarget records in
step with what those writes actually did.  Tool fan-out always goes through
``group_for`` so tools sharing a skills directory get one physical write and
one record each.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Sequence
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession

from skillshub.adapters.base import ToolAdapter
from skillshub.adapters.tools import adapter_by_key, default_tool_adapters, group_for
from skillshub.database import utcnow
from skillshub.errors import (
    InvalidInput,
    NotFound,
    PartialBatchFailure,
    SkillsHubError,
    SyncFailed,
    ToolNotInstalled,
    UnknownTool,
)
from skillshub.models import CustomTarget, ManagedSkill, SkillTarget
from skillshub.schemas.custom_target import CustomTargetCreate
from skillshub.schemas.sync import (
    SkillTargetResponse,
    SyncMode,
    SyncResultResponse,
    ToolInfo,
    ToolStatusResponse,
)
from skillshub.services import remote_service, skill_store, sync_engine

logger = logging.getLogger(__name__)

INSTALLED_TOOLS_SETTING = "installed_tools_v1"
CUSTOM_PREFIX = "custom:"


async def require_skill(db: AsyncSession, skill_id: str) -> ManagedSkill:
    skill = await skill_store.get_skill(db, skill_id)
    if skill is None:
        raise NotFound("skill", skill_id)
    return skill


def skill_dir_name(skill: ManagedSkill) -> str:
    """Directory name a skill takes at every destination."""
    return Path(skill.central_path).name


def _require_adapter(tool: str, adapters: Sequence[ToolAdapter] | None) -> ToolAdapter:
    adapter = adapter_by_key(tool, adapters)
    if adapter is None:
        raise UnknownTool(tool)
    return adapter


# ── Tools ────────────────────────────────────────────────────────────


async def sync_skill_to_tool(
    db: AsyncSession,
    skill_id: str,
    tool: str,
    *,
    overwrite: bool = False,
    mode: SyncMode = SyncMode.AUTO,
    adapters: Sequence[ToolAdapter] | None = None,
    home: Path | None = None,
) -> SyncResultResponse:
    """Materialize a skill in a tool's skills dir and record every group member."""
    skill = await require_skill(db, skill_id)
    adapter = _require_adapter(tool, adapters)
    if not adapter.is_installed(home):
        raise ToolNotInstalled(tool)

    source = Path(skill.central_path)
    target = adapter.skills_dir(home) / skill_dir_name(skill)
    result = await asyncio.to_thread(
        sync_engine.sync_dir, source, target, mode=mode, overwrite=overwrite
    )

    now = utcnow()
    recorded: list[str] = []
    pool = adapters if adapters is not None else default_tool_adapters()
    for member in group_for(adapter, pool):
        if not member.is_installed(home):
            continue
        await skill_store.upsert_skill_target(
            db,
            skill_id=skill.id,
            tool=member.key,
            target_path=str(result.target_path),
            mode=result.mode_used,
            synced_at=now,
        )
        recorded.append(member.key)
    await skill_store.touch_skill_sync(db, skill.id, now)

    logger.info("Synced '%s' to %s via %s", skill.name, ", ".join(recorded), result.mode_used)
    return SyncResultResponse(
        mode_used=result.mode_used, target_path=str(result.target_path), tools=recorded
    )


async def unsync_skill_from_tool(
    db: AsyncSession,
    skill_id: str,
    tool: str,
    *,
    adapters: Sequence[ToolAdapter] | None = None,
    home: Path | None = None,
) -> list[str]:
    """Remove a skill from a tool group; returns the keys whose records were dropped.

    The path is removed once for the whole group, and every group record is
    deleted even when that removal fails (the failure is raised afterwards).
    A path that is already gone counts as removed.
    """
    skill = await require_skill(db, skill_id)
    adapter = _require_adapter(tool, adapters)
    pool = adapters if adapters is not None else default_tool_adapters()
    group = group_for(adapter, pool)
    if not any(member.is_installed(home) for member in group):
        return []

    records = [
        record
        for member in group
        if (record := await skill_store.get_skill_target(db, skill.id, member.key)) is not None
    ]
    paths = {Path(record.target_path) for record in records}
    default_path = adapter.skills_dir(home) / skill_dir_name(skill)
    if sync_engine.links_to(default_path, Path(skill.central_path)):
        paths.add(default_path)

    failure: tuple[Path, OSError] | None = None
    for path in sorted(paths):
        try:
            await asyncio.to_thread(sync_engine.remove_path, path)
        except OSError as exc:
            logger.warning("Failed to remove %s: %s", path, exc)
            failure = failure or (path, exc)

    for record in records:
        await skill_store.delete_skill_target(db, skill.id, record.tool)
    removed = [record.tool for record in records]

    if failure is not None:
        path, exc = failure
        raise SyncFailed(str(path), f"failed to remove {path}") from exc
    return removed


async def get_tool_status(
    db: AsyncSession,
    adapters: Sequence[ToolAdapter] | None = None,
    home: Path | None = None,
) -> ToolStatusResponse:
    """Every known tool with its installed flag, plus tools installed since last asked."""
    pool = list(adapters) if adapters is not None else default_tool_adapters()
    tools: list[ToolInfo] = []
    installed: list[str] = []
    for adapter in pool:
        ok = adapter.is_installed(home)
        tools.append(
            ToolInfo(
                key=adapter.key,
                label=adapter.display_name,
                installed=ok,
                skills_dir=str(adapter.skills_dir(home)),
                group=[a.key for a in group_for(adapter, pool) if a.key != adapter.key],
            )
        )
        if ok:
            installed.append(adapter.key)

    raw = await skill_store.get_setting(db, INSTALLED_TOOLS_SETTING)
    try:
        previous = set(json.loads(raw)) if raw else set()
    except (ValueError, TypeError):
        logger.warning("Ignoring unreadable %s setting: %r", INSTALLED_TOOLS_SETTING, raw)
        previous = set()
    newly_installed = [key for key in installed if key not in previous]
    await skill_store.set_setting(db, INSTALLED_TOOLS_SETTING, json.dumps(installed))

    return ToolStatusResponse(tools=tools, installed=installed, newly_installed=newly_installed)


# ── Custom targets ───────────────────────────────────────────────────


async def require_custom_target(db: AsyncSession, target_id: str) -> CustomTarget:
    target = await skill_store.get_custom_target(db, target_id)
    if target is None:
        raise NotFound("custom target", target_id)
    return target


async def add_custom_target(db: AsyncSession, data: CustomTargetCreate) -> CustomTarget:
    path = data.path.strip()
    if data.remote_host_id:
        await remote_service.require_host(db, data.remote_host_id)
        if not (path.startswith("/") or path == "~" or path.startswith("~/")):
            raise InvalidInput("remote target path must be absolute or start with ~/")
    elif not Path(path).expanduser().is_absolute():
        raise InvalidInput("target path must be absolute")

    target = CustomTarget(
        id=str(uuid.uuid4()),
        label=data.label,
        path=path,
        remote_host_id=data.remote_host_id or None,
        created_at=utcnow(),
    )
    return await skill_store.save_custom_target(db, target)


async def delete_custom_target(db: AsyncSession, target_id: str) -> None:
    """Remove every skill synced to the target, then the target and its records."""
    target = await require_custom_target(db, target_id)
    removed: list[str] = []
    failed: list[str] = []
    for record in await skill_store.list_targets_for_key(db, target.target_key):
        try:
            await _remove_custom_path(db, target, record.target_path)
            removed.append(record.target_path)
        except (SkillsHubError, OSError) as exc:
            logger.warning("Failed to clean %s: %s", record.target_path, exc)
            failed.append(record.target_path)

    await skill_store.delete_custom_target(db, target_id)
    if failed:
        raise PartialBatchFailure(
            f"custom target deleted but {len(failed)} path(s) could not be removed",
            succeeded=removed,
            failed=failed,
        )


def _local_custom_path(target: CustomTarget, skill: ManagedSkill) -> Path:
    return Path(target.path).expanduser() / skill_dir_name(skill)


async def sync_skill_to_custom_target(
    db: AsyncSession,
    skill_id: str,
    target_id: str,
    *,
    overwrite: bool = False,
    mode: SyncMode = SyncMode.AUTO,
) -> SyncResultResponse:
    skill = await require_skill(db, skill_id)
    target = await require_custom_target(db, target_id)

    if target.remote_host_id:
        # Remote destinations are always a symlink to the uploaded staging copy
        target_path = await remote_service.push_skill_to_remote_dir(
            db, target.remote_host_id, skill, target.path
        )
        mode_used = SyncMode.SYMLINK
    else:
        result = await asyncio.to_thread(
            sync_engine.sync_dir,
            Path(skill.central_path),
            _local_custom_path(target, skill),
            mode=mode,
            overwrite=overwrite,
        )
        target_path, mode_used = str(result.target_path), result.mode_used

    now = utcnow()
    await skill_store.upsert_skill_target(
        db,
        skill_id=skill.id,
        tool=target.target_key,
        target_path=target_path,
        mode=mode_used,
        synced_at=now,
    )
    await skill_store.touch_skill_sync(db, skill.id, now)
    logger.info("Synced '%s' to custom target %s (%s)", skill.name, target.label, mode_used)
    return SyncResultResponse(mode_used=mode_used, target_path=target_path, tools=[target.target_key])


async def unsync_skill_from_custom_target(db: AsyncSession, skill_id: str, target_id: str) -> bool:
    """Remove a skill from a custom target; False when it was not synced there."""
    skill = await require_skill(db, skill_id)
    target = await require_custom_target(db, target_id)
    record = await skill_store.get_skill_target(db, skill.id, target.target_key)
    if record is None:
        return False

    try:
        await _remove_custom_path(db, target, record.target_path)
    finally:
        await skill_store.delete_skill_target(db, skill.id, target.target_key)
    return True


async def _remove_custom_path(db: AsyncSession, target: CustomTarget, path: str) -> None:
    if target.remote_host_id:
        await remote_service.remove_remote_path(db, target.remote_host_id, path)
        return
    try:
        await asyncio.to_thread(sync_engine.remove_path, Path(path))
    except OSError as exc:
        raise SyncFailed(path, f"failed to remove {path}") from exc


# ── Record-driven maintenance ────────────────────────────────────────


async def _custom_target_for(db: AsyncSession, record: SkillTarget) -> CustomTarget | None:
    if not record.tool.startswith(CUSTOM_PREFIX):
        return None
    return await skill_store.get_custom_target(db, record.tool.removeprefix(CUSTOM_PREFIX))


async def remove_target_path(db: AsyncSession, record: SkillTarget) -> None:
    """Remove the physical path a record describes (local or remote)."""
    custom = await _custom_target_for(db, record)
    if custom is not None:
        await _remove_custom_path(db, custom, record.target_path)
        return
    try:
        await asyncio.to_thread(sync_engine.remove_path, Path(record.target_path))
    except OSError as exc:
        raise SyncFailed(record.target_path, f"failed to remove {record.target_path}") from exc


async def refresh_copy_targets(
    db: AsyncSession, skill: ManagedSkill
) -> tuple[list[str], list[tuple[SkillTarget, str]]]:
    """Re-push a changed central copy to every destination that holds its own copy.

    Local ``copy`` targets are re-copied with overwrite and remote custom
    targets are re-uploaded; link targets already see the new content.
    Returns (re-pushed keys, [(record, error)]).  Failed records are marked.
    """
    repushed: list[str] = []
    failed: list[tuple[SkillTarget, str]] = []
    done_paths: dict[str, str | None] = {}  # path -> error, for tool groups sharing a path
    now = utcnow()

    for record in await skill_store.list_skill_targets(db, skill.id):
        custom = await _custom_target_for(db, record)
        remote = custom is not None and custom.remote_host_id is not None
        if record.mode != SyncMode.COPY and not remote:
            continue

        if record.target_path in done_paths:
            error = done_paths[record.target_path]
        else:
            error = None
            try:
                if remote:
                    await remote_service.push_skill_to_remote_dir(
                        db, custom.remote_host_id, skill, custom.path
                    )
                else:
                    await asyncio.to_thread(
                        sync_engine.sync_dir,
                        Path(skill.central_path),
                        Path(record.target_path),
                        mode=SyncMode.COPY,
                        overwrite=True,
                    )
            except (SkillsHubError, OSError) as exc:
                error = str(exc)
            done_paths[record.target_path] = error

        if error is None:
            await skill_store.upsert_skill_target(
                db,
                skill_id=skill.id,
                tool=record.tool,
                target_path=record.target_path,
                mode=record.mode,
                synced_at=now,
            )
            repushed.append(record.tool)
        else:
            logger.warning("Re-push of '%s' to %s failed: %s", skill.name, record.target_path, error)
            await skill_store.mark_target_error(db, skill.id, record.tool, error)
            failed.append((record, error))

    if repushed:
        await skill_store.touch_skill_sync(db, skill.id, now)
    return repushed, failed


async def reconcile_targets(db: AsyncSession, skill_id: str | None = None) -> list[SkillTargetResponse]:
    """Drop local records whose destination no longer exists on disk."""
    repaired: list[SkillTargetResponse] = []
    for record in await skill_store.list_skill_targets(db, skill_id):
        custom = await _custom_target_for(db, record)
        if custom is not None and custom.remote_host_id:
            continue
        if sync_engine.path_exists(Path(record.target_path)):
            continue
        logger.info("Target %s for %s is gone; dropping its record", record.target_path, record.tool)
        repaired.append(SkillTargetResponse.model_validate(record))
        await skill_store.delete_skill_target(db, record.skill_id, record.tool)
    return repaired
