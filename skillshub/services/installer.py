"""Skill installer — bring a source into the central repository and keep it fresh.

Every install or update stages the selected skill directory next to its
final location first, fingerprints the staged copy, and only then moves it
into place, so a failed fetch never leaves a half-written central entry.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
import uuid
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession

from skillshub.config import settings
from skillshub.database import utcnow
from skillshub.errors import (
    DestinationConflict,
    InvalidInput,
    NotFound,
    PartialBatchFailure,
    SkillsHubError,
    SourceUnavailable,
    StorageInconsistency,
    format_error,
)
from skillshub.models import ManagedSkill
from skillshub.schemas.skill import SkillUpdateStatus, TargetFailure, UpdateReport, UpdateState
from skillshub.services import skill_store, sync_engine, sync_service
from skillshub.services.central_repo import (
    allocate_skill_dir,
    atomic_replace_directory,
    ensure_central_repo,
    move_dir,
    resolve_central_repo_path,
)
from skillshub.services.fingerprint import compute_content_hash
from skillshub.services.sources import (
    SkillCandidate,
    SourceResolver,
    list_candidates as scan_candidates,
    resolver_for,
    select_skill_dir,
)
from skillshub.utils.markdown import SKILL_MANIFEST, read_skill_manifest

logger = logging.getLogger(__name__)

GIT_CACHE_TTL_SETTING = "git_cache_ttl_secs"
STAGE_PREFIX = ".skillshub-stage-"


async def git_cache_ttl(db: AsyncSession) -> int:
    raw = await skill_store.get_setting(db, GIT_CACHE_TTL_SETTING)
    if raw is None:
        return settings.git_cache_ttl_secs
    try:
        return max(0, int(raw))
    except ValueError:
        logger.warning("Ignoring invalid %s setting: %r", GIT_CACHE_TTL_SETTING, raw)
        return settings.git_cache_ttl_secs


async def set_git_cache_ttl(db: AsyncSession, ttl_secs: int) -> int:
    await skill_store.set_setting(db, GIT_CACHE_TTL_SETTING, str(ttl_secs))
    return ttl_secs


async def _resolver(
    db: AsyncSession, source_type: str, source_ref: str, version: str | None = None
) -> SourceResolver:
    return resolver_for(
        source_type, source_ref, version=version, git_ttl_secs=await git_cache_ttl(db)
    )


async def _stage(
    resolver: SourceResolver, workdir: Path, subpath: str | None
) -> tuple[Path, str | None, str | None]:
    """Materialize the source and copy the selected skill to ``workdir/staged``.

    Returns (staged_dir, chosen_subpath, revision).
    """
    materialized = await resolver.materialize(workdir)
    skill_dir, chosen = select_skill_dir(materialized.root, subpath, resolver.source_ref)
    staged = workdir / "staged"
    await asyncio.to_thread(
        shutil.copytree, skill_dir, staged, symlinks=True, ignore=sync_engine.COPY_IGNORE
    )
    return staged, chosen, materialized.revision


def _skill_name(explicit: str | None, staged: Path, chosen: str | None, resolver: SourceResolver) -> str:
    if explicit and explicit.strip():
        return explicit.strip()
    meta = read_skill_manifest(staged) or {}
    if meta.get("name"):
        return str(meta["name"]).strip()
    if chosen:
        return Path(chosen).name
    return resolver.default_name()


def _recorded_revision(source_type: str, revision: str | None, content_hash: str) -> str | None:
    # Local sources have no revision of their own; the fingerprint stands in for one
    return content_hash if source_type == "local" else revision


async def install(
    db: AsyncSession,
    *,
    source_type: str,
    source_ref: str,
    subpath: str | None = None,
    name: str | None = None,
    version: str | None = None,
    overwrite: bool = False,
) -> ManagedSkill:
    """Install a skill from a source into the central repository.

    An already-managed name raises ``DestinationConflict`` unless ``overwrite``
    is set, in which case the existing entry is refreshed in place and keeps
    its id and its targets.
    """
    resolver = await _resolver(db, source_type, source_ref, version)
    root = ensure_central_repo(await resolve_central_repo_path(db))

    with tempfile.TemporaryDirectory(prefix=STAGE_PREFIX, dir=root) as scratch:
        staged, chosen, revision = await _stage(resolver, Path(scratch), subpath)
        skill_name = _skill_name(name, staged, chosen, resolver)
        content_hash = await asyncio.to_thread(compute_content_hash, staged)

        existing = await skill_store.get_skill_by_name(db, skill_name)
        if existing is not None and not overwrite:
            raise DestinationConflict(
                existing.central_path, f"skill '{skill_name}' is already managed"
            )

        now = utcnow()
        if existing is not None:
            central = Path(existing.central_path)
            if central.is_dir():
                await asyncio.to_thread(atomic_replace_directory, existing_dir=central, staged_dir=staged)
            else:
                await asyncio.to_thread(move_dir, staged, central)
            changed = existing.content_hash != content_hash
            skill = existing
        else:
            central = allocate_skill_dir(root, skill_name)
            await asyncio.to_thread(move_dir, staged, central)
            changed = False
            skill = ManagedSkill(
                id=str(uuid.uuid4()),
                name=skill_name,
                central_path=str(central),
                created_at=now,
            )

    skill.source_type = resolver.source_type
    skill.source_ref = resolver.source_ref
    skill.source_subpath = chosen
    skill.source_revision = _recorded_revision(resolver.source_type, revision, content_hash)
    skill.content_hash = content_hash
    skill.status = "ok"
    skill.updated_at = now
    skill = await skill_store.save_skill(db, skill)
    logger.info("Installed '%s' from %s into %s", skill.name, skill.source_ref, skill.central_path)

    if changed:
        await sync_service.refresh_copy_targets(db, skill)
    return skill


async def update(db: AsyncSession, skill_id: str) -> UpdateReport:
    """Re-resolve a skill's recorded source; swap and re-push only if its content changed."""
    skill = await sync_service.require_skill(db, skill_id)
    if not skill.source_ref:
        raise InvalidInput(f"skill '{skill.name}' has no recorded source")
    central = Path(skill.central_path)
    if not central.is_dir():
        raise StorageInconsistency(str(central), f"central path not found: {central}")

    resolver = await _resolver(db, skill.source_type, skill.source_ref)
    with tempfile.TemporaryDirectory(prefix=STAGE_PREFIX, dir=central.parent) as scratch:
        staged, _, revision = await _stage(resolver, Path(scratch), skill.source_subpath)
        content_hash = await asyncio.to_thread(compute_content_hash, staged)
        if content_hash == skill.content_hash:
            # A repository can move on without touching this skill's subpath
            recorded = _recorded_revision(skill.source_type, revision, content_hash)
            if recorded != skill.source_revision:
                skill.source_revision = recorded
                await skill_store.save_skill(db, skill)
            logger.info("'%s' is unchanged", skill.name)
            return UpdateReport(skill_id=skill.id, changed=False, content_hash=content_hash)
        await asyncio.to_thread(atomic_replace_directory, existing_dir=central, staged_dir=staged)

    skill.content_hash = content_hash
    skill.source_revision = _recorded_revision(skill.source_type, revision, content_hash)
    skill.status = "ok"
    skill.updated_at = utcnow()
    skill = await skill_store.save_skill(db, skill)

    repushed, failed = await sync_service.refresh_copy_targets(db, skill)
    logger.info(
        "Updated '%s' (%d target(s) re-pushed, %d failed)", skill.name, len(repushed), len(failed)
    )
    return UpdateReport(
        skill_id=skill.id,
        changed=True,
        content_hash=content_hash,
        repushed=repushed,
        failed=[
            TargetFailure(tool=record.tool, target_path=record.target_path, error=error)
            for record, error in failed
        ],
    )


async def check_updates(db: AsyncSession) -> list[SkillUpdateStatus]:
    """Compare each skill's recorded revision with its source's, without fetching content."""
    statuses: list[SkillUpdateStatus] = []
    probed: dict[tuple[str, str, str | None], str | None | SkillsHubError] = {}
    ttl = await git_cache_ttl(db)

    for skill in await skill_store.list_skills(db):
        current = skill.content_hash if skill.source_type == "local" else skill.source_revision
        status = SkillUpdateStatus(
            skill_id=skill.id,
            name=skill.name,
            status=UpdateState.UNKNOWN,
            current_revision=current,
        )
        statuses.append(status)
        if not skill.source_ref:
            status.error = "no recorded source"
            continue

        # Remote revisions are per repository, local fingerprints per subpath
        subpath = skill.source_subpath if skill.source_type == "local" else None
        key = (skill.source_type, skill.source_ref, subpath)
        if key not in probed:
            try:
                resolver = resolver_for(skill.source_type, skill.source_ref, git_ttl_secs=ttl)
                probed[key] = await resolver.current_revision(subpath)
            except (SourceUnavailable, InvalidInput) as exc:
                probed[key] = exc
        remote = probed[key]

        if isinstance(remote, SkillsHubError):
            status.error = format_error(remote)
        elif remote is None or current is None:
            status.remote_revision = remote
            status.error = "revision not available"
        else:
            status.remote_revision = remote
            status.status = UpdateState.UP_TO_DATE if remote == current else UpdateState.UPDATE_AVAILABLE
    return statuses


async def list_candidates(db: AsyncSession, source_type: str, source_ref: str) -> list[SkillCandidate]:
    """Every skill a source offers, for picking a subpath before ``install``."""
    resolver = await _resolver(db, source_type, source_ref)
    with tempfile.TemporaryDirectory(prefix="skillshub-download-") as scratch:
        materialized = await resolver.materialize(Path(scratch))
        return await asyncio.to_thread(scan_candidates, materialized.root)


async def delete_skill(db: AsyncSession, skill_id: str) -> None:
    """Remove every target path, then the central copy, then the records.

    Records go even when a path could not be removed; those paths are then
    reported through ``PartialBatchFailure``.
    """
    skill = await sync_service.require_skill(db, skill_id)
    removed: list[str] = []
    failed: list[str] = []

    for record in await skill_store.list_skill_targets(db, skill.id):
        try:
            await sync_service.remove_target_path(db, record)
            removed.append(record.target_path)
        except (SkillsHubError, OSError) as exc:
            logger.warning("Failed to remove %s: %s", record.target_path, exc)
            failed.append(record.target_path)

    try:
        await asyncio.to_thread(sync_engine.remove_path, Path(skill.central_path))
        removed.append(skill.central_path)
    except OSError as exc:
        logger.warning("Failed to remove %s: %s", skill.central_path, exc)
        failed.append(skill.central_path)

    await skill_store.delete_skill(db, skill.id)
    logger.info("Deleted skill '%s'", skill.name)
    if failed:
        raise PartialBatchFailure(
            f"skill '{skill.name}' deleted but {len(failed)} path(s) could not be removed",
            succeeded=removed,
            failed=failed,
        )


async def read_skill_content(db: AsyncSession, skill_id: str) -> str:
    skill = await sync_service.require_skill(db, skill_id)
    manifest = Path(skill.central_path) / SKILL_MANIFEST
    if not manifest.is_file():
        raise NotFound("skill manifest", skill.name)
    return await asyncio.to_thread(manifest.read_text, encoding="utf-8")
