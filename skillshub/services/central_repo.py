"""Central repository — the single directory owning one copy per managed skill."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
from pathlib import Path
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from skillshub.config import settings
from skillshub.database import utcnow
from skillshub.errors import DestinationConflict, InvalidInput, StorageInconsistency
from skillshub.services import skill_store

logger = logging.getLogger(__name__)

CENTRAL_REPO_SETTING = "central_repo_path"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._\- ]+")


def expand_home_path(raw: str) -> Path:
    trimmed = raw.strip()
    if not trimmed:
        raise InvalidInput("storage path is empty")
    return Path(trimmed).expanduser()


async def resolve_central_repo_path(db: AsyncSession) -> Path:
    override = await skill_store.get_setting(db, CENTRAL_REPO_SETTING)
    if override:
        return Path(override)
    return settings.central_repo_dir.expanduser()


def ensure_central_repo(root: Path) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    return root


def sanitize_skill_dir_name(name: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("-", name.strip()).strip(" .-")
    if not cleaned:
        raise InvalidInput(f"invalid skill name: {name!r}")
    return cleaned


def allocate_skill_dir(root: Path, name: str) -> Path:
    """``root/<name>``, or ``root/<name>-N`` for the first free N when taken."""
    base = sanitize_skill_dir_name(name)
    candidate = root / base
    suffix = 2
    while candidate.exists() or candidate.is_symlink():
        candidate = root / f"{base}-{suffix}"
        suffix += 1
    return candidate


def move_dir(src: Path, dest: Path) -> None:
    """Rename ``src`` to ``dest``; copy + delete when they sit on different filesystems."""
    try:
        os.rename(src, dest)
    except OSError as exc:
        logger.info("rename %s -> %s failed (%s); falling back to copy", src, dest, exc)
        shutil.copytree(src, dest, symlinks=True)
        shutil.rmtree(src)


async def migrate_central_repo(db: AsyncSession, new_root_raw: str) -> Path:
    """Point the central repository at a new root, moving every skill there."""
    new_root = expand_home_path(new_root_raw)
    if not new_root.is_absolute():
        raise InvalidInput("storage path must be absolute")
    ensure_central_repo(new_root)

    current_root = await resolve_central_repo_path(db)
    if current_root.resolve() != new_root.resolve():
        for skill in await skill_store.list_skills(db):
            old_path = Path(skill.central_path)
            if not old_path.is_dir():
                raise StorageInconsistency(str(old_path), f"central path not found: {old_path}")
            new_path = new_root / old_path.name
            if new_path.exists():
                raise DestinationConflict(str(new_path), f"target path already exists: {new_path}")
            await asyncio.to_thread(move_dir, old_path, new_path)
            skill.central_path = str(new_path)
            skill.updated_at = utcnow()
            await skill_store.save_skill(db, skill)
            logger.info("Moved skill '%s' to %s", skill.name, new_path)

    await skill_store.set_setting(db, CENTRAL_REPO_SETTING, str(new_root))
    return new_root


def atomic_replace_directory(*, existing_dir: Path, staged_dir: Path) -> None:
    """Swap ``staged_dir`` into ``existing_dir``; the old copy is restored on failure."""
    existing_dir = existing_dir.resolve()
    staged_dir = staged_dir.resolve()
    backup_dir = existing_dir.parent / f".{existing_dir.name}.backup-{uuid4().hex}"

    os.replace(existing_dir, backup_dir)
    try:
        os.replace(staged_dir, existing_dir)
    except OSError:
        os.replace(backup_dir, existing_dir)
        raise
    shutil.rmtree(backup_dir)
