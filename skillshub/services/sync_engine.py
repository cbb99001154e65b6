"""Sync engine — materialize one destination directory from one source directory.

``auto`` walks an ordered strategy list (symlink, junction, copy) and stops at
the first one that works.  A strategy that cannot run on this platform or
filesystem returns a failed :class:`StrategyResult`; that is ordinary control
flow, not an exception.  The mode that actually succeeded is returned to the
caller, which records it.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from skillshub.errors import SyncFailed, TargetExists
from skillshub.schemas.sync import SyncMode

logger = logging.getLogger(__name__)

COPY_IGNORE = shutil.ignore_patterns(".git")


@dataclass(frozen=True)
class StrategyResult:
    mode: SyncMode
    ok: bool
    error: str | None = None


@dataclass(frozen=True)
class SyncResult:
    mode_used: SyncMode
    target_path: Path


Strategy = Callable[[Path, Path], StrategyResult]


# ── Strategies ───────────────────────────────────────────────────────


def try_symlink(source: Path, target: Path) -> StrategyResult:
    try:
        os.symlink(source, target, target_is_directory=True)
    except (OSError, NotImplementedError) as exc:
        return StrategyResult(SyncMode.SYMLINK, False, str(exc))
    return StrategyResult(SyncMode.SYMLINK, True)


def try_junction(source: Path, target: Path) -> StrategyResult:
    if os.name != "nt":
        return StrategyResult(SyncMode.JUNCTION, False, "junctions are only available on Windows")
    proc = subprocess.run(
        ["cmd", "/c", "mklink", "/J", str(target), str(source)],
        capture_output=True,
        text=True,
        check=False,
    )
    if proc.returncode != 0:
        return StrategyResult(SyncMode.JUNCTION, False, proc.stderr.strip() or proc.stdout.strip())
    return StrategyResult(SyncMode.JUNCTION, True)


def try_copy(source: Path, target: Path) -> StrategyResult:
    try:
        shutil.copytree(source, target, symlinks=True, ignore=COPY_IGNORE)
    except (OSError, shutil.Error) as exc:
        shutil.rmtree(target, ignore_errors=True)
        return StrategyResult(SyncMode.COPY, False, str(exc))
    return StrategyResult(SyncMode.COPY, True)


STRATEGIES: dict[SyncMode, Strategy] = {
    SyncMode.SYMLINK: try_symlink,
    SyncMode.JUNCTION: try_junction,
    SyncMode.COPY: try_copy,
}

AUTO_ORDER: tuple[SyncMode, ...] = (SyncMode.SYMLINK, SyncMode.JUNCTION, SyncMode.COPY)


def strategy_chain(mode: SyncMode) -> list[tuple[SyncMode, Strategy]]:
    order = AUTO_ORDER if mode == SyncMode.AUTO else (mode,)
    return [(m, STRATEGIES[m]) for m in order]


# ── Inspection / removal ─────────────────────────────────────────────


def path_exists(path: Path) -> bool:
    """True for anything at ``path``, dangling links included."""
    return os.path.lexists(path)


def detect_mode(path: Path) -> SyncMode | None:
    """The link type actually present at ``path``."""
    if path.is_symlink():
        return SyncMode.SYMLINK
    if path.is_junction():
        return SyncMode.JUNCTION
    if path.is_dir():
        return SyncMode.COPY
    return None


def links_to(path: Path, source: Path) -> bool:
    if not (path.is_symlink() or path.is_junction()):
        return False
    return os.path.realpath(path) == os.path.realpath(source)


def remove_path(path: Path) -> bool:
    """Remove whatever sits at ``path`` without following links.

    Returns False when nothing was there.
    """
    if not path_exists(path):
        return False
    if path.is_symlink():
        path.unlink()
    elif path.is_junction():
        os.rmdir(path)
    elif path.is_dir():
        shutil.rmtree(path)
    else:
        path.unlink()
    return True


# ── Entry point ──────────────────────────────────────────────────────


def sync_dir(
    source: Path,
    target: Path,
    *,
    mode: SyncMode = SyncMode.AUTO,
    overwrite: bool = False,
    strategies: Sequence[tuple[SyncMode, Strategy]] | None = None,
) -> SyncResult:
    """Materialize ``target`` from ``source``; return the mode that succeeded."""
    if not source.is_dir():
        raise SyncFailed(str(target), f"source directory does not exist: {source}")

    chain = list(strategies) if strategies is not None else strategy_chain(mode)

    if path_exists(target):
        existing = detect_mode(target)
        linkable = mode in (SyncMode.AUTO, existing)
        if linkable and existing in (SyncMode.SYMLINK, SyncMode.JUNCTION) and links_to(target, source):
            logger.debug("%s already links to %s", target, source)
            return SyncResult(existing, target)
        if not overwrite:
            raise TargetExists(str(target))
        remove_path(target)

    target.parent.mkdir(parents=True, exist_ok=True)

    failures: list[str] = []
    for strategy_mode, strategy in chain:
        result = strategy(source, target)
        if result.ok:
            logger.debug("Synced %s -> %s via %s", source, target, strategy_mode)
            return SyncResult(strategy_mode, target)
        logger.debug("%s unavailable for %s: %s", strategy_mode, target, result.error)
        failures.append(f"{strategy_mode}: {result.error}")

    raise SyncFailed(str(target), f"could not sync {target}: " + "; ".join(failures))
