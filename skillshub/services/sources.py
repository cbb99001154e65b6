"""Source resolvers — turn a local path, git URL or registry slug into a directory.

Each resolver produces the root of a materialized source tree plus the
revision it was materialized at.  Picking the actual skill directory inside
that tree (``select_skill_dir``) is shared by all of them, so a repository or
archive holding several skills raises the same ``AmbiguousSelection``
regardless of where it came from.
"""

from __future__ import annotations

import asyncio
import hashlib
import io
import logging
import os
import shutil
import tempfile
import time
import zipfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import httpx

from skillshub.config import settings
from skillshub.errors import AmbiguousSelection, InvalidInput, SourceUnavailable
from skillshub.services.fingerprint import compute_content_hash
from skillshub.utils.markdown import SKILL_MANIFEST, read_skill_manifest

logger = logging.getLogger(__name__)

REGISTRY_SCHEME = "registry://"
USER_AGENT = "skillshub"
FETCH_MARKER = ".skillshub-fetched"
_SCAN_SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv"}
_SCAN_MAX_DEPTH = 3


@dataclass(frozen=True)
class SkillCandidate:
    name: str
    subpath: str
    description: str | None = None
    valid: bool = True
    reason: str | None = None


@dataclass(frozen=True)
class MaterializedSource:
    root: Path
    revision: str | None = None


# ── Selecting a skill inside a source tree ───────────────────────────


def list_candidates(root: Path) -> list[SkillCandidate]:
    """Every directory under ``root`` (root included) that carries a SKILL.md."""
    candidates: list[SkillCandidate] = []
    root = root.resolve()
    for current, dirnames, _ in os.walk(root):
        current_path = Path(current)
        relative = current_path.relative_to(root)
        depth = len(relative.parts)
        dirnames[:] = sorted(
            d for d in dirnames
            if d not in _SCAN_SKIP_DIRS and not d.startswith(".") and depth < _SCAN_MAX_DEPTH
        )
        meta = read_skill_manifest(current_path)
        if meta is None:
            continue
        name = str(meta.get("name") or current_path.name)
        description = meta.get("description")
        reason = None if meta.get("name") else "SKILL.md frontmatter has no name"
        candidates.append(
            SkillCandidate(
                name=name,
                subpath=relative.as_posix() if depth else ".",
                description=str(description) if description is not None else None,
                valid=reason is None,
                reason=reason,
            )
        )
        if depth == 0:
            # A skill at the root owns the whole tree
            dirnames[:] = []
    return candidates


def resolve_subpath(root: Path, subpath: str) -> Path:
    root = root.resolve()
    selected = (root / PurePosixPath(subpath)).resolve()
    try:
        selected.relative_to(root)
    except ValueError as exc:
        raise InvalidInput(f"subpath escapes the source root: {subpath}") from exc
    return selected


def select_skill_dir(root: Path, subpath: str | None, source_ref: str) -> tuple[Path, str | None]:
    """Return (skill_dir, chosen_subpath) inside a materialized source tree."""
    if subpath and subpath not in {".", ""}:
        selected = resolve_subpath(root, subpath)
        if not selected.is_dir():
            raise SourceUnavailable(source_ref, f"subpath not found in source: {subpath}")
        return selected, subpath

    if (root / SKILL_MANIFEST).is_file():
        return root, None

    candidates = list_candidates(root)
    if len(candidates) == 1:
        only = candidates[0]
        return resolve_subpath(root, only.subpath), only.subpath
    if len(candidates) > 1:
        raise AmbiguousSelection(source_ref, candidates)
    # No manifest anywhere: the whole tree is the skill
    return root, None


# ── Resolvers ────────────────────────────────────────────────────────


class SourceResolver(ABC):
    """Contract shared by the local, git and registry resolvers."""

    source_type: str

    def __init__(self, ref: str) -> None:
        self.ref = ref

    @property
    def source_ref(self) -> str:
        """Value persisted in ``ManagedSkill.source_ref``."""
        return self.ref

    @abstractmethod
    async def materialize(self, workdir: Path) -> MaterializedSource:
        """Produce the source tree; ``workdir`` is scratch space owned by the caller."""

    @abstractmethod
    async def current_revision(self, subpath: str | None = None) -> str | None:
        """Cheap probe of the source's latest revision, without a full fetch."""

    def default_name(self) -> str:
        return PurePosixPath(self.ref.rstrip("/")).name or "skill"


class LocalSource(SourceResolver):
    source_type = "local"

    def __init__(self, ref: str) -> None:
        super().__init__(str(Path(ref).expanduser()))

    async def materialize(self, workdir: Path) -> MaterializedSource:
        path = Path(self.ref)
        if not path.is_dir():
            raise SourceUnavailable(self.ref, f"local source directory does not exist: {self.ref}")
        return MaterializedSource(root=path.resolve())

    async def current_revision(self, subpath: str | None = None) -> str | None:
        path = Path(self.ref)
        if subpath and subpath != ".":
            path = resolve_subpath(path, subpath)
        if not path.is_dir():
            raise SourceUnavailable(self.ref, f"local source directory does not exist: {path}")
        # Local sources have no revision; their content hash stands in for one
        return await asyncio.to_thread(compute_content_hash, path)


async def _run_git(
    args: list[str], *, source_ref: str, timeout: float | None = None
) -> str:
    """Run git, return stdout, raise SourceUnavailable with git's stderr on failure."""
    timeout = timeout or settings.git_timeout
    env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
    try:
        proc = await asyncio.create_subprocess_exec(
            "git",
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
    except FileNotFoundError as exc:
        raise SourceUnavailable(source_ref, "git executable not found") from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError as exc:
        proc.kill()
        raise SourceUnavailable(
            source_ref, f"git {' '.join(args)} timed out after {timeout}s"
        ) from exc

    if proc.returncode != 0:
        detail = stderr.decode(errors="replace").strip() or stdout.decode(errors="replace").strip()
        raise SourceUnavailable(source_ref, f"git {' '.join(args)} failed: {detail}")
    return stdout.decode(errors="replace").strip()


def parse_ls_remote_commit(output: str) -> str | None:
    """Extract a commit hash from ``git ls-remote`` output, preferring peeled tags."""
    fallback: str | None = None
    for raw_line in output.splitlines():
        parts = raw_line.strip().split(maxsplit=1)
        if not parts:
            continue
        ref = parts[1].strip() if len(parts) > 1 else ""
        if ref.endswith("^{}"):
            return parts[0]
        if fallback is None:
            fallback = parts[0]
    return fallback


class GitSource(SourceResolver):
    """Shallow clone into a per-URL cache dir, re-used while younger than the TTL."""

    source_type = "git"

    def __init__(
        self,
        ref: str,
        *,
        cache_root: Path | None = None,
        ttl_secs: int | None = None,
    ) -> None:
        super().__init__(ref.strip())
        self.cache_root = cache_root or settings.git_cache_dir
        self.ttl_secs = settings.git_cache_ttl_secs if ttl_secs is None else ttl_secs

    def default_name(self) -> str:
        name = super().default_name()
        return name.removesuffix(".git") or "skill"

    @property
    def cache_dir(self) -> Path:
        key = hashlib.sha256(self.ref.encode("utf-8")).hexdigest()[:16]
        return self.cache_root / key

    def _is_fresh(self) -> bool:
        marker = self.cache_dir / FETCH_MARKER
        if not marker.exists():
            return False
        return (time.time() - marker.stat().st_mtime) < self.ttl_secs

    async def materialize(self, workdir: Path) -> MaterializedSource:
        cache_dir = self.cache_dir
        if (cache_dir / ".git").is_dir() and self._is_fresh():
            logger.debug("Re-using git cache for %s at %s", self.ref, cache_dir)
        elif (cache_dir / ".git").is_dir():
            try:
                await _run_git(["-C", str(cache_dir), "fetch", "--depth", "1", "origin"], source_ref=self.ref)
                await _run_git(["-C", str(cache_dir), "reset", "--hard", "FETCH_HEAD"], source_ref=self.ref)
            except SourceUnavailable:
                logger.info("Refreshing git cache for %s failed; re-cloning", self.ref)
                shutil.rmtree(cache_dir, ignore_errors=True)
                await self._clone(cache_dir)
        else:
            await self._clone(cache_dir)

        (cache_dir / FETCH_MARKER).touch()
        revision = await _run_git(["-C", str(cache_dir), "rev-parse", "HEAD"], source_ref=self.ref)
        return MaterializedSource(root=cache_dir, revision=revision or None)

    async def _clone(self, cache_dir: Path) -> None:
        self.cache_root.mkdir(parents=True, exist_ok=True)
        scratch = Path(tempfile.mkdtemp(prefix="skillshub-git-", dir=self.cache_root))
        clone_dir = scratch / "repo"
        try:
            await _run_git(["clone", "--depth", "1", self.ref, str(clone_dir)], source_ref=self.ref)
            if cache_dir.exists():
                shutil.rmtree(cache_dir)
            os.replace(clone_dir, cache_dir)
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

    async def current_revision(self, subpath: str | None = None) -> str | None:
        output = await _run_git(["ls-remote", self.ref, "HEAD"], source_ref=self.ref, timeout=30)
        commit = parse_ls_remote_commit(output)
        if commit is None:
            raise SourceUnavailable(self.ref, "unable to resolve source HEAD")
        return commit


class RegistrySource(SourceResolver):
    """Skill registry download: a zip archive per slug (+ optional version)."""

    source_type = "registry"

    def __init__(
        self,
        ref: str,
        version: str | None = None,
        *,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(ref.removeprefix(REGISTRY_SCHEME).strip("/"))
        self.version = version
        self.base_url = (base_url or settings.registry_base_url).rstrip("/")
        self._transport = transport

    @property
    def slug(self) -> str:
        return self.ref

    @property
    def source_ref(self) -> str:
        return f"{REGISTRY_SCHEME}{self.slug}"

    def default_name(self) -> str:
        return PurePosixPath(self.slug).name or "skill"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"User-Agent": USER_AGENT},
            timeout=settings.registry_timeout,
            transport=self._transport,
            follow_redirects=True,
        )

    async def materialize(self, workdir: Path) -> MaterializedSource:
        params = {"slug": self.slug}
        if self.version:
            params["version"] = self.version
        try:
            async with self._client() as client:
                resp = await client.get("/api/v1/download", params=params)
                resp.raise_for_status()
                payload = resp.content
        except httpx.HTTPError as exc:
            raise SourceUnavailable(self.source_ref, f"registry download failed for {self.slug}") from exc

        extract_dir = workdir / "skillshub-download-archive"
        try:
            await asyncio.to_thread(extract_archive, payload, extract_dir)
        except zipfile.BadZipFile as exc:
            raise SourceUnavailable(self.source_ref, f"registry returned an invalid archive for {self.slug}") from exc

        revision = self.version
        if revision is None:
            try:
                revision = await self.current_revision()
            except SourceUnavailable:
                logger.info("Could not resolve latest registry version for %s", self.slug)
        return MaterializedSource(root=extract_dir, revision=revision)

    async def current_revision(self, subpath: str | None = None) -> str | None:
        try:
            async with self._client() as client:
                resp = await client.get(f"/api/v1/skills/{self.slug}")
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SourceUnavailable(self.source_ref, f"registry lookup failed for {self.slug}") from exc
        latest = data.get("latestVersion") or {}
        return latest.get("version")


def extract_archive(payload: bytes, target_dir: Path) -> Path:
    """Extract a zip archive, skipping hidden and platform-metadata entries."""
    target_dir.mkdir(parents=True, exist_ok=True)
    root = target_dir.resolve()
    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        for info in archive.infolist():
            parts = PurePosixPath(info.filename).parts
            if info.is_dir() or not parts:
                continue
            if parts[0] == "__MACOSX" or any(p.startswith(".") for p in parts):
                continue
            out_path = (root / PurePosixPath(*parts)).resolve()
            try:
                out_path.relative_to(root)
            except ValueError:
                logger.warning("Skipping archive entry outside target: %s", info.filename)
                continue
            out_path.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(info) as src, open(out_path, "wb") as dst:
                shutil.copyfileobj(src, dst)
    return target_dir


def resolver_for(
    source_type: str,
    source_ref: str,
    *,
    version: str | None = None,
    git_ttl_secs: int | None = None,
) -> SourceResolver:
    if source_type == "local":
        return LocalSource(source_ref)
    if source_type == "git":
        return GitSource(source_ref, ttl_secs=git_ttl_secs)
    if source_type == "registry":
        return RegistrySource(source_ref, version)
    raise InvalidInput(f"unknown source type: {source_type}")
