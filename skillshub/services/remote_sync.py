"""Remote sync engine — the sync engine's job across an SSH connection.

Links cannot cross hosts, so a skill is first uploaded over SFTP into a
staging copy under ``$HOME/.skillshub/<name>`` on the remote side, then a
remote symlink is forced from that staging copy to each destination.

Sessions are explicit: ``open_session`` is an async context manager that
connects, authenticates and always closes.  One session serves one operation
sequence and is never shared between concurrent commands.
"""

from __future__ import annotations

import logging
import os
import shlex
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any

import asyncssh

from skillshub.adapters.base import ToolAdapter
from skillshub.adapters.tools import adapter_by_key, default_tool_adapters
from skillshub.config import settings
from skillshub.errors import (
    AuthenticationFailed,
    ConnectionFailed,
    InvalidInput,
    RemoteCommandFailed,
    RemoteSyncFailed,
    SyncFailed,
    UnknownTool,
)

logger = logging.getLogger(__name__)

EXCLUDED_UPLOAD_DIRS = frozenset({".git"})
DEFAULT_KEY_NAMES = ("id_ed25519", "id_rsa", "id_ecdsa")


@dataclass(frozen=True)
class ConnectionProfile:
    host: str
    port: int = 22
    username: str = ""
    auth_method: str = "key"  # key | agent
    key_path: str | None = None

    @classmethod
    def from_record(cls, record: Any) -> ConnectionProfile:
        return cls(
            host=record.host,
            port=int(record.port),
            username=record.username,
            auth_method=record.auth_method,
            key_path=record.key_path,
        )


@dataclass(frozen=True)
class RemoteToolInfo:
    key: str
    label: str
    installed: bool


@dataclass
class RemoteBatchResult:
    synced: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def resolve_key_path(key_path: str | None, home: Path | None = None) -> str:
    """Explicit key path (``~`` expanded), else the first default key in ~/.ssh."""
    if key_path:
        return str(Path(key_path).expanduser())
    ssh_dir = (home or Path.home()) / ".ssh"
    for name in DEFAULT_KEY_NAMES:
        candidate = ssh_dir / name
        if candidate.exists():
            return str(candidate)
    raise InvalidInput("no SSH key found in ~/.ssh/; please specify key_path")


def _connect_options(profile: ConnectionProfile) -> dict[str, Any]:
    options: dict[str, Any] = {
        "port": profile.port,
        "username": profile.username,
        "connect_timeout": settings.ssh_connect_timeout,
    }
    if not settings.ssh_verify_host_keys:
        options["known_hosts"] = None
    if profile.auth_method == "agent":
        options["client_keys"] = None
        options["agent_path"] = os.environ.get("SSH_AUTH_SOCK")
        options["password_auth"] = False
    else:
        options["client_keys"] = [resolve_key_path(profile.key_path)]
        options["agent_path"] = None
        options["password_auth"] = False
    return options


# ── Session ──────────────────────────────────────────────────────────


class RemoteSession:
    """One authenticated SSH connection plus the helpers every remote op needs."""

    def __init__(self, conn: Any, *, label: str, command_timeout: float | None = None) -> None:
        self._conn = conn
        self.label = label
        self.command_timeout = command_timeout or settings.ssh_command_timeout
        self._home: str | None = None

    async def exec(self, command: str) -> str:
        """Run one shell command; return stdout, raise on non-zero exit."""
        logger.debug("[%s] exec: %s", self.label, command)
        try:
            result = await self._conn.run(command, check=False, timeout=self.command_timeout)
        except TimeoutError as exc:
            raise RemoteCommandFailed(command, None, f"timed out after {self.command_timeout}s") from exc
        except asyncssh.Error as exc:
            raise RemoteCommandFailed(command, None, str(exc)) from exc

        stdout = result.stdout or ""
        if result.exit_status != 0:
            raise RemoteCommandFailed(command, result.exit_status, result.stderr or "")
        return stdout if isinstance(stdout, str) else stdout.decode(errors="replace")

    async def home(self) -> str:
        # SFTP does not expand ~, so every remote path is built from this
        if self._home is None:
            self._home = (await self.exec("echo $HOME")).strip()
            if not self._home:
                raise RemoteCommandFailed("echo $HOME", 0, "remote $HOME is empty")
        return self._home

    async def resolve_path(self, path: str) -> str:
        """Expand a leading ``~`` against the remote ``$HOME``; quoted paths never expand."""
        if path == "~" or path.startswith("~/"):
            return (await self.home()) + path[1:]
        return path

    async def central_dir(self) -> str:
        return str(PurePosixPath(await self.home()) / settings.remote_central_dir)

    async def mkdir_p(self, sftp: Any, path: str) -> None:
        """Create ``path`` and its parents; "already exists" (racy or not) is success."""
        try:
            await sftp.mkdir(path)
            return
        except asyncssh.SFTPError as exc:
            first_error = exc

        if await _is_remote_dir(sftp, path):
            return

        parent = str(PurePosixPath(path).parent)
        if parent in ("", "/", path):
            raise SyncFailed(path, f"failed to create remote dir '{path}': {first_error}")
        await self.mkdir_p(sftp, parent)
        try:
            await sftp.mkdir(path)
        except asyncssh.SFTPError as retry_error:
            if not await _is_remote_dir(sftp, path):
                raise SyncFailed(path, f"failed to create remote dir '{path}': {retry_error}") from retry_error

    async def upload_dir(self, local_path: Path, remote_path: str) -> int:
        """Recursively copy ``local_path`` into ``remote_path``; returns files sent."""
        if not local_path.is_dir():
            raise SyncFailed(remote_path, f"local source directory does not exist: {local_path}")

        sent = 0
        async with self._conn.start_sftp_client() as sftp:
            await self.mkdir_p(sftp, remote_path)
            for current, dirnames, filenames in os.walk(local_path):
                dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_UPLOAD_DIRS)
                relative = Path(current).relative_to(local_path)
                remote_dir = str(PurePosixPath(remote_path, *relative.parts))
                if relative.parts:
                    await self.mkdir_p(sftp, remote_dir)
                for name in sorted(filenames):
                    local_file = Path(current) / name
                    if local_file.is_symlink() or not local_file.is_file():
                        logger.debug("[%s] skipping non-regular file %s", self.label, local_file)
                        continue
                    await sftp.put(str(local_file), f"{remote_dir}/{name}")
                    sent += 1
        return sent

    async def create_remote_symlink(self, source: str, target: str) -> None:
        """Force ``target`` to be a link to ``source`` (``ln -sfn``), creating parents."""
        parent = str(PurePosixPath(target).parent)
        await self.exec(f"mkdir -p {shlex.quote(parent)}")
        await self.exec(f"ln -sfn {shlex.quote(source)} {shlex.quote(target)}")

    async def remove_path(self, path: str) -> None:
        resolved = await self.resolve_path(path)
        await self.exec(f"rm -rf {shlex.quote(resolved.rstrip('/'))}")

    async def detect_remote_tools(self, adapters: Sequence[ToolAdapter] | None = None) -> list[RemoteToolInfo]:
        """Installed-state of every adapter, in one round trip."""
        adapters = list(adapters) if adapters is not None else default_tool_adapters()
        checks = [
            f"[ -d ~/{shlex.quote(a.relative_detect_dir)} ] && echo 'EXISTS:{a.key}' || echo 'MISSING:{a.key}'"
            for a in adapters
        ]
        output = await self.exec(" ; ".join(checks))

        by_key = {a.key: a for a in adapters}
        results: list[RemoteToolInfo] = []
        for line in output.splitlines():
            status, _, key = line.strip().partition(":")
            adapter = by_key.get(key)
            if adapter is None or status not in ("EXISTS", "MISSING"):
                continue
            results.append(RemoteToolInfo(key, adapter.display_name, status == "EXISTS"))
        return results

    async def list_skills(self) -> list[str]:
        central = await self.central_dir()
        output = await self.exec(f"ls -1 {shlex.quote(central)}/ 2>/dev/null || true")
        return [line.strip() for line in output.splitlines() if line.strip()]

    async def browse(self, path: str | None = None) -> tuple[str, list[str]]:
        resolved = await self.resolve_path(path or "~")
        command = (
            f"find {shlex.quote(resolved)} -maxdepth 1 -mindepth 1 -type d -printf '%f\\n' "
            "2>/dev/null | sort"
        )
        try:
            output = await self.exec(command)
        except RemoteCommandFailed as exc:
            logger.info("[%s] browse %s failed: %s", self.label, resolved, exc.stderr)
            output = ""
        return resolved, [line for line in output.splitlines() if line]


async def _is_remote_dir(sftp: Any, path: str) -> bool:
    try:
        return bool(await sftp.isdir(path))
    except asyncssh.SFTPError:
        return False


@asynccontextmanager
async def open_session(
    profile: ConnectionProfile,
    *,
    connect: Any = None,
) -> AsyncIterator[RemoteSession]:
    """Connect + authenticate, yield a session, always close the connection."""
    connect = connect or asyncssh.connect
    label = f"{profile.username}@{profile.host}:{profile.port}"
    options = _connect_options(profile)
    try:
        conn = await connect(profile.host, **options)
    except asyncssh.PermissionDenied as exc:
        raise AuthenticationFailed(profile.host, profile.username) from exc
    except (TimeoutError, OSError, asyncssh.Error) as exc:
        raise ConnectionFailed(profile.host, profile.port) from exc

    try:
        yield RemoteSession(conn, label=label)
    finally:
        conn.close()
        await conn.wait_closed()


async def test_connection(profile: ConnectionProfile, *, connect: Any = None) -> str:
    async with open_session(profile, connect=connect) as session:
        return (await session.exec("echo ok")).strip()


# ── Sync operations ──────────────────────────────────────────────────


async def upload_skill(session: RemoteSession, skill_name: str, local_path: Path) -> str:
    """Stage ``local_path`` as ``$HOME/.skillshub/<name>``; returns the staged path.

    The previous staged copy is cleared first so files deleted locally do not
    linger remotely.
    """
    if not local_path.is_dir():
        raise SyncFailed(str(local_path), f"local source directory does not exist: {local_path}")
    staged = str(PurePosixPath(await session.central_dir()) / skill_name)
    await session.remove_path(staged)
    await session.upload_dir(local_path, staged)
    return staged


async def sync_skill_to_remote_path(
    session: RemoteSession, skill_name: str, local_path: Path, dest_root: str
) -> str:
    """Upload then link into ``dest_root/<name>``; returns the linked path."""
    staged = await upload_skill(session, skill_name, local_path)
    root = await session.resolve_path(dest_root)
    destination = str(PurePosixPath(root.rstrip("/") or "/") / skill_name)
    await session.create_remote_symlink(staged, destination)
    return destination


async def sync_skill_to_remote_tool(
    session: RemoteSession,
    skill_name: str,
    local_path: Path,
    tool_key: str,
    adapters: Sequence[ToolAdapter] | None = None,
) -> str:
    adapter = adapter_by_key(tool_key, adapters)
    if adapter is None:
        raise UnknownTool(tool_key)
    tool_root = adapter.remote_skills_dir(await session.home())
    return await sync_skill_to_remote_path(session, skill_name, local_path, tool_root)


async def sync_skills_to_remote(
    session: RemoteSession,
    skills: Sequence[tuple[str, Path]],
    tool_keys: Sequence[str],
    adapters: Sequence[ToolAdapter] | None = None,
) -> RemoteBatchResult:
    """Upload each skill and link it for every tool, one skill at a time.

    Failures are collected per skill.  If nothing synced and something failed
    the whole call fails; otherwise the synced subset is returned and the
    failures are logged.
    """
    result = RemoteBatchResult()
    home = await session.home()
    await session.exec(f"mkdir -p {shlex.quote(await session.central_dir())}")

    tool_adapters = []
    for key in tool_keys:
        adapter = adapter_by_key(key, adapters)
        if adapter is None:
            logger.warning("[%s] ignoring unknown tool key %s", session.label, key)
            continue
        tool_adapters.append(adapter)

    for name, local_path in skills:
        if not local_path.is_dir():
            logger.info("[%s] skipping '%s': local path does not exist: %s", session.label, name, local_path)
            result.skipped.append(name)
            continue

        try:
            staged = await upload_skill(session, name, local_path)
        except (SyncFailed, RemoteCommandFailed, asyncssh.Error, OSError) as exc:
            result.errors.append(f"{name}: {exc}")
            continue

        for adapter in tool_adapters:
            destination = str(PurePosixPath(adapter.remote_skills_dir(home)) / name)
            try:
                await session.create_remote_symlink(staged, destination)
            except RemoteCommandFailed as exc:
                result.errors.append(f"{name} -> {adapter.key}: {exc}")

        result.synced.append(name)

    if result.errors and not result.synced:
        raise RemoteSyncFailed(result.errors)
    for error in result.errors:
        logger.warning("[%s] partial failure: %s", session.label, error)
    return result
