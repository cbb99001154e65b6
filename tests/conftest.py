"""Shared fixtures: isolated home/central dirs, a per-test database, the API client
and a local stand-in for an asyncssh connection."""

import asyncio
import os
import shutil
from pathlib import Path
from types import SimpleNamespace

import asyncssh
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import skillshub.models  # noqa: F401
from skillshub.config import settings
from skillshub.database import Base, get_db
from skillshub.main import app


@pytest.fixture(autouse=True)
def home(tmp_path: Path, monkeypatch) -> Path:
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    monkeypatch.setenv("HOME", str(home_dir))
    monkeypatch.setattr(settings, "central_repo_dir", tmp_path / "central")
    monkeypatch.setattr(settings, "git_cache_dir", tmp_path / "git-cache")
    return home_dir


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def make_skill(root: Path, name: str, body: str = "Do the thing.\n", description: str = "") -> Path:
    """Write a minimal skill directory with a SKILL.md manifest."""
    root.mkdir(parents=True, exist_ok=True)
    front = f"---\nname: {name}\ndescription: {description or name}\n---\n\n"
    (root / "SKILL.md").write_text(front + body)
    return root


@pytest.fixture
def skill_factory():
    return make_skill


# ── Fake SSH ─────────────────────────────────────────────────────────


class FakeSFTPClient:
    """SFTP subset used by the remote engine, backed by the local filesystem."""

    def __init__(self, conn: "FakeSSHConnection") -> None:
        self.conn = conn

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def mkdir(self, path: str) -> None:
        try:
            os.mkdir(path)
        except OSError as exc:
            raise asyncssh.SFTPFailure(str(exc)) from exc

    async def isdir(self, path: str) -> bool:
        return os.path.isdir(path)

    async def put(self, local: str, remote: str) -> None:
        if any(marker in remote for marker in self.conn.fail_uploads):
            raise asyncssh.SFTPFailure(f"permission denied: {remote}")
        shutil.copyfile(local, remote)
        self.conn.uploaded.append(remote)


class FakeSSHConnection:
    """Runs commands with bash under a fake remote $HOME."""

    def __init__(self, remote_home: Path) -> None:
        self.remote_home = remote_home
        self.commands: list[str] = []
        self.uploaded: list[str] = []
        self.fail_uploads: set[str] = set()
        self.closed = False

    async def run(self, command: str, check: bool = False, timeout: float | None = None):
        self.commands.append(command)
        proc = await asyncio.create_subprocess_exec(
            "bash",
            "-c",
            command,
            env={**os.environ, "HOME": str(self.remote_home)},
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        return SimpleNamespace(
            stdout=stdout.decode(), stderr=stderr.decode(), exit_status=proc.returncode
        )

    def start_sftp_client(self) -> FakeSFTPClient:
        return FakeSFTPClient(self)

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None


@pytest.fixture
def remote_home(tmp_path: Path) -> Path:
    path = tmp_path / "remote-home"
    path.mkdir()
    return path


@pytest.fixture
def fake_ssh(remote_home: Path):
    """(connection, connect callable); the callable records its kwargs."""
    conn = FakeSSHConnection(remote_home)
    calls: list[dict] = []

    async def connect(host, **options):
        calls.append({"host": host, **options})
        return conn

    connect.calls = calls
    return conn, connect
